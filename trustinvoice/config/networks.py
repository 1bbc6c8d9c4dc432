"""
Network catalogue.

Every network the settlement engine can talk to, keyed by name. EVM networks
share one registry contract interface and differ only in endpoint, chain id,
registry address, gas ceiling and explorer; Algorand networks differ in algod
endpoint, genesis id and explorer.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from trustinvoice.config.constants import (
    ALGORAND_DECIMALS,
    DEFAULT_MAX_GAS_PRICE_GWEI,
    EVM_DECIMALS,
)


class Blockchain(str, Enum):
    """Blockchains an invoice can be settled on."""

    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    ALGORAND = "algorand"

    @property
    def is_evm(self) -> bool:
        return self in (Blockchain.ETHEREUM, Blockchain.POLYGON)


class NetworkConfig(BaseModel):
    """RPC and explorer configuration for one network."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Catalogue key, e.g. 'sepolia'")
    name: str = Field(..., description="Human readable network name")
    network_id: str = Field(..., description="EVM chain id or Algorand genesis id")
    http_endpoint: str
    explorer_base_url: str
    explorer_tx_path: str = "tx"
    native_symbol: str
    decimals: int = Field(..., ge=0)
    registry_address: str | None = Field(
        default=None, description="TrustInvoice registry contract (EVM only)"
    )
    max_gas_price_gwei: Decimal | None = None
    api_token: str = ""

    def explorer_tx_url(self, tx_id: str) -> str:
        """Build the explorer link for a transaction id."""
        if not tx_id:
            return ""
        return f"{self.explorer_base_url.rstrip('/')}/{self.explorer_tx_path}/{tx_id}"


EVM_NETWORKS: dict[str, NetworkConfig] = {
    "ethereum": NetworkConfig(
        key="ethereum",
        name="Ethereum Mainnet",
        network_id="1",
        http_endpoint="https://ethereum-rpc.publicnode.com",
        explorer_base_url="https://etherscan.io",
        native_symbol="ETH",
        decimals=EVM_DECIMALS,
        max_gas_price_gwei=DEFAULT_MAX_GAS_PRICE_GWEI,
    ),
    "sepolia": NetworkConfig(
        key="sepolia",
        name="Sepolia Testnet",
        network_id="11155111",
        http_endpoint="https://ethereum-sepolia-rpc.publicnode.com",
        explorer_base_url="https://sepolia.etherscan.io",
        native_symbol="ETH",
        decimals=EVM_DECIMALS,
        max_gas_price_gwei=DEFAULT_MAX_GAS_PRICE_GWEI,
    ),
    "polygon": NetworkConfig(
        key="polygon",
        name="Polygon",
        network_id="137",
        http_endpoint="https://polygon-rpc.com",
        explorer_base_url="https://polygonscan.com",
        native_symbol="POL",
        decimals=EVM_DECIMALS,
        max_gas_price_gwei=Decimal("1000"),
    ),
    "amoy": NetworkConfig(
        key="amoy",
        name="Polygon Amoy Testnet",
        network_id="80002",
        http_endpoint="https://rpc-amoy.polygon.technology",
        explorer_base_url="https://amoy.polygonscan.com",
        native_symbol="POL",
        decimals=EVM_DECIMALS,
        max_gas_price_gwei=Decimal("1000"),
    ),
    "bsc": NetworkConfig(
        key="bsc",
        name="BNB Smart Chain",
        network_id="56",
        http_endpoint="https://bsc-dataseed1.binance.org",
        explorer_base_url="https://bscscan.com",
        native_symbol="BNB",
        decimals=EVM_DECIMALS,
        max_gas_price_gwei=Decimal("10"),
    ),
    "arbitrum": NetworkConfig(
        key="arbitrum",
        name="Arbitrum One",
        network_id="42161",
        http_endpoint="https://arb1.arbitrum.io/rpc",
        explorer_base_url="https://arbiscan.io",
        native_symbol="ETH",
        decimals=EVM_DECIMALS,
        max_gas_price_gwei=Decimal("10"),
    ),
    "optimism": NetworkConfig(
        key="optimism",
        name="Optimism",
        network_id="10",
        http_endpoint="https://mainnet.optimism.io",
        explorer_base_url="https://optimistic.etherscan.io",
        native_symbol="ETH",
        decimals=EVM_DECIMALS,
        max_gas_price_gwei=Decimal("10"),
    ),
}

ALGORAND_NETWORKS: dict[str, NetworkConfig] = {
    "mainnet": NetworkConfig(
        key="mainnet",
        name="Algorand Mainnet",
        network_id="mainnet-v1.0",
        http_endpoint="https://mainnet-api.4160.nodely.dev",
        explorer_base_url="https://lora.algokit.io/mainnet",
        explorer_tx_path="transaction",
        native_symbol="ALGO",
        decimals=ALGORAND_DECIMALS,
    ),
    "testnet": NetworkConfig(
        key="testnet",
        name="Algorand Testnet",
        network_id="testnet-v1.0",
        http_endpoint="https://testnet-api.4160.nodely.dev",
        explorer_base_url="https://lora.algokit.io/testnet",
        explorer_tx_path="transaction",
        native_symbol="ALGO",
        decimals=ALGORAND_DECIMALS,
    ),
    "betanet": NetworkConfig(
        key="betanet",
        name="Algorand Betanet",
        network_id="betanet-v1.0",
        http_endpoint="https://betanet-api.4160.nodely.dev",
        explorer_base_url="https://lora.algokit.io/betanet",
        explorer_tx_path="transaction",
        native_symbol="ALGO",
        decimals=ALGORAND_DECIMALS,
    ),
}

# Networks each EVM blockchain may be pointed at
EVM_NETWORKS_BY_CHAIN: dict[Blockchain, tuple[str, ...]] = {
    Blockchain.ETHEREUM: ("ethereum", "sepolia", "bsc", "arbitrum", "optimism"),
    Blockchain.POLYGON: ("polygon", "amoy"),
}
