"""
Application settings.

Loads configuration from environment variables using pydantic-settings.
"""

from decimal import Decimal

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trustinvoice.config.constants import (
    ALGORAND_WAIT_ROUNDS,
    DEFAULT_GAS_LIMIT,
    EVM_ACTION_CONFIRMATIONS,
    EVM_CREATE_CONFIRMATIONS,
    EVM_MAX_POLL_ATTEMPTS,
    EVM_POLL_BACKOFF,
    EVM_POLL_INTERVAL,
    GAS_LIMIT_MULTIPLIER,
    RPC_TIMEOUT,
)
from trustinvoice.config.networks import (
    ALGORAND_NETWORKS,
    EVM_NETWORKS,
    EVM_NETWORKS_BY_CHAIN,
    Blockchain,
    NetworkConfig,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = None

    # Chain selection
    default_blockchain: Blockchain = Blockchain.ETHEREUM
    ethereum_network: str = "sepolia"
    polygon_network: str = "amoy"
    algorand_network: str = "testnet"

    # EVM endpoints (override the catalogue)
    ethereum_rpc_url: str | None = None
    ethereum_registry_address: str | None = None
    polygon_rpc_url: str | None = None
    polygon_registry_address: str | None = None

    # Algorand endpoint (overrides the catalogue)
    algod_url: str | None = None
    algod_token: str = ""

    # Confirmation polling
    evm_create_confirmations: int = Field(
        default=EVM_CREATE_CONFIRMATIONS,
        ge=1,
        description="Block confirmations before an invoice creation is final",
    )
    evm_action_confirmations: int = Field(
        default=EVM_ACTION_CONFIRMATIONS,
        ge=1,
        description="Block confirmations for pay/release/refund",
    )
    evm_poll_interval: float = Field(default=EVM_POLL_INTERVAL, ge=0)
    evm_poll_backoff: float = Field(default=EVM_POLL_BACKOFF, ge=1.0)
    evm_max_poll_attempts: int = Field(default=EVM_MAX_POLL_ATTEMPTS, ge=1)
    algorand_wait_rounds: int = Field(
        default=ALGORAND_WAIT_ROUNDS,
        ge=1,
        description="Rounds to wait for an Algorand transaction",
    )
    rpc_timeout: float = Field(default=RPC_TIMEOUT, gt=0)

    # Gas
    gas_limit_multiplier: float = Field(default=GAS_LIMIT_MULTIPLIER, ge=1.0)
    default_gas_limit: int = Field(default=DEFAULT_GAS_LIMIT, gt=21_000)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("ethereum_network")
    @classmethod
    def validate_ethereum_network(cls, v: str) -> str:
        """Ethereum must point at a known EVM network."""
        if v not in EVM_NETWORKS_BY_CHAIN[Blockchain.ETHEREUM]:
            raise ValueError(
                f"Unknown Ethereum network: {v}. "
                f"Expected one of {', '.join(EVM_NETWORKS_BY_CHAIN[Blockchain.ETHEREUM])}"
            )
        return v

    @field_validator("polygon_network")
    @classmethod
    def validate_polygon_network(cls, v: str) -> str:
        """Polygon must point at a known Polygon network."""
        if v not in EVM_NETWORKS_BY_CHAIN[Blockchain.POLYGON]:
            raise ValueError(
                f"Unknown Polygon network: {v}. "
                f"Expected one of {', '.join(EVM_NETWORKS_BY_CHAIN[Blockchain.POLYGON])}"
            )
        return v

    @field_validator("algorand_network")
    @classmethod
    def validate_algorand_network(cls, v: str) -> str:
        """Algorand must point at a known Algorand network."""
        if v not in ALGORAND_NETWORKS:
            raise ValueError(
                f"Unknown Algorand network: {v}. "
                f"Expected one of {', '.join(ALGORAND_NETWORKS)}"
            )
        return v

    @field_validator("ethereum_registry_address", "polygon_registry_address")
    @classmethod
    def validate_registry_address(cls, v: str | None) -> str | None:
        """Validate registry contract address format."""
        if v is None:
            return v
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError(
                f"Invalid registry address: {v}. "
                "Must start with 0x and be 42 characters long."
            )
        try:
            int(v[2:], 16)
        except ValueError as exc:
            raise ValueError(f"Invalid registry address format: {v}") from exc
        return v

    @model_validator(mode="after")
    def validate_production(self) -> "Settings":
        """Validate production-specific requirements."""
        if self.environment == "production":
            if self.debug:
                raise ValueError(
                    "DEBUG must be False in production environment. "
                    "Set DEBUG=false in your .env file."
                )
            for chain in (Blockchain.ETHEREUM, Blockchain.POLYGON):
                if not self.network_for(chain).registry_address:
                    # Not fatal: the chain simply cannot be used until configured
                    logger.warning(
                        f"{chain.value.upper()}_REGISTRY_ADDRESS is not set; "
                        f"{chain.value} invoices will fail until it is configured."
                    )
        return self

    def network_for(self, blockchain: Blockchain) -> NetworkConfig:
        """
        Resolve the network configuration for a blockchain.

        Applies endpoint and registry overrides on top of the catalogue entry.

        Args:
            blockchain: Target blockchain

        Returns:
            NetworkConfig with overrides applied
        """
        if blockchain is Blockchain.ETHEREUM:
            base = EVM_NETWORKS[self.ethereum_network]
            overrides = {
                "http_endpoint": self.ethereum_rpc_url,
                "registry_address": self.ethereum_registry_address,
            }
        elif blockchain is Blockchain.POLYGON:
            base = EVM_NETWORKS[self.polygon_network]
            overrides = {
                "http_endpoint": self.polygon_rpc_url,
                "registry_address": self.polygon_registry_address,
            }
        else:
            base = ALGORAND_NETWORKS[self.algorand_network]
            overrides = {
                "http_endpoint": self.algod_url,
                "api_token": self.algod_token or None,
            }

        update = {key: value for key, value in overrides.items() if value is not None}
        return base.model_copy(update=update) if update else base

    def max_gas_price_wei(self, network: NetworkConfig) -> int | None:
        """Gas price ceiling for an EVM network in wei."""
        if network.max_gas_price_gwei is None:
            return None
        return int(Decimal(network.max_gas_price_gwei) * Decimal(10**9))


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings
