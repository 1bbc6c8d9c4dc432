"""
Registry client.

Thin async transport between the EVM adapter and a TrustInvoice registry.
Web3RegistryClient talks to a JSON-RPC node; LocalRegistryChain (see
local_chain.py) serves the same interface in-process.
"""

import asyncio
from collections.abc import Awaitable
from typing import Any, Protocol, TypeVar

from loguru import logger
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.exceptions import TransactionNotFound
from web3.logs import DISCARD

from trustinvoice.config.constants import (
    DEFAULT_GAS_LIMIT,
    GAS_LIMIT_MULTIPLIER,
    RPC_TIMEOUT,
)
from trustinvoice.config.networks import NetworkConfig
from trustinvoice.services.chains.evm.abi import ERC20_ABI, TRUST_INVOICE_REGISTRY_ABI
from trustinvoice.services.chains.signers import Signer
from trustinvoice.utils.exceptions import ChainError
from trustinvoice.utils.security import mask_address, mask_tx_hash


T = TypeVar("T")


class RegistryClient(Protocol):
    """Operations the EVM adapter needs from a chain connection."""

    @property
    def registry_address(self) -> str | None:
        ...

    async def transact(
        self,
        function: str,
        args: list[Any],
        signer: Signer,
        value: int = 0,
        contract_address: str | None = None,
    ) -> str:
        ...

    async def call(
        self, function: str, args: list[Any], contract_address: str | None = None
    ) -> Any:
        ...

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        ...

    async def block_number(self) -> int:
        ...

    async def invoice_hash_from_receipt(self, receipt: dict[str, Any]) -> str | None:
        ...


class Web3RegistryClient:
    """
    JSON-RPC registry client built on AsyncWeb3.

    Features:
    - Pending-nonce lookup per sender
    - Gas estimation with safety multiplier and default fallback
    - Gas price ceiling per network
    - Per-call RPC timeout
    """

    def __init__(
        self,
        network: NetworkConfig,
        timeout: float = RPC_TIMEOUT,
        gas_limit_multiplier: float = GAS_LIMIT_MULTIPLIER,
        default_gas_limit: int = DEFAULT_GAS_LIMIT,
        max_gas_price_wei: int | None = None,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        """
        Initialize registry client.

        Args:
            network: Network configuration (endpoint, chain id, registry)
            timeout: Seconds allowed per RPC call
            gas_limit_multiplier: Buffer applied to estimate_gas
            default_gas_limit: Gas limit used when estimation times out
            max_gas_price_wei: Gas price ceiling (None = uncapped)
            web3: Preconfigured AsyncWeb3 instance (tests)
        """
        self.network = network
        self.timeout = timeout
        self.gas_limit_multiplier = gas_limit_multiplier
        self.default_gas_limit = default_gas_limit
        self.max_gas_price_wei = max_gas_price_wei
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(network.http_endpoint))
        self._registry: AsyncContract | None = None

    @property
    def registry_address(self) -> str | None:
        return self.network.registry_address

    def _contract(self, contract_address: str | None = None) -> AsyncContract:
        if contract_address is not None:
            return self.web3.eth.contract(
                address=Web3.to_checksum_address(contract_address), abi=ERC20_ABI
            )

        if self._registry is None:
            if not self.network.registry_address:
                raise ChainError(
                    f"No registry contract configured for {self.network.name}"
                )
            self._registry = self.web3.eth.contract(
                address=Web3.to_checksum_address(self.network.registry_address),
                abi=TRUST_INVOICE_REGISTRY_ABI,
            )
        return self._registry

    async def _rpc(self, awaitable: Awaitable[T], action: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except TimeoutError as exc:
            logger.error(f"Timeout {action} on {self.network.name}")
            raise ChainError(f"RPC timeout {action} on {self.network.name}") from exc

    async def _gas_price(self) -> int:
        gas_price = await self._rpc(self.web3.eth.gas_price, "getting gas price")
        if self.max_gas_price_wei is not None and gas_price > self.max_gas_price_wei:
            logger.warning(
                f"Gas price {gas_price} exceeds max {self.max_gas_price_wei}, using max"
            )
            gas_price = self.max_gas_price_wei
        return gas_price

    async def transact(
        self,
        function: str,
        args: list[Any],
        signer: Signer,
        value: int = 0,
        contract_address: str | None = None,
    ) -> str:
        """
        Build, sign and broadcast a contract call.

        Reverts detected during gas estimation propagate as ContractLogicError.

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        contract_fn = getattr(self._contract(contract_address).functions, function)(*args)
        sender = Web3.to_checksum_address(signer.address)

        nonce = await self._rpc(
            self.web3.eth.get_transaction_count(sender, "pending"),
            "getting transaction count (nonce)",
        )

        try:
            gas_estimate = await self._rpc(
                contract_fn.estimate_gas({"from": sender, "value": value}),
                "estimating gas",
            )
            gas_limit = int(gas_estimate * self.gas_limit_multiplier)
        except ChainError:
            logger.warning(f"Gas estimation timed out, using default {self.default_gas_limit}")
            gas_limit = self.default_gas_limit

        gas_price = await self._gas_price()

        transaction = await self._rpc(
            contract_fn.build_transaction(
                {
                    "from": sender,
                    "value": value,
                    "gas": gas_limit,
                    "gasPrice": gas_price,
                    "nonce": nonce,
                    "chainId": int(self.network.network_id),
                }
            ),
            "building transaction",
        )

        raw_transaction = signer.sign(transaction)
        tx_hash = await self._rpc(
            self.web3.eth.send_raw_transaction(raw_transaction),
            "sending transaction",
        )
        tx_hash_hex = Web3.to_hex(tx_hash)

        logger.info(
            f"{function} sent from {mask_address(sender)}: {mask_tx_hash(tx_hash_hex)} "
            f"(gas {gas_limit}, gas price {Web3.from_wei(gas_price, 'gwei')} Gwei)"
        )
        return tx_hash_hex

    async def call(
        self, function: str, args: list[Any], contract_address: str | None = None
    ) -> Any:
        contract_fn = getattr(self._contract(contract_address).functions, function)(*args)
        return await self._rpc(contract_fn.call(), f"calling {function}")

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Receipt of a mined transaction, None while pending."""
        try:
            receipt = await self._rpc(
                self.web3.eth.get_transaction_receipt(tx_hash), "getting receipt"
            )
        except TransactionNotFound:
            return None
        return dict(receipt)

    async def block_number(self) -> int:
        return await self._rpc(self.web3.eth.block_number, "getting block number")

    async def invoice_hash_from_receipt(self, receipt: dict[str, Any]) -> str | None:
        """Extract invoiceHash from the InvoiceCreated log of a receipt."""
        events = self._contract().events.InvoiceCreated().process_receipt(
            receipt, errors=DISCARD
        )
        if not events:
            return None
        return Web3.to_hex(events[0]["args"]["invoiceHash"])
