"""
In-process registry chain.

Serves the RegistryClient interface without a node: transactions are encoded
and signed exactly as for a real network, the sender is recovered from the
signature, and the TrustInvoiceRegistry state machine executes the call.
Each transaction mines one block; each block-number poll mines an empty one.
Gas is not metered.

Used for offline runs and the test suite.
"""

import copy
import time
from typing import Any

from eth_account import Account
from hexbytes import HexBytes
from loguru import logger
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3RPCError

from trustinvoice.config.constants import DEFAULT_FEE_BPS, DEFAULT_GAS_LIMIT
from trustinvoice.services.chains.evm.abi import ERC20_ABI, TRUST_INVOICE_REGISTRY_ABI
from trustinvoice.services.chains.evm.registry import (
    CallContext,
    TrustInvoiceRegistry,
    revert,
)
from trustinvoice.services.chains.signers import Signer
from trustinvoice.utils.security import mask_address


# Registry function name -> TrustInvoiceRegistry method
_REGISTRY_WRITES = {
    "createInvoice": "create_invoice",
    "payInvoice": "pay_invoice",
    "releaseEscrow": "release_escrow",
    "refundInvoice": "refund_invoice",
    "updatePlatformFee": "update_platform_fee",
    "authorizeToken": "authorize_token",
    "pause": "pause",
    "unpause": "unpause",
}


def _derive_address(label: str) -> str:
    digest = Web3.keccak(text=label).hex()
    return Web3.to_checksum_address("0x" + digest[-40:])


def _normalize_arg(value: Any) -> Any:
    """bytes32 arguments travel as bytes; the registry keys on hex."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


class MockERC20:
    """Minimal ERC-20 token: balances, allowances, transferFrom."""

    def __init__(self, address: str, symbol: str = "TUSD") -> None:
        self.address = Web3.to_checksum_address(address)
        self.symbol = symbol
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}

    def mint(self, to: str, amount: int) -> None:
        key = Web3.to_checksum_address(to)
        self.balances[key] = self.balances.get(key, 0) + amount

    def balance_of(self, owner: str) -> int:
        return self.balances.get(Web3.to_checksum_address(owner), 0)

    def allowance(self, owner: str, spender: str) -> int:
        key = (Web3.to_checksum_address(owner), Web3.to_checksum_address(spender))
        return self.allowances.get(key, 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        key = (Web3.to_checksum_address(owner), Web3.to_checksum_address(spender))
        self.allowances[key] = amount

    def transfer(self, src: str, dst: str, amount: int) -> None:
        src = Web3.to_checksum_address(src)
        dst = Web3.to_checksum_address(dst)
        if self.balances.get(src, 0) < amount:
            raise revert("ERC20: transfer amount exceeds balance")
        self.balances[src] -= amount
        self.balances[dst] = self.balances.get(dst, 0) + amount

    def transfer_from(self, spender: str, owner: str, dst: str, amount: int) -> None:
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise revert("ERC20: insufficient allowance")
        self.transfer(owner, dst, amount)
        key = (Web3.to_checksum_address(owner), Web3.to_checksum_address(spender))
        self.allowances[key] = allowed - amount


class LocalRegistryChain:
    """
    Local EVM chain hosting one TrustInvoice registry.

    Test helpers:
    - fund/balance_of for native balances
    - deploy_token/token_balance for ERC-20 invoices
    - advance_time for due-date checks
    - withhold_receipts to simulate transactions that never confirm
    """

    def __init__(
        self,
        owner: str,
        chain_id: int = 1337,
        fee_recipient: str | None = None,
        platform_fee_bps: int = DEFAULT_FEE_BPS,
        start_time: int | None = None,
    ) -> None:
        self.chain_id = chain_id
        self.now = start_time if start_time is not None else int(time.time())
        self.block = 0
        self.withhold_receipts = False

        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = {}
        self.tokens: dict[str, MockERC20] = {}
        self.receipts: dict[str, dict[str, Any]] = {}

        self._address = _derive_address(f"trustinvoice-registry:{chain_id}")
        self.registry = TrustInvoiceRegistry(
            address=self._address,
            owner=owner,
            bank=self,
            fee_recipient=fee_recipient,
            platform_fee_bps=platform_fee_bps,
        )

        # Calldata encoders; no provider needed
        codec = Web3()
        self._registry_codec = codec.eth.contract(abi=TRUST_INVOICE_REGISTRY_ABI)
        self._token_codec = codec.eth.contract(abi=ERC20_ABI)

    @property
    def registry_address(self) -> str:
        return self._address

    # ------------------------------------------------------------------
    # Balance store
    # ------------------------------------------------------------------

    def fund(self, address: str, amount: int) -> None:
        key = Web3.to_checksum_address(address)
        self.balances[key] = self.balances.get(key, 0) + amount

    def balance_of(self, address: str) -> int:
        return self.balances.get(Web3.to_checksum_address(address), 0)

    def transfer_native(self, src: str, dst: str, amount: int) -> None:
        src = Web3.to_checksum_address(src)
        dst = Web3.to_checksum_address(dst)
        if self.balances.get(src, 0) < amount:
            raise revert("Address: insufficient balance")
        self.balances[src] -= amount
        self.balances[dst] = self.balances.get(dst, 0) + amount

    def _token(self, token: str) -> MockERC20:
        found = self.tokens.get(Web3.to_checksum_address(token))
        if found is None:
            raise revert("Address: call to non-contract")
        return found

    def transfer_token(self, token: str, src: str, dst: str, amount: int) -> None:
        self._token(token).transfer(src, dst, amount)

    def transfer_token_from(
        self, token: str, spender: str, owner: str, dst: str, amount: int
    ) -> None:
        self._token(token).transfer_from(spender, owner, dst, amount)

    def deploy_token(self, symbol: str = "TUSD") -> MockERC20:
        address = _derive_address(f"token:{symbol}:{len(self.tokens)}")
        token = MockERC20(address, symbol)
        self.tokens[token.address] = token
        return token

    def token_balance(self, token: str, owner: str) -> int:
        return self._token(token).balance_of(owner)

    def advance_time(self, seconds: int) -> None:
        self.now += seconds
        self.block += 1

    # ------------------------------------------------------------------
    # Snapshot / rollback of a reverted transaction
    # ------------------------------------------------------------------

    def _snapshot(self) -> tuple:
        registry = self.registry
        return (
            copy.deepcopy(self.balances),
            {
                address: (copy.deepcopy(token.balances), copy.deepcopy(token.allowances))
                for address, token in self.tokens.items()
            },
            copy.deepcopy(registry.invoices),
            set(registry.invoice_ids),
            set(registry.authorized_tokens),
            registry.fees,
            registry.paused,
            len(registry.events),
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self.balances,
            token_state,
            self.registry.invoices,
            self.registry.invoice_ids,
            self.registry.authorized_tokens,
            self.registry.fees,
            self.registry.paused,
            events_len,
        ) = snapshot
        for address, (balances, allowances) in token_state.items():
            self.tokens[address].balances = balances
            self.tokens[address].allowances = allowances
        del self.registry.events[events_len:]

    # ------------------------------------------------------------------
    # RegistryClient interface
    # ------------------------------------------------------------------

    def _execute(
        self, function: str, args: list[Any], ctx: CallContext, target: str
    ) -> None:
        if target == self._address:
            method = _REGISTRY_WRITES.get(function)
            if method is None:
                raise revert(f"unknown function {function}")
            getattr(self.registry, method)(ctx, *args)
            return

        token = self._token(target)
        if function != "approve" or ctx.value:
            raise revert(f"unsupported token call {function}")
        spender, amount = args
        token.approve(ctx.sender, spender, amount)

    async def transact(
        self,
        function: str,
        args: list[Any],
        signer: Signer,
        value: int = 0,
        contract_address: str | None = None,
    ) -> str:
        sender = Web3.to_checksum_address(signer.address)
        target = Web3.to_checksum_address(contract_address or self._address)
        codec = self._token_codec if contract_address else self._registry_codec

        transaction = {
            "to": target,
            "value": value,
            "gas": DEFAULT_GAS_LIMIT,
            "gasPrice": 0,
            "nonce": self.nonces.get(sender, 0),
            "chainId": self.chain_id,
            "data": codec.encode_abi(function, args=args),
        }
        raw_transaction = HexBytes(signer.sign(transaction))
        if Account.recover_transaction(raw_transaction) != sender:
            raise Web3RPCError("invalid sender: signature does not match from address")
        if self.balance_of(sender) < value:
            raise Web3RPCError("insufficient funds for gas * price + value")

        ctx = CallContext(sender=sender, value=value, timestamp=self.now)
        normalized = [_normalize_arg(arg) for arg in args]
        snapshot = self._snapshot()
        events_before = len(self.registry.events)
        try:
            self.transfer_native(sender, target, value)
            self._execute(function, normalized, ctx, target)
        except ContractLogicError:
            self._restore(snapshot)
            raise

        self.nonces[sender] = self.nonces.get(sender, 0) + 1
        self.block += 1
        tx_hash = Web3.to_hex(Web3.keccak(raw_transaction))
        self.receipts[tx_hash.lower()] = {
            "transactionHash": tx_hash,
            "blockNumber": self.block,
            "status": 1,
            "from": sender,
            "to": target,
            "logs": [
                {"event": event.name, "args": dict(event.args)}
                for event in self.registry.events[events_before:]
            ],
        }
        logger.debug(f"Local block {self.block}: {function} from {mask_address(sender)}")
        return tx_hash

    async def call(
        self, function: str, args: list[Any], contract_address: str | None = None
    ) -> Any:
        normalized = [_normalize_arg(arg) for arg in args]
        if contract_address is not None:
            token = self._token(contract_address)
            if function == "balanceOf":
                return token.balance_of(*normalized)
            if function == "allowance":
                return token.allowance(*normalized)
            raise revert(f"unsupported token call {function}")

        if function == "getInvoice":
            return self.registry.get_invoice(*normalized)
        if function == "isOverdue":
            return self.registry.is_overdue(normalized[0], self.now)
        if function == "platformFee":
            return self.registry.platform_fee()
        if function == "authorizedTokens":
            return self.registry.is_token_authorized(*normalized)
        raise revert(f"unknown function {function}")

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        if self.withhold_receipts:
            return None
        return self.receipts.get(tx_hash.lower())

    async def block_number(self) -> int:
        self.block += 1
        return self.block

    async def invoice_hash_from_receipt(self, receipt: dict[str, Any]) -> str | None:
        for log in receipt.get("logs", []):
            if log["event"] == "InvoiceCreated":
                return log["args"]["invoiceHash"]
        return None
