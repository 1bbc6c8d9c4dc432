"""
EVM adapter (Ethereum, Polygon).

Drives the TrustInvoice registry contract through a RegistryClient. One
registry holds many invoices keyed by invoice hash; Ethereum and Polygon
differ only in network configuration.
"""

from collections.abc import Awaitable
from typing import Any, TypeVar

from hexbytes import HexBytes
from loguru import logger
from web3.exceptions import ContractLogicError

from trustinvoice.config.constants import ZERO_ADDRESS
from trustinvoice.config.networks import Blockchain, NetworkConfig
from trustinvoice.config.settings import Settings
from trustinvoice.services.chains.base import ChainCapabilities
from trustinvoice.services.chains.evm import abi
from trustinvoice.services.chains.evm.client import RegistryClient
from trustinvoice.services.chains.signers import Signer
from trustinvoice.services.settlement.confirmation import TransactionConfirmationWaiter
from trustinvoice.services.settlement.fees import validate_fee_bps
from trustinvoice.services.settlement.models import (
    CreateInvoiceParams,
    InvoiceRecord,
    InvoiceRef,
    InvoiceStatus,
    status_from_flags,
)
from trustinvoice.utils.exceptions import (
    TRANSPORT_ERRORS,
    AlreadyPaidError,
    ChainError,
    NotEscrowedError,
    NotFoundError,
    SettlementError,
    UnauthorizedError,
    ValidationError,
)
from trustinvoice.utils.security import mask_address, mask_tx_hash
from trustinvoice.validators.invoice import (
    from_base_units,
    normalize_evm_address,
    to_base_units,
)


T = TypeVar("T")

# Revert reason -> error type
_REVERT_ERRORS: tuple[tuple[str, type[SettlementError]], ...] = (
    (abi.REVERT_NOT_FOUND, NotFoundError),
    (abi.REVERT_ALREADY_PAID, AlreadyPaidError),
    (abi.REVERT_DUPLICATE_ID, ValidationError),
    (abi.REVERT_WRONG_AMOUNT, ValidationError),
    (abi.REVERT_PAST_DUE_DATE, ValidationError),
    (abi.REVERT_ZERO_AMOUNT, ValidationError),
    (abi.REVERT_INVALID_RECIPIENT, ValidationError),
    (abi.REVERT_TOKEN_NOT_AUTHORIZED, ValidationError),
    (abi.REVERT_INVALID_FEE, ValidationError),
    (abi.REVERT_ONLY_RECIPIENT, UnauthorizedError),
    (abi.REVERT_NOT_AUTHORIZED_REFUND, UnauthorizedError),
    (abi.REVERT_NOT_OWNER, UnauthorizedError),
    (abi.REVERT_NOT_ESCROW, NotEscrowedError),
    (abi.REVERT_NOT_PAID, NotEscrowedError),
    (abi.REVERT_ALREADY_RELEASED, NotEscrowedError),
    (abi.REVERT_ALREADY_REFUNDED, NotEscrowedError),
)


def revert_reason(exc: ContractLogicError) -> str:
    """Strip the 'execution reverted:' prefix from a revert message."""
    message = exc.message or str(exc)
    return message.split("execution reverted:", 1)[-1].strip()


def translate_revert(
    exc: ContractLogicError, action: str, tx_id: str | None = None
) -> SettlementError:
    """Map a registry revert to the settlement error taxonomy."""
    reason = revert_reason(exc)
    for fragment, error_cls in _REVERT_ERRORS:
        if fragment in reason:
            return error_cls(f"{action} rejected by registry: {reason}", reason=reason, tx_id=tx_id)
    return ChainError(f"{action} reverted: {reason}", reason=reason, tx_id=tx_id)


class EVMAdapter:
    """
    Settlement operations against a TrustInvoice registry.

    Escrow is supported; refunds may be issued by the creator or recipient.
    """

    capabilities = ChainCapabilities(
        supports_escrow=True,
        refund_roles=frozenset({"creator", "recipient"}),
    )

    def __init__(
        self,
        blockchain: Blockchain,
        network: NetworkConfig,
        client: RegistryClient,
        settings: Settings,
    ) -> None:
        """
        Initialize EVM adapter.

        Args:
            blockchain: ETHEREUM or POLYGON
            network: Network the registry lives on
            client: Registry transport (Web3 or local chain)
            settings: Confirmation and polling configuration
        """
        if not blockchain.is_evm:
            raise ValueError(f"EVMAdapter cannot serve {blockchain.value}")
        self.blockchain = blockchain
        self.network = network
        self.client = client
        self.create_confirmations = settings.evm_create_confirmations
        self.action_confirmations = settings.evm_action_confirmations
        self._waiter = TransactionConfirmationWaiter(
            max_attempts=settings.evm_max_poll_attempts,
            interval=settings.evm_poll_interval,
            backoff=settings.evm_poll_backoff,
        )

    @property
    def registry_address(self) -> str:
        return self.client.registry_address or ""

    # ------------------------------------------------------------------
    # Transport guards
    # ------------------------------------------------------------------

    async def _guard(
        self, awaitable: Awaitable[T], action: str, tx_id: str | None = None
    ) -> T:
        """Await a client call, translating library errors to the taxonomy."""
        try:
            return await awaitable
        except ContractLogicError as exc:
            raise translate_revert(exc, action, tx_id) from exc
        except TRANSPORT_ERRORS as exc:
            logger.error(f"{action} failed on {self.network.name}: {exc}")
            raise ChainError(
                f"{action} failed on {self.network.name}", reason=str(exc), tx_id=tx_id
            ) from exc

    async def _confirm(self, tx_hash: str, confirmations: int) -> dict[str, Any]:
        """
        Wait until a transaction is mined and buried under enough blocks.

        A reverted receipt is returned as soon as it is observed.
        """

        async def probe() -> dict[str, Any] | None:
            receipt = await self._guard(
                self.client.get_receipt(tx_hash), "fetching receipt", tx_hash
            )
            if receipt is None:
                return None
            if receipt["status"] != 1:
                return receipt
            head = await self._guard(
                self.client.block_number(), "fetching block number", tx_hash
            )
            if head - receipt["blockNumber"] + 1 >= confirmations:
                return receipt
            return None

        return await self._waiter.wait(
            tx_hash, probe, what=f"{confirmations} confirmation(s)"
        )

    async def _send(
        self,
        function: str,
        args: list[Any],
        signer: Signer,
        value: int = 0,
        contract_address: str | None = None,
    ) -> str:
        return await self._guard(
            self.client.transact(function, args, signer, value, contract_address),
            function,
        )

    async def _approve_token(self, token: str, owner: Signer, amount: int) -> None:
        """Allow the registry to pull amount of token from owner."""
        tx_hash = await self._send(
            "approve", [self.registry_address, amount], owner, contract_address=token
        )
        receipt = await self._confirm(tx_hash, self.action_confirmations)
        if receipt["status"] != 1:
            raise ChainError(f"Token approval {tx_hash} reverted", tx_id=tx_hash)

    @staticmethod
    def _hash_arg(ref: InvoiceRef) -> HexBytes:
        if not ref.invoice_hash:
            raise ValidationError(
                f"EVM invoice reference {ref.invoice_id} carries no invoice hash"
            )
        return HexBytes(ref.invoice_hash)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_invoice(
        self, params: CreateInvoiceParams, creator: Signer
    ) -> InvoiceRecord:
        recipient = normalize_evm_address(params.recipient, "recipient")
        token = (
            normalize_evm_address(params.token_address, "token address")
            if params.token_address
            else ZERO_ADDRESS
        )
        amount = to_base_units(params.amount, self.network.decimals)

        tx_hash = await self._send(
            "createInvoice",
            [
                params.invoice_id,
                recipient,
                amount,
                params.due_date,
                token,
                params.is_escrow,
                params.description,
            ],
            creator,
        )
        receipt = await self._confirm(tx_hash, self.create_confirmations)
        if receipt["status"] != 1:
            raise ChainError(f"createInvoice {tx_hash} reverted", tx_id=tx_hash)

        invoice_hash = await self.client.invoice_hash_from_receipt(receipt)
        if invoice_hash is None:
            raise ChainError(
                f"createInvoice {tx_hash} emitted no InvoiceCreated event", tx_id=tx_hash
            )

        ref = InvoiceRef(
            blockchain=self.blockchain,
            invoice_id=params.invoice_id,
            chain_identifier=self.registry_address,
            invoice_hash=invoice_hash,
        )
        record = await self.get_invoice_details(ref)
        record.tx_ids.append(tx_hash)

        unit = self.network.native_symbol if token == ZERO_ADDRESS else "tokens"
        logger.success(
            f"Invoice {params.invoice_id} created on {self.network.name} "
            f"for {params.amount} {unit} to {mask_address(recipient)} "
            f"(tx {mask_tx_hash(tx_hash)})"
        )
        return record

    async def pay_invoice(self, ref: InvoiceRef, payer: Signer) -> str:
        invoice_hash = self._hash_arg(ref)
        current = await self.get_invoice_details(ref)
        if current.status is not InvoiceStatus.CREATED:
            raise AlreadyPaidError(
                f"Invoice {ref.invoice_id} is already {current.status.value}",
                reason=abi.REVERT_ALREADY_PAID,
            )

        amount = current.amount_base_units
        value = amount
        if current.token_address:
            await self._approve_token(current.token_address, payer, amount)
            value = 0

        tx_hash = await self._send("payInvoice", [invoice_hash], payer, value=value)
        receipt = await self._confirm(tx_hash, self.action_confirmations)
        if receipt["status"] != 1:
            # Lost a race against another payment mined first
            latest = await self.get_invoice_details(ref)
            if latest.status is not InvoiceStatus.CREATED:
                raise AlreadyPaidError(
                    f"Invoice {ref.invoice_id} was paid by another transaction",
                    reason=abi.REVERT_ALREADY_PAID,
                    tx_id=tx_hash,
                )
            raise ChainError(f"payInvoice {tx_hash} reverted", tx_id=tx_hash)

        logger.success(
            f"Invoice {ref.invoice_id} paid by {mask_address(payer.address)} "
            f"(tx {mask_tx_hash(tx_hash)})"
        )
        return tx_hash

    async def release_escrow(self, ref: InvoiceRef, releaser: Signer) -> str:
        tx_hash = await self._send("releaseEscrow", [self._hash_arg(ref)], releaser)
        receipt = await self._confirm(tx_hash, self.action_confirmations)
        if receipt["status"] != 1:
            raise ChainError(f"releaseEscrow {tx_hash} reverted", tx_id=tx_hash)

        logger.success(f"Escrow released for invoice {ref.invoice_id} (tx {mask_tx_hash(tx_hash)})")
        return tx_hash

    async def refund_invoice(self, ref: InvoiceRef, refunder: Signer) -> str:
        invoice_hash = self._hash_arg(ref)
        current = await self.get_invoice_details(ref)

        # Settled invoices no longer hold funds: the refunder supplies them
        value = 0
        if not current.is_escrow:
            if current.token_address:
                await self._approve_token(
                    current.token_address, refunder, current.amount_base_units
                )
            else:
                value = current.amount_base_units

        tx_hash = await self._send("refundInvoice", [invoice_hash], refunder, value=value)
        receipt = await self._confirm(tx_hash, self.action_confirmations)
        if receipt["status"] != 1:
            raise ChainError(f"refundInvoice {tx_hash} reverted", tx_id=tx_hash)

        logger.success(
            f"Invoice {ref.invoice_id} refunded to {mask_address(current.payer_address)} "
            f"(tx {mask_tx_hash(tx_hash)})"
        )
        return tx_hash

    async def get_invoice_details(self, ref: InvoiceRef) -> InvoiceRecord:
        raw = await self._guard(
            self.client.call("getInvoice", [self._hash_arg(ref)]), "getInvoice"
        )
        (
            recipient,
            creator,
            payer,
            amount,
            due_date,
            _created_at,
            token_address,
            is_paid,
            is_refunded,
            is_escrow,
            is_released,
            fee_bps,
            invoice_id,
            description,
        ) = raw

        if recipient.lower() == ZERO_ADDRESS:
            raise NotFoundError(
                f"Invoice {ref.invoice_id} not found in registry {self.registry_address}",
                reason=abi.REVERT_NOT_FOUND,
            )

        return InvoiceRecord(
            id=invoice_id or ref.invoice_id,
            amount=from_base_units(amount, self.network.decimals),
            amount_base_units=amount,
            recipient_address=recipient,
            creator_address=creator,
            due_date=due_date,
            description=description,
            blockchain=self.blockchain,
            network=self.network.key,
            is_escrow=is_escrow,
            status=status_from_flags(is_paid, is_refunded, is_escrow, is_released),
            payer_address=None if payer.lower() == ZERO_ADDRESS else payer,
            chain_identifier=self.registry_address,
            invoice_hash=ref.invoice_hash,
            token_address=None if token_address.lower() == ZERO_ADDRESS else token_address,
            fee_bps=fee_bps,
        )

    async def is_overdue(self, ref: InvoiceRef) -> bool:
        """Evaluated by the contract against chain time."""
        result = await self._guard(
            self.client.call("isOverdue", [self._hash_arg(ref)]), "isOverdue"
        )
        return bool(result)

    def explorer_url(self, tx_id: str) -> str:
        return self.network.explorer_tx_url(tx_id)

    # ------------------------------------------------------------------
    # Registry administration (owner only)
    # ------------------------------------------------------------------

    async def _admin(self, function: str, args: list[Any], owner: Signer) -> str:
        tx_hash = await self._send(function, args, owner)
        receipt = await self._confirm(tx_hash, self.action_confirmations)
        if receipt["status"] != 1:
            raise ChainError(f"{function} {tx_hash} reverted", tx_id=tx_hash)
        logger.info(f"Registry {function} applied on {self.network.name}")
        return tx_hash

    async def platform_fee(self) -> int:
        return int(await self._guard(self.client.call("platformFee", []), "platformFee"))

    async def update_platform_fee(self, fee_bps: int, owner: Signer) -> str:
        return await self._admin("updatePlatformFee", [validate_fee_bps(fee_bps)], owner)

    async def authorize_token(self, token: str, authorized: bool, owner: Signer) -> str:
        token = normalize_evm_address(token, "token address")
        return await self._admin("authorizeToken", [token, authorized], owner)

    async def pause(self, owner: Signer) -> str:
        return await self._admin("pause", [], owner)

    async def unpause(self, owner: Signer) -> str:
        return await self._admin("unpause", [], owner)
