"""
Algorand adapter.

Each invoice lives in the global state of a stateful application (one
application per invoice unless the caller reuses an existing app id).
Payment is an atomic group of an application call and a plain payment;
refund is an application call that pays the payer back through an inner
transaction.
"""

import copy
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from algosdk import constants as algod_constants
from algosdk import encoding
from algosdk.error import AlgodHTTPError
from algosdk.logic import get_application_address
from algosdk.transaction import (
    ApplicationCreateTxn,
    ApplicationNoOpTxn,
    OnComplete,
    PaymentTxn,
    StateSchema,
    SuggestedParams,
    Transaction,
    assign_group_id,
)
from loguru import logger

from trustinvoice.config.networks import Blockchain, NetworkConfig
from trustinvoice.config.settings import Settings
from trustinvoice.services.chains.algorand.algod import AlgodGateway
from trustinvoice.services.chains.algorand.program import (
    FIELD_AMOUNT,
    FIELD_CREATOR,
    FIELD_DUE_DATE,
    FIELD_PAID,
    FIELD_PAYER,
    FIELD_RECIPIENT,
    FIELD_REFUNDED,
    GLOBAL_BYTE_SLICES,
    GLOBAL_UINTS,
    METHOD_CREATE_INVOICE,
    METHOD_PAY_INVOICE,
    METHOD_REFUND_INVOICE,
    compile_approval_teal,
    compile_clear_teal,
)
from trustinvoice.services.chains.algorand.state import (
    decode_global_state,
    invoice_fields,
)
from trustinvoice.services.chains.base import ChainCapabilities
from trustinvoice.services.chains.signers import Signer
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
    UnauthorizedError,
    ValidationError,
)
from trustinvoice.utils.security import mask_address, mask_tx_hash
from trustinvoice.validators.invoice import (
    from_base_units,
    is_algorand_address,
    to_base_units,
)


T = TypeVar("T")

HTTP_NOT_FOUND = 404


def _uint_arg(value: int) -> bytes:
    return value.to_bytes(8, "big")


def _flat_fee(params: SuggestedParams, fee: int) -> SuggestedParams:
    flat = copy.copy(params)
    flat.flat_fee = True
    flat.fee = fee
    return flat


class AlgorandAdapter:
    """
    Settlement operations against invoice applications on Algorand.

    No escrow: invoices go Created -> Paid -> Refunded. Only the invoice
    creator may refund, and the refund is funded by the creator in the
    same atomic group.
    """

    blockchain = Blockchain.ALGORAND
    capabilities = ChainCapabilities(
        supports_escrow=False,
        refund_roles=frozenset({"creator"}),
    )

    def __init__(
        self,
        network: NetworkConfig,
        client: AlgodGateway,
        settings: Settings,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize Algorand adapter.

        Args:
            network: Algorand network the applications live on
            client: algod gateway (node client or local ledger behind it)
            settings: Confirmation configuration
            clock: Epoch-seconds source for overdue checks
        """
        self.network = network
        self.client = client
        self.wait_rounds = settings.algorand_wait_rounds
        self._clock = clock or (lambda: int(time.time()))
        self._programs: tuple[bytes, bytes] | None = None

    # ------------------------------------------------------------------
    # Transport guards
    # ------------------------------------------------------------------

    async def _guard(
        self, awaitable: Awaitable[T], action: str, tx_id: str | None = None
    ) -> T:
        """Await a gateway call, translating library errors to ChainError."""
        try:
            return await awaitable
        except TRANSPORT_ERRORS as exc:
            logger.error(f"{action} failed on {self.network.name}: {exc}")
            raise ChainError(
                f"{action} failed on {self.network.name}", reason=str(exc), tx_id=tx_id
            ) from exc

    async def _submit(
        self,
        txns: list[Transaction],
        signer: Signer,
        action: str,
        primary: int = 0,
    ) -> tuple[str, dict[str, Any]]:
        """
        Sign, submit and confirm a transaction or atomic group.

        Returns:
            (id of txns[primary], its confirmed pending-transaction info)
        """
        if len(txns) > 1:
            assign_group_id(txns)
        signed = [signer.sign(txn) for txn in txns]
        tx_id = signed[primary].get_txid()
        await self._guard(self.client.send_transactions(signed), action, tx_id)
        info = await self._guard(
            self.client.wait_for_confirmation(tx_id, self.wait_rounds),
            "waiting for confirmation",
            tx_id,
        )
        return tx_id, info

    @staticmethod
    def _app_id(ref: InvoiceRef) -> int:
        try:
            return ref.app_id
        except ValueError as exc:
            raise ValidationError(
                f"Algorand invoice reference {ref.invoice_id} carries no application id"
            ) from exc

    async def _compiled_programs(self) -> tuple[bytes, bytes]:
        if self._programs is None:
            approval = await self._guard(
                self.client.compile(compile_approval_teal()), "compiling approval program"
            )
            clear = await self._guard(
                self.client.compile(compile_clear_teal()), "compiling clear program"
            )
            self._programs = (approval, clear)
        return self._programs

    async def _suggested_params(self) -> SuggestedParams:
        return await self._guard(self.client.suggested_params(), "suggested params")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def deploy_application(self, creator: Signer) -> int:
        """Deploy a fresh invoice application; returns its id."""
        approval, clear = await self._compiled_programs()
        txn = ApplicationCreateTxn(
            creator.address,
            await self._suggested_params(),
            OnComplete.NoOpOC,
            approval,
            clear,
            StateSchema(GLOBAL_UINTS, GLOBAL_BYTE_SLICES),
            StateSchema(0, 0),
        )
        tx_id, info = await self._submit([txn], creator, "deploying application")
        app_id = info.get("application-index")
        if not app_id:
            raise ChainError(
                f"Application deployment {tx_id} returned no application id", tx_id=tx_id
            )
        logger.info(
            f"Invoice application {app_id} deployed on {self.network.name} "
            f"(tx {mask_tx_hash(tx_id)})"
        )
        return int(app_id)

    async def create_invoice(
        self, params: CreateInvoiceParams, creator: Signer
    ) -> InvoiceRecord:
        if params.is_escrow:
            raise ValidationError(
                "Escrow invoices are only supported on EVM chains; "
                "Algorand invoices settle directly on payment"
            )
        if params.token_address:
            raise ValidationError("Token invoices are only supported on EVM chains")
        if not is_algorand_address(params.recipient):
            raise ValidationError(f"Invalid Algorand recipient: {params.recipient}")

        amount = to_base_units(params.amount, self.network.decimals)
        app_id = params.app_id or await self.deploy_application(creator)

        txn = ApplicationNoOpTxn(
            creator.address,
            await self._suggested_params(),
            app_id,
            [
                METHOD_CREATE_INVOICE.encode(),
                params.invoice_id.encode(),
                _uint_arg(amount),
                _uint_arg(params.due_date),
                encoding.decode_address(params.recipient),
            ],
        )
        tx_id, _ = await self._submit([txn], creator, METHOD_CREATE_INVOICE)

        ref = InvoiceRef(
            blockchain=self.blockchain,
            invoice_id=params.invoice_id,
            chain_identifier=str(app_id),
        )
        record = await self.get_invoice_details(ref)
        record.description = params.description
        record.tx_ids.append(tx_id)

        logger.success(
            f"Invoice {params.invoice_id} created in application {app_id} "
            f"for {params.amount} {self.network.native_symbol} to "
            f"{mask_address(params.recipient)} (tx {mask_tx_hash(tx_id)})"
        )
        return record

    async def pay_invoice(self, ref: InvoiceRef, payer: Signer) -> str:
        app_id = self._app_id(ref)
        current = await self.get_invoice_details(ref)
        if current.status is not InvoiceStatus.CREATED:
            raise AlreadyPaidError(f"Invoice {ref.invoice_id} is already {current.status.value}")

        suggested = await self._suggested_params()
        call = ApplicationNoOpTxn(
            payer.address,
            suggested,
            app_id,
            [METHOD_PAY_INVOICE.encode(), ref.invoice_id.encode()],
        )
        transfer = PaymentTxn(
            payer.address,
            suggested,
            current.recipient_address,
            current.amount_base_units,
        )

        try:
            tx_id, _ = await self._submit([call, transfer], payer, METHOD_PAY_INVOICE)
        except ChainError as exc:
            # Rejected group: another payment may have landed first
            latest = await self.get_invoice_details(ref)
            if latest.status is not InvoiceStatus.CREATED:
                raise AlreadyPaidError(
                    f"Invoice {ref.invoice_id} was paid by another transaction",
                    reason=exc.reason,
                    tx_id=exc.tx_id,
                ) from exc
            raise

        logger.success(
            f"Invoice {ref.invoice_id} paid by {mask_address(payer.address)} "
            f"(tx {mask_tx_hash(tx_id)})"
        )
        return tx_id

    async def release_escrow(self, ref: InvoiceRef, releaser: Signer) -> str:
        raise NotEscrowedError(
            f"Invoice {ref.invoice_id}: escrow release is not available on Algorand; "
            "payments settle directly to the recipient"
        )

    async def refund_invoice(self, ref: InvoiceRef, refunder: Signer) -> str:
        app_id = self._app_id(ref)
        current = await self.get_invoice_details(ref)

        suggested = await self._suggested_params()
        min_fee = suggested.min_fee or algod_constants.min_txn_fee
        # The application account holds nothing after payment: the refunder
        # funds it in the same group, the inner payment pays the payer back
        funding = PaymentTxn(
            refunder.address,
            suggested,
            get_application_address(app_id),
            current.amount_base_units,
        )
        call = ApplicationNoOpTxn(
            refunder.address,
            _flat_fee(suggested, 2 * min_fee),
            app_id,
            [METHOD_REFUND_INVOICE.encode(), ref.invoice_id.encode()],
        )

        try:
            tx_id, _ = await self._submit(
                [funding, call], refunder, METHOD_REFUND_INVOICE, primary=1
            )
        except ChainError as exc:
            latest = await self.get_invoice_details(ref)
            if latest.status is InvoiceStatus.REFUNDED:
                raise NotEscrowedError(
                    f"Invoice {ref.invoice_id} is already refunded",
                    reason=exc.reason,
                    tx_id=exc.tx_id,
                ) from exc
            if latest.status is InvoiceStatus.CREATED:
                raise NotEscrowedError(
                    f"Invoice {ref.invoice_id} has not been paid",
                    reason=exc.reason,
                    tx_id=exc.tx_id,
                ) from exc
            if refunder.address != latest.creator_address:
                raise UnauthorizedError(
                    f"Only the creator may refund invoice {ref.invoice_id}",
                    reason=exc.reason,
                    tx_id=exc.tx_id,
                ) from exc
            raise

        logger.success(
            f"Invoice {ref.invoice_id} refunded to {mask_address(current.payer_address)} "
            f"(tx {mask_tx_hash(tx_id)})"
        )
        return tx_id

    async def get_invoice_details(self, ref: InvoiceRef) -> InvoiceRecord:
        app_id = self._app_id(ref)
        try:
            info = await self.client.application_info(app_id)
        except AlgodHTTPError as exc:
            if exc.code == HTTP_NOT_FOUND:
                raise NotFoundError(
                    f"Application {app_id} not found on {self.network.name}",
                    reason=str(exc),
                ) from exc
            raise ChainError(
                f"Reading application {app_id} failed", reason=str(exc)
            ) from exc
        except TRANSPORT_ERRORS as exc:
            raise ChainError(
                f"Reading application {app_id} failed", reason=str(exc)
            ) from exc

        state = decode_global_state(info.get("params", {}).get("global-state", []))
        fields = invoice_fields(state, ref.invoice_id)
        if fields is None:
            raise NotFoundError(f"Invoice {ref.invoice_id} not found in application {app_id}")

        amount = int(fields[FIELD_AMOUNT])
        paid = fields.get(FIELD_PAID) == 1
        payer = fields.get(FIELD_PAYER)

        return InvoiceRecord(
            id=ref.invoice_id,
            amount=from_base_units(amount, self.network.decimals),
            amount_base_units=amount,
            recipient_address=encoding.encode_address(fields[FIELD_RECIPIENT]),
            creator_address=encoding.encode_address(fields[FIELD_CREATOR]),
            due_date=int(fields[FIELD_DUE_DATE]),
            blockchain=self.blockchain,
            network=self.network.key,
            is_escrow=False,
            status=status_from_flags(paid, fields.get(FIELD_REFUNDED) == 1),
            payer_address=(
                encoding.encode_address(payer) if paid and isinstance(payer, bytes) else None
            ),
            chain_identifier=str(app_id),
        )

    async def is_overdue(self, ref: InvoiceRef) -> bool:
        """Evaluated client-side: the ledger exposes no usable clock here."""
        record = await self.get_invoice_details(ref)
        return record.is_overdue(self._clock())

    def explorer_url(self, tx_id: str) -> str:
        return self.network.explorer_tx_url(tx_id)

    async def close(self) -> None:
        await self.client.close()
