"""
Settlement engine.

Orchestrates the invoice lifecycle across chains:
- Local validation and authorization checks before anything is submitted
- Delegation to the adapter of the invoice's blockchain
- Reconstruction of the invoice from chain state after every action
"""

import time
from collections.abc import Callable

from loguru import logger

from trustinvoice.config.networks import Blockchain
from trustinvoice.config.settings import Settings, get_settings
from trustinvoice.services.chains.factory import (
    AdapterFactory,
    settings_adapter_factory,
    supported_blockchains,
)
from trustinvoice.services.chains.signers import Signer
from trustinvoice.services.settlement.fees import FeeCalculator
from trustinvoice.services.settlement.models import (
    CreateInvoiceParams,
    InvoiceRecord,
    InvoiceRef,
    InvoiceStatus,
    UnifiedInvoice,
    is_reachable,
    is_transition_allowed,
)
from trustinvoice.services.settlement.session import ChainSession
from trustinvoice.utils.exceptions import (
    AlreadyPaidError,
    NotEscrowedError,
    UnauthorizedError,
    ValidationError,
)
from trustinvoice.utils.security import mask_address
from trustinvoice.validators.invoice import (
    from_base_units,
    same_address,
    validate_create_params,
)


class SettlementEngine:
    """
    Cross-chain invoice settlement.

    Each blockchain gets its own session, opened on first use. Operations
    run on the session of the invoice's blockchain and never change the
    active chain; only switch_chain does. Callers must not switch chains
    while operations on the previous chain are in flight.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        adapter_factory: AdapterFactory | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize settlement engine.

        Args:
            settings: Engine configuration (defaults to the global settings)
            adapter_factory: Builds the adapter for a blockchain
            clock: Epoch-seconds source for due-date checks
        """
        self.settings = settings or get_settings()
        self._factory = adapter_factory or settings_adapter_factory(self.settings)
        self._clock = clock or (lambda: int(time.time()))
        self._active = self.settings.default_blockchain
        self._sessions: dict[Blockchain, ChainSession] = {
            self._active: self._open(self._active),
        }

    @property
    def active_blockchain(self) -> Blockchain:
        return self._active

    @property
    def _session(self) -> ChainSession:
        return self._sessions[self._active]

    def supported_blockchains(self) -> list[Blockchain]:
        return supported_blockchains()

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def _open(self, blockchain: Blockchain) -> ChainSession:
        return ChainSession(blockchain=blockchain, adapter=self._factory(blockchain))

    @staticmethod
    async def _close(session: ChainSession) -> None:
        close = getattr(session.adapter, "close", None)
        if close is not None:
            await close()

    async def switch_chain(self, blockchain: Blockchain) -> None:
        """
        Point the engine at another blockchain.

        The previous active session and any session already open on the
        target are discarded with their invoice caches.
        """
        if blockchain not in self.supported_blockchains():
            raise ValidationError(f"Unsupported blockchain: {blockchain}")

        previous = self._sessions.pop(self._active)
        stale = self._sessions.pop(blockchain, None)
        self._sessions[blockchain] = self._open(blockchain)
        self._active = blockchain

        await self._close(previous)
        if stale is not None:
            await self._close(stale)
        logger.info(
            f"Settlement session switched {previous.blockchain.value} -> {blockchain.value} "
            f"({self._session.adapter.network.name})"
        )

    def _session_for(self, blockchain: Blockchain) -> ChainSession:
        """Session of blockchain, opened alongside the active one if needed."""
        session = self._sessions.get(blockchain)
        if session is None:
            session = self._sessions[blockchain] = self._open(blockchain)
            logger.info(
                f"Opened {blockchain.value} session ({session.adapter.network.name}); "
                f"{self._active.value} stays active"
            )
        return session

    async def close(self) -> None:
        for session in list(self._sessions.values()):
            await self._close(session)

    # ------------------------------------------------------------------
    # Record bookkeeping
    # ------------------------------------------------------------------

    def _with_fee(self, session: ChainSession, record: InvoiceRecord) -> InvoiceRecord:
        fee = FeeCalculator(record.fee_bps).fee(record.amount_base_units)
        record.fee_amount = from_base_units(fee, session.adapter.network.decimals)
        return record

    def _merge(
        self, session: ChainSession, record: InvoiceRecord, tx_id: str | None = None
    ) -> InvoiceRecord:
        """Fold a fresh chain read into the session cache."""
        previous = session.cached(record.ref)
        if previous is not None:
            if not is_reachable(previous.status, record.status):
                logger.warning(
                    f"Invoice {record.id} read back as {record.status.value} "
                    f"after {previous.status.value}; keeping chain state"
                )
            record.tx_ids = list(previous.tx_ids)
            if not record.description:
                record.description = previous.description
        if tx_id and tx_id not in record.tx_ids:
            record.tx_ids.append(tx_id)
        return session.remember(self._with_fee(session, record))

    def _project(self, session: ChainSession, record: InvoiceRecord) -> UnifiedInvoice:
        latest_tx = record.tx_ids[-1] if record.tx_ids else ""
        return record.project(session.adapter.explorer_url(latest_tx))

    async def _current(self, session: ChainSession, ref: InvoiceRef) -> InvoiceRecord:
        """
        Cached record, re-read from chain when it may be behind.

        Created is the only cached status that can block a valid action:
        the chain may already have moved on.
        """
        cached = session.cached(ref)
        if cached is not None and cached.status is not InvoiceStatus.CREATED:
            return cached
        return self._merge(session, await session.adapter.get_invoice_details(ref))

    async def _after_action(
        self, session: ChainSession, ref: InvoiceRef, tx_id: str
    ) -> InvoiceRecord:
        return self._merge(session, await session.adapter.get_invoice_details(ref), tx_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_invoice(
        self, params: CreateInvoiceParams, creator: Signer
    ) -> UnifiedInvoice:
        """
        Create an invoice on params.blockchain.

        Raises:
            ValidationError: Before submission, on invalid input
        """
        validate_create_params(params, now=self._clock())
        session = self._session_for(params.blockchain)
        if params.is_escrow and not session.adapter.capabilities.supports_escrow:
            raise ValidationError(f"Escrow is not supported on {params.blockchain.value}")

        record = await session.adapter.create_invoice(params, creator)
        record = self._merge(session, record)
        logger.info(
            f"Invoice {record.id} recorded on {params.blockchain.value} "
            f"at {record.chain_identifier}"
        )
        return self._project(session, record)

    async def pay_invoice(self, ref: InvoiceRef, payer: Signer) -> str:
        """
        Pay an invoice with exactly its amount.

        Raises:
            AlreadyPaidError: If the cache or the chain shows a prior payment
        """
        session = self._session_for(ref.blockchain)
        cached = session.cached(ref)
        if cached is not None and cached.status is not InvoiceStatus.CREATED:
            raise AlreadyPaidError(f"Invoice {ref.invoice_id} is already {cached.status.value}")

        tx_id = await session.adapter.pay_invoice(ref, payer)
        record = await self._after_action(session, ref, tx_id)
        logger.info(
            f"Invoice {ref.invoice_id} is {record.status.value} "
            f"(payer {mask_address(record.payer_address)})"
        )
        return tx_id

    async def release_escrow(self, ref: InvoiceRef, releaser: Signer) -> str:
        """
        Release escrowed funds to the recipient.

        Raises:
            NotEscrowedError: If the invoice is not holding escrow
            UnauthorizedError: If the releaser is not the recipient
        """
        session = self._session_for(ref.blockchain)
        if not session.adapter.capabilities.supports_escrow:
            raise NotEscrowedError(
                f"Escrow release is not available on {ref.blockchain.value}"
            )

        record = await self._current(session, ref)
        if not record.is_escrow:
            raise NotEscrowedError(f"Invoice {ref.invoice_id} is not an escrow invoice")
        if not is_transition_allowed(record.status, InvoiceStatus.RELEASED):
            raise NotEscrowedError(
                f"Invoice {ref.invoice_id} is {record.status.value}, not holding escrow"
            )
        if not same_address(releaser.address, record.recipient_address):
            raise UnauthorizedError(
                f"Only the recipient may release escrow for invoice {ref.invoice_id}"
            )

        tx_id = await session.adapter.release_escrow(ref, releaser)
        await self._after_action(session, ref, tx_id)
        return tx_id

    async def refund_invoice(self, ref: InvoiceRef, refunder: Signer) -> str:
        """
        Refund the full amount to the payer.

        Raises:
            NotEscrowedError: If the invoice is not Paid or EscrowHeld
            UnauthorizedError: If the refunder holds no refund role
        """
        session = self._session_for(ref.blockchain)
        record = await self._current(session, ref)
        if not is_transition_allowed(record.status, InvoiceStatus.REFUNDED):
            raise NotEscrowedError(
                f"Invoice {ref.invoice_id} is {record.status.value} and cannot be refunded"
            )

        roles: set[str] = set()
        if same_address(refunder.address, record.creator_address):
            roles.add("creator")
        if same_address(refunder.address, record.recipient_address):
            roles.add("recipient")
        allowed = session.adapter.capabilities.refund_roles
        if not roles & allowed:
            raise UnauthorizedError(
                f"Refund of invoice {ref.invoice_id} requires role "
                f"{' or '.join(sorted(allowed))}"
            )

        tx_id = await session.adapter.refund_invoice(ref, refunder)
        await self._after_action(session, ref, tx_id)
        return tx_id

    async def get_invoice_details(self, ref: InvoiceRef) -> UnifiedInvoice:
        """
        Read an invoice from chain and refresh the cache.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        session = self._session_for(ref.blockchain)
        record = self._merge(session, await session.adapter.get_invoice_details(ref))
        return self._project(session, record)

    async def is_overdue(self, ref: InvoiceRef) -> bool:
        """Unpaid and past due. Never touches the cache."""
        session = self._session_for(ref.blockchain)
        return await session.adapter.is_overdue(ref)

    def explorer_url(self, tx_id: str, blockchain: Blockchain | None = None) -> str:
        """Explorer link for a transaction; opens no session."""
        session = self._sessions.get(blockchain or self._active)
        if session is not None:
            return session.adapter.explorer_url(tx_id)
        return self.settings.network_for(blockchain).explorer_tx_url(tx_id)
