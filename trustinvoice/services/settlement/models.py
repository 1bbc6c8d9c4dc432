"""
Settlement data model.

InvoiceRecord is the engine's mutable view of one invoice, UnifiedInvoice the
frozen projection handed to PDF/email/UI collaborators, and InvoiceRef the
handle every post-creation operation takes.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from trustinvoice.config.networks import Blockchain


class InvoiceStatus(str, Enum):
    """Stored invoice status. Overdue is derived, never stored."""

    CREATED = "Created"
    PAID = "Paid"
    ESCROW_HELD = "EscrowHeld"
    RELEASED = "Released"
    REFUNDED = "Refunded"


# Monotonic, acyclic lifecycle
ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.CREATED: frozenset({InvoiceStatus.PAID, InvoiceStatus.ESCROW_HELD}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.REFUNDED}),
    InvoiceStatus.ESCROW_HELD: frozenset({InvoiceStatus.RELEASED, InvoiceStatus.REFUNDED}),
    InvoiceStatus.RELEASED: frozenset(),
    InvoiceStatus.REFUNDED: frozenset(),
}


def is_transition_allowed(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    """Check whether a lifecycle action may move current to target."""
    return target in ALLOWED_TRANSITIONS[current]


def is_reachable(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    """True if target is current or lies downstream of it in the lifecycle."""
    if target is current:
        return True
    return any(is_reachable(step, target) for step in ALLOWED_TRANSITIONS[current])


def status_from_flags(
    paid: bool,
    refunded: bool,
    is_escrow: bool = False,
    released: bool = False,
) -> InvoiceStatus:
    """
    Reconstruct status from the booleans stored on chain.

    Args:
        paid: Payment recorded
        refunded: Refund recorded
        is_escrow: Invoice holds funds until release (EVM only)
        released: Escrow released (EVM only)

    Returns:
        Stored invoice status
    """
    if refunded:
        return InvoiceStatus.REFUNDED
    if released:
        return InvoiceStatus.RELEASED
    if paid:
        return InvoiceStatus.ESCROW_HELD if is_escrow else InvoiceStatus.PAID
    return InvoiceStatus.CREATED


class InvoiceRef(BaseModel):
    """Handle identifying one invoice on one chain."""

    model_config = ConfigDict(frozen=True)

    blockchain: Blockchain
    invoice_id: str
    chain_identifier: str = Field(
        ..., description="Registry contract address (EVM) or application id (Algorand)"
    )
    invoice_hash: str | None = Field(
        default=None, description="Registry key (EVM only)"
    )

    @property
    def key(self) -> str:
        """Cache key unique across chains and applications."""
        locator = self.invoice_hash or self.invoice_id
        return f"{self.blockchain.value}:{self.chain_identifier.lower()}:{locator.lower()}"

    @property
    def app_id(self) -> int:
        """Algorand application id carried by this reference."""
        return int(self.chain_identifier)


class CreateInvoiceParams(BaseModel):
    """Input for SettlementEngine.create_invoice."""

    invoice_id: str
    recipient: str
    amount: Decimal = Field(..., description="Amount in native currency units")
    due_date: int = Field(..., description="Epoch seconds")
    description: str = ""
    blockchain: Blockchain
    is_escrow: bool = False
    token_address: str | None = Field(
        default=None, description="ERC20 token for token invoices (EVM only)"
    )
    app_id: int | None = Field(
        default=None, description="Existing Algorand application to create the invoice in"
    )


class UnifiedInvoice(BaseModel):
    """Read-only invoice projection returned by every engine read."""

    model_config = ConfigDict(frozen=True)

    id: str
    amount: Decimal
    recipient: str
    creator: str
    due_date: int
    description: str = ""
    blockchain: Blockchain
    network: str
    is_escrow: bool
    status: InvoiceStatus
    payer: str | None = None
    chain_identifier: str
    invoice_hash: str | None = None
    token_address: str | None = None
    tx_ids: tuple[str, ...] = ()
    fee_bps: int = 0
    fee_amount: Decimal = Decimal("0")
    explorer_url: str = ""

    @property
    def paid(self) -> bool:
        return self.status is not InvoiceStatus.CREATED

    @property
    def refunded(self) -> bool:
        return self.status is InvoiceStatus.REFUNDED

    @property
    def ref(self) -> InvoiceRef:
        return InvoiceRef(
            blockchain=self.blockchain,
            invoice_id=self.id,
            chain_identifier=self.chain_identifier,
            invoice_hash=self.invoice_hash,
        )

    def is_overdue(self, now: int) -> bool:
        return now > self.due_date and self.status is InvoiceStatus.CREATED


class InvoiceRecord(BaseModel):
    """Engine-side invoice state reconstructed from chain reads."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    amount: Decimal = Field(..., gt=0)
    amount_base_units: int = Field(..., gt=0, description="wei or microAlgos")
    recipient_address: str
    creator_address: str
    due_date: int
    description: str = ""
    blockchain: Blockchain
    network: str
    is_escrow: bool = False
    status: InvoiceStatus = InvoiceStatus.CREATED
    payer_address: str | None = None
    chain_identifier: str
    invoice_hash: str | None = None
    token_address: str | None = None
    tx_ids: list[str] = Field(default_factory=list)
    fee_bps: int = Field(default=0, ge=0)
    fee_amount: Decimal = Decimal("0")

    @property
    def ref(self) -> InvoiceRef:
        return InvoiceRef(
            blockchain=self.blockchain,
            invoice_id=self.id,
            chain_identifier=self.chain_identifier,
            invoice_hash=self.invoice_hash,
        )

    def is_overdue(self, now: int) -> bool:
        """Unpaid and past due."""
        return now > self.due_date and self.status is InvoiceStatus.CREATED

    def project(self, explorer_url: str = "") -> UnifiedInvoice:
        """Freeze this record into the read model."""
        return UnifiedInvoice(
            id=self.id,
            amount=self.amount,
            recipient=self.recipient_address,
            creator=self.creator_address,
            due_date=self.due_date,
            description=self.description,
            blockchain=self.blockchain,
            network=self.network,
            is_escrow=self.is_escrow,
            status=self.status,
            payer=self.payer_address,
            chain_identifier=self.chain_identifier,
            invoice_hash=self.invoice_hash,
            token_address=self.token_address,
            tx_ids=tuple(self.tx_ids),
            fee_bps=self.fee_bps,
            fee_amount=self.fee_amount,
            explorer_url=explorer_url,
        )
