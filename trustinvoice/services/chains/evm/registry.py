"""
TrustInvoice registry state machine.

Python rendition of the registry contract. It enforces exactly the rules the
deployed contract enforces (exact-amount payment, single payment, escrow
release by the recipient, refunds by creator or recipient, owner-only
administration) and reverts with the contract's reason strings. Value
movement is delegated to a Bank so the same machine can run on any
balance store.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from web3 import Web3
from web3.exceptions import ContractLogicError

from trustinvoice.config.constants import DEFAULT_FEE_BPS, ZERO_ADDRESS
from trustinvoice.services.chains.evm import abi
from trustinvoice.services.settlement.fees import FeeCalculator
from trustinvoice.utils.exceptions import ValidationError


class Bank(Protocol):
    """Balance store the registry moves value through."""

    def transfer_native(self, src: str, dst: str, amount: int) -> None:
        ...

    def transfer_token(self, token: str, src: str, dst: str, amount: int) -> None:
        ...

    def transfer_token_from(
        self, token: str, spender: str, owner: str, dst: str, amount: int
    ) -> None:
        ...


@dataclass(frozen=True)
class CallContext:
    """msg.sender, msg.value and block.timestamp of one call."""

    sender: str
    value: int = 0
    timestamp: int = 0


@dataclass
class RegistryInvoice:
    """Storage slot of one invoice."""

    invoice_id: str
    recipient: str
    creator: str
    amount: int
    due_date: int
    created_at: int
    token_address: str = ZERO_ADDRESS
    is_escrow: bool = False
    description: str = ""
    payer: str = ZERO_ADDRESS
    is_paid: bool = False
    is_refunded: bool = False
    is_released: bool = False
    fee_bps: int = 0

    def as_tuple(self) -> tuple:
        """getInvoice() return value, in ABI component order."""
        return (
            self.recipient,
            self.creator,
            self.payer,
            self.amount,
            self.due_date,
            self.created_at,
            self.token_address,
            self.is_paid,
            self.is_refunded,
            self.is_escrow,
            self.is_released,
            self.fee_bps,
            self.invoice_id,
            self.description,
        )


@dataclass
class RegistryEvent:
    """Log entry emitted by a registry call."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)


def revert(reason: str) -> ContractLogicError:
    """Build the error web3 raises for a reverted call."""
    return ContractLogicError(f"execution reverted: {reason}")


def require(condition: bool, reason: str) -> None:
    if not condition:
        raise revert(reason)


def compute_invoice_hash(
    invoice_id: str, recipient: str, amount: int, due_date: int, salt: int
) -> str:
    """keccak256(abi.encodePacked(invoiceId, recipient, amount, dueDate, salt))"""
    digest = Web3.solidity_keccak(
        ["string", "address", "uint256", "uint256", "uint256"],
        [invoice_id, recipient, amount, due_date, salt],
    )
    return Web3.to_hex(digest)


def _is_zero(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


class TrustInvoiceRegistry:
    """
    Registry holding many invoices keyed by invoice hash.

    State:
    - owner: may change the fee, authorize tokens and pause
    - fee_recipient: receives the platform fee
    - platform_fee_bps: rate captured into each invoice at payment
    """

    def __init__(
        self,
        address: str,
        owner: str,
        bank: Bank,
        fee_recipient: str | None = None,
        platform_fee_bps: int = DEFAULT_FEE_BPS,
    ) -> None:
        self.address = Web3.to_checksum_address(address)
        self.owner = Web3.to_checksum_address(owner)
        self.fee_recipient = Web3.to_checksum_address(fee_recipient or owner)
        self.bank = bank
        self.fees = FeeCalculator(platform_fee_bps)
        self.paused = False
        self.authorized_tokens: set[str] = set()
        self.invoices: dict[str, RegistryInvoice] = {}
        self.invoice_ids: set[str] = set()
        self.events: list[RegistryEvent] = []

    # ------------------------------------------------------------------
    # Modifiers
    # ------------------------------------------------------------------

    def _only_owner(self, ctx: CallContext) -> None:
        require(ctx.sender.lower() == self.owner.lower(), abi.REVERT_NOT_OWNER)

    def _when_not_paused(self) -> None:
        require(not self.paused, abi.REVERT_PAUSED)

    def _invoice(self, invoice_hash: str) -> RegistryInvoice:
        invoice = self.invoices.get(invoice_hash.lower())
        require(invoice is not None, abi.REVERT_NOT_FOUND)
        return invoice

    def _emit(self, name: str, **args: Any) -> None:
        self.events.append(RegistryEvent(name=name, args=args))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        ctx: CallContext,
        invoice_id: str,
        recipient: str,
        amount: int,
        due_date: int,
        token_address: str = ZERO_ADDRESS,
        is_escrow: bool = False,
        description: str = "",
    ) -> str:
        self._when_not_paused()
        require(ctx.value == 0, abi.REVERT_WRONG_AMOUNT)
        require(not _is_zero(recipient), abi.REVERT_INVALID_RECIPIENT)
        require(amount > 0, abi.REVERT_ZERO_AMOUNT)
        require(due_date > ctx.timestamp, abi.REVERT_PAST_DUE_DATE)
        require(invoice_id not in self.invoice_ids, abi.REVERT_DUPLICATE_ID)
        if not _is_zero(token_address):
            require(
                Web3.to_checksum_address(token_address) in self.authorized_tokens,
                abi.REVERT_TOKEN_NOT_AUTHORIZED,
            )

        invoice_hash = compute_invoice_hash(
            invoice_id, recipient, amount, due_date, ctx.timestamp
        )
        self.invoices[invoice_hash.lower()] = RegistryInvoice(
            invoice_id=invoice_id,
            recipient=Web3.to_checksum_address(recipient),
            creator=Web3.to_checksum_address(ctx.sender),
            amount=amount,
            due_date=due_date,
            created_at=ctx.timestamp,
            token_address=Web3.to_checksum_address(token_address),
            is_escrow=is_escrow,
            description=description,
        )
        self.invoice_ids.add(invoice_id)
        self._emit(
            "InvoiceCreated",
            invoiceHash=invoice_hash,
            invoiceId=invoice_id,
            recipient=Web3.to_checksum_address(recipient),
            amount=amount,
            dueDate=due_date,
            tokenAddress=Web3.to_checksum_address(token_address),
        )
        return invoice_hash

    def pay_invoice(self, ctx: CallContext, invoice_hash: str) -> None:
        self._when_not_paused()
        invoice = self._invoice(invoice_hash)
        require(not invoice.is_paid, abi.REVERT_ALREADY_PAID)
        require(not invoice.is_refunded, abi.REVERT_ALREADY_REFUNDED)

        split = self.fees.split(invoice.amount)
        native = _is_zero(invoice.token_address)

        if native:
            require(ctx.value == invoice.amount, abi.REVERT_WRONG_AMOUNT)
            # msg.value already sits on the registry account
            if not invoice.is_escrow:
                self.bank.transfer_native(self.address, invoice.recipient, split.net)
                if split.fee:
                    self.bank.transfer_native(self.address, self.fee_recipient, split.fee)
        else:
            require(ctx.value == 0, abi.REVERT_WRONG_AMOUNT)
            token = invoice.token_address
            if invoice.is_escrow:
                self.bank.transfer_token_from(
                    token, self.address, ctx.sender, self.address, invoice.amount
                )
            else:
                self.bank.transfer_token_from(
                    token, self.address, ctx.sender, invoice.recipient, split.net
                )
                if split.fee:
                    self.bank.transfer_token_from(
                        token, self.address, ctx.sender, self.fee_recipient, split.fee
                    )

        invoice.is_paid = True
        invoice.payer = Web3.to_checksum_address(ctx.sender)
        invoice.fee_bps = self.fees.fee_bps
        self._emit(
            "InvoicePaid",
            invoiceHash=invoice_hash,
            invoiceId=invoice.invoice_id,
            payer=invoice.payer,
            amount=invoice.amount,
            fee=split.fee,
        )

    def release_escrow(self, ctx: CallContext, invoice_hash: str) -> None:
        self._when_not_paused()
        invoice = self._invoice(invoice_hash)
        require(invoice.is_escrow, abi.REVERT_NOT_ESCROW)
        require(
            ctx.sender.lower() == invoice.recipient.lower(), abi.REVERT_ONLY_RECIPIENT
        )
        require(invoice.is_paid, abi.REVERT_NOT_PAID)
        require(not invoice.is_released, abi.REVERT_ALREADY_RELEASED)
        require(not invoice.is_refunded, abi.REVERT_ALREADY_REFUNDED)

        split = FeeCalculator(invoice.fee_bps).split(invoice.amount)
        if _is_zero(invoice.token_address):
            self.bank.transfer_native(self.address, invoice.recipient, split.net)
            if split.fee:
                self.bank.transfer_native(self.address, self.fee_recipient, split.fee)
        else:
            self.bank.transfer_token(
                invoice.token_address, self.address, invoice.recipient, split.net
            )
            if split.fee:
                self.bank.transfer_token(
                    invoice.token_address, self.address, self.fee_recipient, split.fee
                )

        invoice.is_released = True
        self._emit(
            "EscrowReleased",
            invoiceHash=invoice_hash,
            recipient=invoice.recipient,
            amount=split.net,
        )

    def refund_invoice(self, ctx: CallContext, invoice_hash: str) -> None:
        """
        Return the full amount to the payer.

        Escrow invoices refund from the held funds. Settled non-escrow
        invoices have nothing left on the registry, so the refunder supplies
        the amount (msg.value, or an approved token transfer).
        """
        self._when_not_paused()
        invoice = self._invoice(invoice_hash)
        sender = ctx.sender.lower()
        require(
            sender in (invoice.creator.lower(), invoice.recipient.lower()),
            abi.REVERT_NOT_AUTHORIZED_REFUND,
        )
        require(invoice.is_paid, abi.REVERT_NOT_PAID)
        require(not invoice.is_refunded, abi.REVERT_ALREADY_REFUNDED)
        require(not invoice.is_released, abi.REVERT_ALREADY_RELEASED)

        native = _is_zero(invoice.token_address)
        if invoice.is_escrow:
            require(ctx.value == 0, abi.REVERT_WRONG_AMOUNT)
            if native:
                self.bank.transfer_native(self.address, invoice.payer, invoice.amount)
            else:
                self.bank.transfer_token(
                    invoice.token_address, self.address, invoice.payer, invoice.amount
                )
        elif native:
            require(ctx.value == invoice.amount, abi.REVERT_WRONG_AMOUNT)
            self.bank.transfer_native(self.address, invoice.payer, invoice.amount)
        else:
            require(ctx.value == 0, abi.REVERT_WRONG_AMOUNT)
            self.bank.transfer_token_from(
                invoice.token_address,
                self.address,
                ctx.sender,
                invoice.payer,
                invoice.amount,
            )

        invoice.is_refunded = True
        self._emit(
            "InvoiceRefunded",
            invoiceHash=invoice_hash,
            payer=invoice.payer,
            amount=invoice.amount,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_hash: str) -> tuple:
        return self._invoice(invoice_hash).as_tuple()

    def is_overdue(self, invoice_hash: str, timestamp: int) -> bool:
        invoice = self._invoice(invoice_hash)
        return timestamp > invoice.due_date and not invoice.is_paid

    def platform_fee(self) -> int:
        return self.fees.fee_bps

    def is_token_authorized(self, token: str) -> bool:
        return Web3.to_checksum_address(token) in self.authorized_tokens

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def update_platform_fee(self, ctx: CallContext, new_fee: int) -> None:
        self._only_owner(ctx)
        try:
            self.fees = self.fees.with_fee_bps(new_fee)
        except ValidationError as exc:
            raise revert(abi.REVERT_INVALID_FEE) from exc

    def authorize_token(self, ctx: CallContext, token: str, authorized: bool) -> None:
        self._only_owner(ctx)
        checksum = Web3.to_checksum_address(token)
        if authorized:
            self.authorized_tokens.add(checksum)
        else:
            self.authorized_tokens.discard(checksum)

    def pause(self, ctx: CallContext) -> None:
        self._only_owner(ctx)
        self.paused = True

    def unpause(self, ctx: CallContext) -> None:
        self._only_owner(ctx)
        self.paused = False
