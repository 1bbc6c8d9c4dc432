"""
Invoice validation.

Local checks performed before any transaction is built: amounts, due dates,
identifiers and chain-specific address formats. Chain-side rejection remains
authoritative; these checks only avoid wasting a transaction.
"""

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from algosdk import encoding as algorand_encoding
from web3 import Web3

from trustinvoice.config.constants import (
    ALGORAND_MAX_INVOICE_ID_BYTES,
    MAX_DESCRIPTION_LENGTH,
    MAX_INVOICE_ID_LENGTH,
    ZERO_ADDRESS,
)
from trustinvoice.config.networks import Blockchain
from trustinvoice.utils.exceptions import ValidationError


if TYPE_CHECKING:
    from trustinvoice.services.settlement.models import CreateInvoiceParams


def to_base_units(amount: Decimal, decimals: int) -> int:
    """
    Convert a native-currency amount to integer base units.

    Args:
        amount: Amount in native units (e.g. ETH, ALGO)
        decimals: Currency decimals (18 for ETH, 6 for ALGO)

    Returns:
        Amount in base units (wei, microAlgos)

    Raises:
        ValidationError: If the amount is not representable exactly

    Example:
        >>> to_base_units(Decimal("1.5"), 6)
        1500000
    """
    try:
        scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc

    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {amount} has more than {decimals} decimal places"
        )
    return int(scaled)


def from_base_units(units: int, decimals: int) -> Decimal:
    """
    Convert integer base units back to native-currency units.

    Example:
        >>> from_base_units(97_500_000, 6)
        Decimal('97.5')
    """
    return Decimal(units) / (Decimal(10) ** decimals)


def is_evm_address(address: str | None) -> bool:
    """Validate 0x-prefixed 20-byte hex address (checksum not enforced)."""
    if not address:
        return False
    return Web3.is_address(address)


def is_algorand_address(address: str | None) -> bool:
    """Validate a 58-character Algorand address with checksum."""
    if not address:
        return False
    return algorand_encoding.is_valid_address(address)


def normalize_evm_address(address: str, field: str = "address") -> str:
    """
    Checksum an EVM address.

    Raises:
        ValidationError: If the address is malformed or the zero address
    """
    if not is_evm_address(address):
        raise ValidationError(f"Invalid EVM {field}: {address!r}")
    if address.lower() == ZERO_ADDRESS:
        raise ValidationError(f"EVM {field} must not be the zero address")
    return Web3.to_checksum_address(address)


def same_address(first: str | None, second: str | None) -> bool:
    """
    Compare two addresses.

    EVM addresses compare case-insensitively; Algorand addresses are
    base32 and compare exactly.
    """
    if not first or not second:
        return False
    if first.startswith("0x") and second.startswith("0x"):
        return first.lower() == second.lower()
    return first == second


def validate_invoice_id(invoice_id: str, blockchain: Blockchain) -> str:
    """
    Validate caller-supplied invoice id.

    Algorand ids are bounded by the 64-byte global state key limit.
    """
    if not invoice_id or not invoice_id.strip():
        raise ValidationError("Invoice id must not be empty")
    if len(invoice_id) > MAX_INVOICE_ID_LENGTH:
        raise ValidationError(
            f"Invoice id longer than {MAX_INVOICE_ID_LENGTH} characters"
        )
    if blockchain is Blockchain.ALGORAND:
        if len(invoice_id.encode()) > ALGORAND_MAX_INVOICE_ID_BYTES:
            raise ValidationError(
                f"Algorand invoice id longer than {ALGORAND_MAX_INVOICE_ID_BYTES} bytes"
            )
    return invoice_id


def validate_create_params(params: "CreateInvoiceParams", now: int) -> None:
    """
    Validate invoice creation input before anything is submitted.

    Args:
        params: Creation parameters
        now: Current epoch seconds

    Raises:
        ValidationError: On the first violated rule
    """
    if params.amount <= 0:
        raise ValidationError(f"Amount must be positive, got {params.amount}")

    if params.due_date <= now:
        raise ValidationError(
            f"Due date must be in the future (due {params.due_date}, now {now})"
        )

    validate_invoice_id(params.invoice_id, params.blockchain)

    if len(params.description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description longer than {MAX_DESCRIPTION_LENGTH} characters"
        )

    if params.blockchain.is_evm:
        normalize_evm_address(params.recipient, "recipient")
        if params.token_address is not None:
            normalize_evm_address(params.token_address, "token address")
        if params.app_id is not None:
            raise ValidationError("app_id only applies to Algorand invoices")
        return

    if not is_algorand_address(params.recipient):
        raise ValidationError(f"Invalid Algorand recipient: {params.recipient!r}")
    if params.is_escrow:
        raise ValidationError(
            "Escrow is only supported on EVM chains; Algorand invoices settle directly"
        )
    if params.token_address is not None:
        raise ValidationError("Token invoices are only supported on EVM chains")
    if params.app_id is not None and params.app_id <= 0:
        raise ValidationError(f"Invalid Algorand application id: {params.app_id}")
