"""Input validation shared by the engine and the chain adapters."""

from trustinvoice.validators.invoice import (
    from_base_units,
    is_algorand_address,
    is_evm_address,
    normalize_evm_address,
    same_address,
    to_base_units,
    validate_create_params,
    validate_invoice_id,
)


__all__ = [
    "from_base_units",
    "is_algorand_address",
    "is_evm_address",
    "normalize_evm_address",
    "same_address",
    "to_base_units",
    "validate_create_params",
    "validate_invoice_id",
]
