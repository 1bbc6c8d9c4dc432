"""Chain-agnostic settlement: invoice model, fee arithmetic and confirmation."""

from trustinvoice.services.settlement.confirmation import TransactionConfirmationWaiter
from trustinvoice.services.settlement.fees import FeeCalculator, FeeSplit, calculate_fee
from trustinvoice.services.settlement.models import (
    CreateInvoiceParams,
    InvoiceRecord,
    InvoiceRef,
    InvoiceStatus,
    UnifiedInvoice,
)


__all__ = [
    "CreateInvoiceParams",
    "FeeCalculator",
    "FeeSplit",
    "InvoiceRecord",
    "InvoiceRef",
    "InvoiceStatus",
    "TransactionConfirmationWaiter",
    "UnifiedInvoice",
    "calculate_fee",
]
