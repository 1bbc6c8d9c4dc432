"""
TrustInvoice settlement engine.

Creates, pays, escrows, releases and refunds invoices on EVM registries
(Ethereum, Polygon) and Algorand applications behind one engine.

Example:
    >>> from trustinvoice import create_settlement_engine
    >>> engine = create_settlement_engine()
    >>> engine.supported_blockchains()
    [<Blockchain.ETHEREUM: 'ethereum'>, <Blockchain.POLYGON: 'polygon'>, <Blockchain.ALGORAND: 'algorand'>]
"""

from trustinvoice.bootstrap import create_settlement_engine
from trustinvoice.config.networks import Blockchain
from trustinvoice.services.settlement.engine import SettlementEngine
from trustinvoice.services.settlement.models import (
    CreateInvoiceParams,
    InvoiceRef,
    InvoiceStatus,
    UnifiedInvoice,
)


__version__ = "1.0.0"
__all__ = [
    "Blockchain",
    "CreateInvoiceParams",
    "InvoiceRef",
    "InvoiceStatus",
    "SettlementEngine",
    "UnifiedInvoice",
    "create_settlement_engine",
]
