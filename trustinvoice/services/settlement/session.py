"""
Chain session.

A session bundles one blockchain's adapter with the invoices read or written
through it. The engine keeps one session per blockchain; switching the active
chain discards its session, since identifiers never carry across chains.
"""

from dataclasses import dataclass, field

from trustinvoice.config.networks import Blockchain
from trustinvoice.services.chains.base import ChainAdapter
from trustinvoice.services.settlement.models import InvoiceRecord, InvoiceRef


@dataclass
class ChainSession:
    blockchain: Blockchain
    adapter: ChainAdapter
    invoices: dict[str, InvoiceRecord] = field(default_factory=dict)

    def cached(self, ref: InvoiceRef) -> InvoiceRecord | None:
        return self.invoices.get(ref.key)

    def remember(self, record: InvoiceRecord) -> InvoiceRecord:
        self.invoices[record.ref.key] = record
        return record
