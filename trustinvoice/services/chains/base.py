"""
Chain adapter capability interface.

Adapters are selected by blockchain value, not by inheritance: anything that
provides these coroutines can settle invoices for the engine.
"""

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from trustinvoice.config.networks import Blockchain, NetworkConfig
from trustinvoice.services.chains.signers import Signer
from trustinvoice.services.settlement.models import (
    CreateInvoiceParams,
    InvoiceRecord,
    InvoiceRef,
)


class ChainCapabilities(BaseModel):
    """What a chain supports beyond the common lifecycle."""

    model_config = ConfigDict(frozen=True)

    supports_escrow: bool
    # Invoice roles allowed to refund: "creator", "recipient"
    refund_roles: frozenset[str]


@runtime_checkable
class ChainAdapter(Protocol):
    """Chain-specific encoding and submission of the invoice state machine."""

    blockchain: Blockchain
    network: NetworkConfig
    capabilities: ChainCapabilities

    async def create_invoice(
        self, params: CreateInvoiceParams, creator: Signer
    ) -> InvoiceRecord:
        ...

    async def pay_invoice(self, ref: InvoiceRef, payer: Signer) -> str:
        ...

    async def release_escrow(self, ref: InvoiceRef, releaser: Signer) -> str:
        ...

    async def refund_invoice(self, ref: InvoiceRef, refunder: Signer) -> str:
        ...

    async def get_invoice_details(self, ref: InvoiceRef) -> InvoiceRecord:
        ...

    async def is_overdue(self, ref: InvoiceRef) -> bool:
        ...

    def explorer_url(self, tx_id: str) -> str:
        ...
