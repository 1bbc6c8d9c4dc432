"""EVM settlement: registry ABI, clients and adapter."""

from trustinvoice.services.chains.evm.adapter import EVMAdapter
from trustinvoice.services.chains.evm.client import RegistryClient, Web3RegistryClient
from trustinvoice.services.chains.evm.local_chain import LocalRegistryChain, MockERC20
from trustinvoice.services.chains.evm.registry import TrustInvoiceRegistry


__all__ = [
    "EVMAdapter",
    "LocalRegistryChain",
    "MockERC20",
    "RegistryClient",
    "TrustInvoiceRegistry",
    "Web3RegistryClient",
]
