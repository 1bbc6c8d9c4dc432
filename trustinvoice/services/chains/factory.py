"""
Adapter selection.

Adapters are chosen by blockchain value from a builder table; Ethereum and
Polygon share the EVM builder and differ only in network configuration.
"""

from collections.abc import Callable

from trustinvoice.config.networks import Blockchain
from trustinvoice.config.settings import Settings
from trustinvoice.services.chains.algorand.adapter import AlgorandAdapter
from trustinvoice.services.chains.algorand.algod import AlgodGateway
from trustinvoice.services.chains.base import ChainAdapter
from trustinvoice.services.chains.evm.adapter import EVMAdapter
from trustinvoice.services.chains.evm.client import Web3RegistryClient
from trustinvoice.utils.exceptions import ValidationError


AdapterFactory = Callable[[Blockchain], ChainAdapter]


def _build_evm(blockchain: Blockchain, settings: Settings) -> EVMAdapter:
    network = settings.network_for(blockchain)
    client = Web3RegistryClient(
        network,
        timeout=settings.rpc_timeout,
        gas_limit_multiplier=settings.gas_limit_multiplier,
        default_gas_limit=settings.default_gas_limit,
        max_gas_price_wei=settings.max_gas_price_wei(network),
    )
    return EVMAdapter(blockchain, network, client, settings)


def _build_algorand(blockchain: Blockchain, settings: Settings) -> AlgorandAdapter:
    network = settings.network_for(blockchain)
    client = AlgodGateway.for_network(network, timeout=settings.rpc_timeout)
    return AlgorandAdapter(network, client, settings)


_BUILDERS: dict[Blockchain, Callable[[Blockchain, Settings], ChainAdapter]] = {
    Blockchain.ETHEREUM: _build_evm,
    Blockchain.POLYGON: _build_evm,
    Blockchain.ALGORAND: _build_algorand,
}


def supported_blockchains() -> list[Blockchain]:
    return list(_BUILDERS)


def build_adapter(blockchain: Blockchain, settings: Settings) -> ChainAdapter:
    """
    Build the adapter serving a blockchain from settings.

    Raises:
        ValidationError: If no adapter exists for the blockchain
    """
    builder = _BUILDERS.get(blockchain)
    if builder is None:
        raise ValidationError(f"Unsupported blockchain: {blockchain}")
    return builder(blockchain, settings)


def settings_adapter_factory(settings: Settings) -> AdapterFactory:
    """Factory building network-backed adapters from settings."""

    def factory(blockchain: Blockchain) -> ChainAdapter:
        return build_adapter(blockchain, settings)

    return factory
