"""Unit tests for adapter selection."""

import pytest
from algosdk.v2client.algod import AlgodClient

from trustinvoice.config.networks import Blockchain
from trustinvoice.services.chains.algorand.adapter import AlgorandAdapter
from trustinvoice.services.chains.algorand.algod import AlgodGateway
from trustinvoice.services.chains.base import ChainAdapter
from trustinvoice.services.chains.evm.adapter import EVMAdapter
from trustinvoice.services.chains.evm.client import Web3RegistryClient
from trustinvoice.services.chains.factory import (
    build_adapter,
    settings_adapter_factory,
    supported_blockchains,
)
from trustinvoice.utils.exceptions import ValidationError


class TestBuildAdapter:
    """Tests for build_adapter."""

    def test_supported(self):
        assert set(supported_blockchains()) == {
            Blockchain.ETHEREUM,
            Blockchain.POLYGON,
            Blockchain.ALGORAND,
        }

    @pytest.mark.parametrize("blockchain", [Blockchain.ETHEREUM, Blockchain.POLYGON])
    def test_evm(self, blockchain, test_settings):
        adapter = build_adapter(blockchain, test_settings)

        assert isinstance(adapter, EVMAdapter)
        assert isinstance(adapter, ChainAdapter)
        assert isinstance(adapter.client, Web3RegistryClient)
        assert adapter.blockchain is blockchain
        assert adapter.network == test_settings.network_for(blockchain)

    def test_gas_ceiling_passed_to_client(self, test_settings):
        adapter = build_adapter(Blockchain.POLYGON, test_settings)
        assert adapter.client.max_gas_price_wei == 1_000 * 10**9

    @pytest.mark.asyncio
    async def test_algorand(self, test_settings):
        adapter = build_adapter(Blockchain.ALGORAND, test_settings)

        assert isinstance(adapter, AlgorandAdapter)
        assert isinstance(adapter.client, AlgodGateway)
        assert isinstance(adapter.client.backend, AlgodClient)
        assert adapter.client.timeout == test_settings.rpc_timeout
        assert adapter.capabilities.supports_escrow is False
        await adapter.close()

    def test_unsupported(self, test_settings):
        with pytest.raises(ValidationError):
            build_adapter("solana", test_settings)

    def test_settings_factory(self, test_settings):
        factory = settings_adapter_factory(test_settings)
        assert isinstance(factory(Blockchain.ETHEREUM), EVMAdapter)
