"""Unit tests for the JSON-RPC registry client (AsyncWeb3 mocked)."""

from unittest.mock import AsyncMock, MagicMock, PropertyMock

import pytest
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from trustinvoice.config.networks import EVM_NETWORKS
from trustinvoice.services.chains.evm.client import Web3RegistryClient
from trustinvoice.utils.exceptions import ChainError


REGISTRY = "0x" + "cd" * 20
SENDER = "0x" + "ef" * 20
GWEI = 10**9


async def _resolved(value):
    return value


@pytest.fixture
def network():
    return EVM_NETWORKS["sepolia"].model_copy(update={"registry_address": REGISTRY})


@pytest.fixture
def contract_fn():
    """Bound contract function with estimate/build mocked."""
    fn = MagicMock()
    fn.estimate_gas = AsyncMock(return_value=100_000)
    fn.build_transaction = AsyncMock(side_effect=lambda tx: {**tx, "to": REGISTRY, "data": "0x"})
    fn.call = AsyncMock(return_value=250)
    return fn


@pytest.fixture
def web3(contract_fn):
    mock_web3 = MagicMock()
    contract = MagicMock()
    contract.functions.payInvoice = MagicMock(return_value=contract_fn)
    contract.functions.platformFee = MagicMock(return_value=contract_fn)
    mock_web3.eth.contract = MagicMock(return_value=contract)
    mock_web3.eth.get_transaction_count = AsyncMock(return_value=7)
    # Awaitable properties on AsyncWeb3: hand out a fresh coroutine per access
    type(mock_web3.eth).gas_price = PropertyMock(side_effect=lambda: _resolved(300 * GWEI))
    type(mock_web3.eth).block_number = PropertyMock(side_effect=lambda: _resolved(42))
    mock_web3.eth.send_raw_transaction = AsyncMock(return_value=HexBytes("0x" + "11" * 32))
    return mock_web3


@pytest.fixture
def signer():
    mock_signer = MagicMock()
    mock_signer.address = SENDER
    mock_signer.sign = MagicMock(return_value=b"\x02raw")
    return mock_signer


class TestTransact:
    """Tests for building and broadcasting transactions."""

    @pytest.mark.asyncio
    async def test_transaction_fields(self, network, web3, contract_fn, signer):
        client = Web3RegistryClient(network, max_gas_price_wei=200 * GWEI, web3=web3)

        tx_hash = await client.transact("payInvoice", [b"\x00" * 32], signer, value=5)

        assert tx_hash == "0x" + "11" * 32
        built = contract_fn.build_transaction.await_args.args[0]
        assert built["gas"] == 120_000
        assert built["gasPrice"] == 200 * GWEI
        assert built["nonce"] == 7
        assert built["chainId"] == 11155111
        assert built["value"] == 5
        web3.eth.get_transaction_count.assert_awaited_once_with(
            Web3.to_checksum_address(SENDER), "pending"
        )
        web3.eth.send_raw_transaction.assert_awaited_once_with(b"\x02raw")

    @pytest.mark.asyncio
    async def test_uncapped_gas_price(self, network, web3, contract_fn, signer):
        client = Web3RegistryClient(network, web3=web3)

        await client.transact("payInvoice", [b"\x00" * 32], signer)

        assert contract_fn.build_transaction.await_args.args[0]["gasPrice"] == 300 * GWEI

    @pytest.mark.asyncio
    async def test_estimation_timeout_uses_default_gas(self, network, web3, contract_fn, signer):
        contract_fn.estimate_gas = AsyncMock(side_effect=TimeoutError())
        client = Web3RegistryClient(network, default_gas_limit=250_000, web3=web3)

        await client.transact("payInvoice", [b"\x00" * 32], signer)

        assert contract_fn.build_transaction.await_args.args[0]["gas"] == 250_000

    @pytest.mark.asyncio
    async def test_revert_during_estimation_propagates(self, network, web3, contract_fn, signer):
        contract_fn.estimate_gas = AsyncMock(
            side_effect=ContractLogicError("execution reverted: Invoice already paid")
        )
        client = Web3RegistryClient(network, web3=web3)

        with pytest.raises(ContractLogicError):
            await client.transact("payInvoice", [b"\x00" * 32], signer)
        web3.eth.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_registry(self, web3, signer):
        client = Web3RegistryClient(EVM_NETWORKS["sepolia"], web3=web3)

        with pytest.raises(ChainError):
            await client.transact("payInvoice", [b"\x00" * 32], signer)


class TestReads:
    """Tests for calls, receipts and block numbers."""

    @pytest.mark.asyncio
    async def test_call(self, network, web3):
        client = Web3RegistryClient(network, web3=web3)
        assert await client.call("platformFee", []) == 250

    @pytest.mark.asyncio
    async def test_pending_receipt(self, network, web3):
        web3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("not found"))
        client = Web3RegistryClient(network, web3=web3)

        assert await client.get_receipt("0x" + "11" * 32) is None

    @pytest.mark.asyncio
    async def test_receipt(self, network, web3):
        web3.eth.get_transaction_receipt = AsyncMock(
            return_value={"status": 1, "blockNumber": 10}
        )
        client = Web3RegistryClient(network, web3=web3)

        assert await client.get_receipt("0x" + "11" * 32) == {"status": 1, "blockNumber": 10}

    @pytest.mark.asyncio
    async def test_block_number(self, network, web3):
        client = Web3RegistryClient(network, web3=web3)
        assert await client.block_number() == 42

    @pytest.mark.asyncio
    async def test_rpc_timeout(self, network, web3):
        type(web3.eth).block_number = PropertyMock(
            side_effect=lambda: AsyncMock(side_effect=TimeoutError())()
        )
        client = Web3RegistryClient(network, web3=web3)

        with pytest.raises(ChainError, match="RPC timeout"):
            await client.block_number()
