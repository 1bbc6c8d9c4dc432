"""Pytest configuration and shared fixtures for all tests."""

import os

# Keep a developer .env or shell from leaking into test settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ETHEREUM_NETWORK", "sepolia")
os.environ.setdefault("POLYGON_NETWORK", "amoy")
os.environ.setdefault("ALGORAND_NETWORK", "testnet")

from decimal import Decimal

import pytest

from trustinvoice.config.networks import Blockchain
from trustinvoice.config.settings import Settings
from trustinvoice.services.chains.algorand.adapter import AlgorandAdapter
from trustinvoice.services.chains.algorand.algod import AlgodGateway
from trustinvoice.services.chains.algorand.local_ledger import LocalAlgodLedger
from trustinvoice.services.chains.evm.adapter import EVMAdapter
from trustinvoice.services.chains.evm.local_chain import LocalRegistryChain
from trustinvoice.services.chains.signers import AlgorandAccountSigner, EVMAccountSigner
from trustinvoice.services.settlement.engine import SettlementEngine
from trustinvoice.services.settlement.models import CreateInvoiceParams


NOW = 1_700_000_000
ONE_DAY = 86_400
ETH = 10**18
ALGO = 10**6


def evm_signer(byte: int) -> EVMAccountSigner:
    return EVMAccountSigner("0x" + f"{byte:02x}" * 32)


def algorand_signer(byte: int) -> AlgorandAccountSigner:
    return AlgorandAccountSigner.from_seed(bytes([byte]) * 32)


@pytest.fixture
def test_settings():
    """Settings tuned for local chains: no sleeping between polls."""
    return Settings(
        _env_file=None,
        evm_poll_interval=0.0,
        evm_max_poll_attempts=20,
        algorand_wait_rounds=4,
    )


# ----------------------------------------------------------------------
# EVM
# ----------------------------------------------------------------------


@pytest.fixture
def owner():
    return evm_signer(0x01)


@pytest.fixture
def fee_collector():
    return evm_signer(0x02)


@pytest.fixture
def creator():
    return evm_signer(0x03)


@pytest.fixture
def recipient():
    return evm_signer(0x04)


@pytest.fixture
def payer():
    return evm_signer(0x05)


@pytest.fixture
def stranger():
    return evm_signer(0x06)


@pytest.fixture
def local_chain(owner, fee_collector, creator, recipient, payer, stranger):
    """Local registry chain with every EVM account funded with 1000 ETH."""
    chain = LocalRegistryChain(
        owner=owner.address,
        fee_recipient=fee_collector.address,
        start_time=NOW,
    )
    for signer in (owner, creator, recipient, payer, stranger):
        chain.fund(signer.address, 1_000 * ETH)
    return chain


@pytest.fixture
def evm_adapter(local_chain, test_settings):
    network = test_settings.network_for(Blockchain.ETHEREUM).model_copy(
        update={"registry_address": local_chain.registry_address}
    )
    return EVMAdapter(Blockchain.ETHEREUM, network, local_chain, test_settings)


@pytest.fixture
def polygon_chain(owner, fee_collector, creator, payer):
    chain = LocalRegistryChain(
        owner=owner.address,
        chain_id=80002,
        fee_recipient=fee_collector.address,
        start_time=NOW,
    )
    for signer in (creator, payer):
        chain.fund(signer.address, 1_000 * ETH)
    return chain


@pytest.fixture
def polygon_adapter(polygon_chain, test_settings):
    network = test_settings.network_for(Blockchain.POLYGON).model_copy(
        update={"registry_address": polygon_chain.registry_address}
    )
    return EVMAdapter(Blockchain.POLYGON, network, polygon_chain, test_settings)


@pytest.fixture
def evm_params(recipient):
    """100 ETH, non-escrow, due in one day."""
    return CreateInvoiceParams(
        invoice_id="INV-001",
        recipient=recipient.address,
        amount=Decimal("100"),
        due_date=NOW + ONE_DAY,
        description="Consulting, October",
        blockchain=Blockchain.ETHEREUM,
    )


# ----------------------------------------------------------------------
# Algorand
# ----------------------------------------------------------------------


@pytest.fixture
def algo_creator():
    return algorand_signer(0x11)


@pytest.fixture
def algo_recipient():
    return algorand_signer(0x12)


@pytest.fixture
def algo_payer():
    return algorand_signer(0x13)


@pytest.fixture
def algo_stranger():
    return algorand_signer(0x14)


@pytest.fixture
def local_ledger(algo_creator, algo_recipient, algo_payer, algo_stranger):
    """Local ledger with every Algorand account funded with 1000 ALGO."""
    ledger = LocalAlgodLedger(start_time=NOW)
    for signer in (algo_creator, algo_recipient, algo_payer, algo_stranger):
        ledger.fund(signer.address, 1_000 * ALGO)
    return ledger


@pytest.fixture
def algorand_adapter(local_ledger, test_settings):
    network = test_settings.network_for(Blockchain.ALGORAND)
    return AlgorandAdapter(
        network,
        AlgodGateway(local_ledger, name=network.name),
        test_settings,
        clock=lambda: local_ledger.now,
    )


@pytest.fixture
def algorand_params(algo_recipient):
    """50 ALGO, due in one day."""
    return CreateInvoiceParams(
        invoice_id="ALG-001",
        recipient=algo_recipient.address,
        amount=Decimal("50"),
        due_date=NOW + ONE_DAY,
        description="Design work",
        blockchain=Blockchain.ALGORAND,
    )


# ----------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------


@pytest.fixture
def adapters(evm_adapter, polygon_adapter, algorand_adapter):
    return {
        Blockchain.ETHEREUM: evm_adapter,
        Blockchain.POLYGON: polygon_adapter,
        Blockchain.ALGORAND: algorand_adapter,
    }


@pytest.fixture
def engine(test_settings, adapters, local_chain):
    """Engine over local chains; Ethereum is active."""
    return SettlementEngine(
        settings=test_settings,
        adapter_factory=adapters.__getitem__,
        clock=lambda: local_chain.now,
    )
