"""
End-to-end settlement flows through the engine on local chains.

Covers:
- Ethereum and Polygon payment with fee split
- Escrow hold and release
- Refunds
- Replay and concurrent payment
- Algorand grouped payment and refund
"""

import asyncio
from decimal import Decimal

import pytest
from algosdk.error import AlgodHTTPError
from algosdk.logic import get_application_address
from algosdk.transaction import ApplicationNoOpTxn, PaymentTxn, assign_group_id

from trustinvoice.config.networks import Blockchain
from trustinvoice.services.chains.algorand.program import METHOD_PAY_INVOICE
from trustinvoice.services.settlement.models import InvoiceStatus
from trustinvoice.utils.exceptions import (
    AlreadyPaidError,
    NotEscrowedError,
    UnauthorizedError,
)


ETH = 10**18
ALGO = 10**6


class TestEVMSettlement:
    """Invoice lifecycle on Ethereum."""

    @pytest.mark.asyncio
    async def test_pay_splits_fee(
        self, engine, evm_params, creator, payer, recipient, fee_collector, local_chain
    ):
        invoice = await engine.create_invoice(evm_params, creator)
        assert invoice.status is InvoiceStatus.CREATED
        assert invoice.explorer_url.startswith("https://sepolia.etherscan.io/tx/0x")

        await engine.pay_invoice(invoice.ref, payer)
        paid = await engine.get_invoice_details(invoice.ref)

        assert paid.status is InvoiceStatus.PAID
        assert paid.paid
        assert paid.payer == payer.address
        assert paid.fee_bps == 250
        assert paid.fee_amount == Decimal("2.5")
        assert len(paid.tx_ids) == 2
        assert local_chain.balance_of(recipient.address) == 1_097_500_000_000_000_000_000
        assert local_chain.balance_of(fee_collector.address) == 2_500_000_000_000_000_000
        assert local_chain.balance_of(payer.address) == 900 * ETH

    @pytest.mark.asyncio
    async def test_fee_follows_rate_at_payment(
        self, engine, evm_adapter, evm_params, owner, creator, payer, fee_collector, local_chain
    ):
        invoice = await engine.create_invoice(evm_params, creator)
        await evm_adapter.update_platform_fee(100, owner)

        await engine.pay_invoice(invoice.ref, payer)
        paid = await engine.get_invoice_details(invoice.ref)

        assert paid.fee_bps == 100
        assert paid.fee_amount == Decimal("1")
        assert local_chain.balance_of(fee_collector.address) == 1 * ETH

    @pytest.mark.asyncio
    async def test_escrow_release(self, engine, evm_params, creator, payer, recipient, local_chain):
        params = evm_params.model_copy(update={"is_escrow": True})
        invoice = await engine.create_invoice(params, creator)

        await engine.pay_invoice(invoice.ref, payer)
        held = await engine.get_invoice_details(invoice.ref)
        assert held.status is InvoiceStatus.ESCROW_HELD
        assert local_chain.balance_of(local_chain.registry_address) == 100 * ETH
        # Nothing reaches the recipient before release
        assert local_chain.balance_of(recipient.address) == 1_000 * ETH

        await engine.release_escrow(invoice.ref, recipient)
        released = await engine.get_invoice_details(invoice.ref)

        assert released.status is InvoiceStatus.RELEASED
        assert local_chain.balance_of(local_chain.registry_address) == 0
        assert local_chain.balance_of(recipient.address) == 1_097_500_000_000_000_000_000

    @pytest.mark.asyncio
    async def test_release_checks_before_submission(
        self, engine, evm_params, creator, payer, local_chain
    ):
        plain = await engine.create_invoice(evm_params, creator)
        await engine.pay_invoice(plain.ref, payer)
        with pytest.raises(NotEscrowedError):
            await engine.release_escrow(plain.ref, payer)

        escrow = await engine.create_invoice(
            evm_params.model_copy(update={"invoice_id": "INV-002", "is_escrow": True}),
            creator,
        )
        with pytest.raises(NotEscrowedError):
            await engine.release_escrow(escrow.ref, creator)

        await engine.pay_invoice(escrow.ref, payer)
        nonce = local_chain.nonces[creator.address]
        with pytest.raises(UnauthorizedError):
            await engine.release_escrow(escrow.ref, creator)
        assert local_chain.nonces[creator.address] == nonce

    @pytest.mark.asyncio
    async def test_refund_returns_full_amount(
        self, engine, evm_params, creator, payer, recipient, local_chain
    ):
        params = evm_params.model_copy(update={"is_escrow": True})
        invoice = await engine.create_invoice(params, creator)
        await engine.pay_invoice(invoice.ref, payer)

        await engine.refund_invoice(invoice.ref, recipient)
        refunded = await engine.get_invoice_details(invoice.ref)

        assert refunded.status is InvoiceStatus.REFUNDED
        assert refunded.refunded
        assert local_chain.balance_of(payer.address) == 1_000 * ETH
        assert local_chain.balance_of(local_chain.registry_address) == 0

    @pytest.mark.asyncio
    async def test_refund_rules(self, engine, evm_params, creator, payer, stranger):
        invoice = await engine.create_invoice(evm_params, creator)
        with pytest.raises(NotEscrowedError):
            await engine.refund_invoice(invoice.ref, creator)

        await engine.pay_invoice(invoice.ref, payer)
        with pytest.raises(UnauthorizedError):
            await engine.refund_invoice(invoice.ref, stranger)

    @pytest.mark.asyncio
    async def test_replay_rejected(self, engine, evm_params, creator, payer, stranger, local_chain):
        invoice = await engine.create_invoice(evm_params, creator)
        await engine.pay_invoice(invoice.ref, payer)

        with pytest.raises(AlreadyPaidError):
            await engine.pay_invoice(invoice.ref, stranger)
        assert local_chain.balance_of(stranger.address) == 1_000 * ETH

    @pytest.mark.asyncio
    async def test_concurrent_payments(
        self, engine, evm_params, creator, payer, stranger, recipient, local_chain
    ):
        invoice = await engine.create_invoice(evm_params, creator)

        results = await asyncio.gather(
            engine.pay_invoice(invoice.ref, payer),
            engine.pay_invoice(invoice.ref, stranger),
            return_exceptions=True,
        )

        successes = [result for result in results if isinstance(result, str)]
        failures = [result for result in results if isinstance(result, AlreadyPaidError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert local_chain.balance_of(recipient.address) == 1_097_500_000_000_000_000_000

    @pytest.mark.asyncio
    async def test_overdue(self, engine, evm_params, creator, payer, local_chain):
        invoice = await engine.create_invoice(evm_params, creator)
        assert not await engine.is_overdue(invoice.ref)

        local_chain.advance_time(2 * 86_400)
        assert await engine.is_overdue(invoice.ref)

        # Overdue invoices remain payable
        await engine.pay_invoice(invoice.ref, payer)
        assert not await engine.is_overdue(invoice.ref)


class TestPolygonSettlement:
    """Polygon shares the registry interface with its own network."""

    @pytest.mark.asyncio
    async def test_pay(self, engine, evm_params, creator, payer, recipient, polygon_chain):
        params = evm_params.model_copy(update={"blockchain": Blockchain.POLYGON})
        invoice = await engine.create_invoice(params, creator)

        assert invoice.network == "amoy"
        assert invoice.explorer_url.startswith("https://amoy.polygonscan.com/tx/")

        await engine.pay_invoice(invoice.ref, payer)

        assert polygon_chain.balance_of(recipient.address) == 97_500_000_000_000_000_000


class TestAlgorandSettlement:
    """Invoice lifecycle on Algorand."""

    @pytest.mark.asyncio
    async def test_grouped_payment(
        self, engine, algorand_params, algo_creator, algo_payer, algo_recipient, local_ledger
    ):
        invoice = await engine.create_invoice(algorand_params, algo_creator)

        await engine.pay_invoice(invoice.ref, algo_payer)
        paid = await engine.get_invoice_details(invoice.ref)

        assert paid.status is InvoiceStatus.PAID
        assert paid.payer == algo_payer.address
        assert paid.fee_amount == Decimal("0")
        assert paid.explorer_url.startswith("https://lora.algokit.io/testnet/transaction/")
        assert local_ledger.balance_of(algo_recipient.address) == 1_050 * ALGO

    @pytest.mark.asyncio
    async def test_wrong_receiver_group_rejected(
        self, engine, algorand_params, algo_creator, algo_payer, algo_stranger, local_ledger
    ):
        invoice = await engine.create_invoice(algorand_params, algo_creator)
        params = local_ledger.suggested_params()
        group = [
            ApplicationNoOpTxn(
                algo_payer.address,
                params,
                invoice.ref.app_id,
                [METHOD_PAY_INVOICE.encode(), invoice.id.encode()],
            ),
            PaymentTxn(algo_payer.address, params, algo_stranger.address, 50 * ALGO),
        ]
        assign_group_id(group)

        with pytest.raises(AlgodHTTPError, match="logic eval error"):
            local_ledger.send_transactions([algo_payer.sign(txn) for txn in group])

        details = await engine.get_invoice_details(invoice.ref)
        assert details.status is InvoiceStatus.CREATED
        assert local_ledger.balance_of(algo_stranger.address) == 1_000 * ALGO
        assert local_ledger.balance_of(algo_payer.address) == 1_000 * ALGO

    @pytest.mark.asyncio
    async def test_refund(
        self, engine, algorand_params, algo_creator, algo_payer, algo_recipient, local_ledger
    ):
        invoice = await engine.create_invoice(algorand_params, algo_creator)
        await engine.pay_invoice(invoice.ref, algo_payer)

        with pytest.raises(UnauthorizedError):
            await engine.refund_invoice(invoice.ref, algo_recipient)

        await engine.refund_invoice(invoice.ref, algo_creator)
        refunded = await engine.get_invoice_details(invoice.ref)

        assert refunded.status is InvoiceStatus.REFUNDED
        assert local_ledger.balance_of(algo_payer.address) == 1_000 * ALGO - 2_000
        assert local_ledger.balance_of(get_application_address(invoice.ref.app_id)) == 0

    @pytest.mark.asyncio
    async def test_second_payment_rejected(
        self, engine, algorand_params, algo_creator, algo_payer, algo_stranger
    ):
        invoice = await engine.create_invoice(algorand_params, algo_creator)
        await engine.pay_invoice(invoice.ref, algo_payer)

        with pytest.raises(AlreadyPaidError):
            await engine.pay_invoice(invoice.ref, algo_stranger)
