"""
Tests for the TrustInvoice registry state machine.

Covers:
- Invoice creation rules and invoice hash derivation
- Exact-amount single payment with fee split
- Escrow release and refunds
- Owner administration (fee, tokens, pause)
"""

import pytest
from web3.exceptions import ContractLogicError

from trustinvoice.services.chains.evm import abi
from trustinvoice.services.chains.evm.registry import CallContext, compute_invoice_hash


NOW = 1_700_000_000
ETH = 10**18


def _ctx(signer, value=0):
    return CallContext(sender=signer.address, value=value, timestamp=NOW)


def _create(registry, creator, recipient, invoice_id="INV-1", amount=100 * ETH, **kwargs):
    return registry.create_invoice(
        _ctx(creator), invoice_id, recipient.address, amount, NOW + 3_600, **kwargs
    )


def _pay(local_chain, registry, payer, invoice_hash, amount=100 * ETH):
    # msg.value reaches the registry before the call body runs
    local_chain.transfer_native(payer.address, registry.address, amount)
    registry.pay_invoice(_ctx(payer, amount), invoice_hash)


class TestCreate:
    """Tests for createInvoice."""

    def test_hash_matches_derivation(self, registry, creator, recipient):
        invoice_hash = _create(registry, creator, recipient)

        assert invoice_hash == compute_invoice_hash(
            "INV-1", recipient.address, 100 * ETH, NOW + 3_600, NOW
        )
        assert registry.events[-1].name == "InvoiceCreated"

    def test_stored_fields(self, registry, creator, recipient):
        invoice_hash = _create(registry, creator, recipient, description="Audit")
        stored = registry.get_invoice(invoice_hash)

        assert stored[0] == recipient.address
        assert stored[1] == creator.address
        assert stored[3] == 100 * ETH
        assert stored[7] is False  # isPaid
        assert stored[12:] == ("INV-1", "Audit")

    def test_duplicate_id(self, registry, creator, recipient):
        _create(registry, creator, recipient)
        with pytest.raises(ContractLogicError, match=abi.REVERT_DUPLICATE_ID):
            _create(registry, creator, recipient)

    def test_zero_amount(self, registry, creator, recipient):
        with pytest.raises(ContractLogicError, match=abi.REVERT_ZERO_AMOUNT):
            _create(registry, creator, recipient, amount=0)

    def test_past_due_date(self, registry, creator, recipient):
        with pytest.raises(ContractLogicError, match=abi.REVERT_PAST_DUE_DATE):
            registry.create_invoice(_ctx(creator), "INV-1", recipient.address, ETH, NOW)

    def test_zero_recipient(self, registry, creator):
        with pytest.raises(ContractLogicError, match=abi.REVERT_INVALID_RECIPIENT):
            registry.create_invoice(
                _ctx(creator), "INV-1", "0x" + "00" * 20, ETH, NOW + 60
            )

    def test_unknown_invoice(self, registry):
        with pytest.raises(ContractLogicError, match=abi.REVERT_NOT_FOUND):
            registry.get_invoice("0x" + "12" * 32)


class TestPay:
    """Tests for payInvoice."""

    def test_fee_split(self, local_chain, registry, creator, recipient, payer, fee_collector):
        invoice_hash = _create(registry, creator, recipient)

        _pay(local_chain, registry, payer, invoice_hash)

        assert local_chain.balance_of(recipient.address) == 1_000 * ETH + 97_500_000_000_000_000_000
        assert local_chain.balance_of(fee_collector.address) == 2_500_000_000_000_000_000
        assert local_chain.balance_of(registry.address) == 0
        stored = registry.get_invoice(invoice_hash)
        assert stored[2] == payer.address
        assert stored[11] == 250

    def test_wrong_amount(self, local_chain, registry, creator, recipient, payer):
        invoice_hash = _create(registry, creator, recipient)
        local_chain.transfer_native(payer.address, registry.address, 99 * ETH)

        with pytest.raises(ContractLogicError, match=abi.REVERT_WRONG_AMOUNT):
            registry.pay_invoice(_ctx(payer, 99 * ETH), invoice_hash)

    def test_single_payment(self, local_chain, registry, creator, recipient, payer, stranger):
        invoice_hash = _create(registry, creator, recipient)
        _pay(local_chain, registry, payer, invoice_hash)

        with pytest.raises(ContractLogicError, match=abi.REVERT_ALREADY_PAID):
            _pay(local_chain, registry, stranger, invoice_hash)

    def test_fee_captured_at_payment(self, local_chain, registry, owner, creator, recipient, payer):
        invoice_hash = _create(registry, creator, recipient)
        registry.update_platform_fee(_ctx(owner), 100)

        _pay(local_chain, registry, payer, invoice_hash)

        assert registry.get_invoice(invoice_hash)[11] == 100

    def test_overdue(self, local_chain, registry, creator, recipient, payer):
        invoice_hash = _create(registry, creator, recipient)

        assert not registry.is_overdue(invoice_hash, NOW + 3_600)
        assert registry.is_overdue(invoice_hash, NOW + 3_601)

        _pay(local_chain, registry, payer, invoice_hash)
        assert not registry.is_overdue(invoice_hash, NOW + 3_601)


class TestEscrow:
    """Tests for escrow hold, release and refund."""

    def test_release(self, local_chain, registry, creator, recipient, payer, fee_collector):
        invoice_hash = _create(registry, creator, recipient, is_escrow=True)
        _pay(local_chain, registry, payer, invoice_hash)
        assert local_chain.balance_of(registry.address) == 100 * ETH

        registry.release_escrow(_ctx(recipient), invoice_hash)

        assert local_chain.balance_of(registry.address) == 0
        assert local_chain.balance_of(recipient.address) == 1_097_500_000_000_000_000_000
        assert local_chain.balance_of(fee_collector.address) == 2_500_000_000_000_000_000

    def test_only_recipient_releases(self, local_chain, registry, creator, recipient, payer):
        invoice_hash = _create(registry, creator, recipient, is_escrow=True)
        _pay(local_chain, registry, payer, invoice_hash)

        with pytest.raises(ContractLogicError, match=abi.REVERT_ONLY_RECIPIENT):
            registry.release_escrow(_ctx(creator), invoice_hash)

    def test_release_requires_escrow(self, local_chain, registry, creator, recipient, payer):
        invoice_hash = _create(registry, creator, recipient)
        _pay(local_chain, registry, payer, invoice_hash)

        with pytest.raises(ContractLogicError, match=abi.REVERT_NOT_ESCROW):
            registry.release_escrow(_ctx(recipient), invoice_hash)

    def test_escrow_refund_returns_held_funds(self, local_chain, registry, creator, recipient, payer):
        invoice_hash = _create(registry, creator, recipient, is_escrow=True)
        _pay(local_chain, registry, payer, invoice_hash)

        registry.refund_invoice(_ctx(recipient), invoice_hash)

        assert local_chain.balance_of(payer.address) == 1_000 * ETH
        assert local_chain.balance_of(registry.address) == 0
        with pytest.raises(ContractLogicError, match=abi.REVERT_ALREADY_REFUNDED):
            registry.release_escrow(_ctx(recipient), invoice_hash)

    def test_refund_after_release(self, local_chain, registry, creator, recipient, payer):
        invoice_hash = _create(registry, creator, recipient, is_escrow=True)
        _pay(local_chain, registry, payer, invoice_hash)
        registry.release_escrow(_ctx(recipient), invoice_hash)

        with pytest.raises(ContractLogicError, match=abi.REVERT_ALREADY_RELEASED):
            registry.refund_invoice(_ctx(creator), invoice_hash)

    def test_refund_requires_role(self, local_chain, registry, creator, recipient, payer, stranger):
        invoice_hash = _create(registry, creator, recipient, is_escrow=True)
        _pay(local_chain, registry, payer, invoice_hash)

        with pytest.raises(ContractLogicError, match=abi.REVERT_NOT_AUTHORIZED_REFUND):
            registry.refund_invoice(_ctx(stranger), invoice_hash)

    def test_refund_requires_payment(self, registry, creator, recipient):
        invoice_hash = _create(registry, creator, recipient)

        with pytest.raises(ContractLogicError, match=abi.REVERT_NOT_PAID):
            registry.refund_invoice(_ctx(creator), invoice_hash)


class TestAdministration:
    """Tests for owner-only operations."""

    def test_fee_update_requires_owner(self, registry, stranger):
        with pytest.raises(ContractLogicError, match=abi.REVERT_NOT_OWNER):
            registry.update_platform_fee(_ctx(stranger), 100)

    def test_fee_bounds(self, registry, owner):
        with pytest.raises(ContractLogicError, match=abi.REVERT_INVALID_FEE):
            registry.update_platform_fee(_ctx(owner), 10_001)
        registry.update_platform_fee(_ctx(owner), 10_000)
        assert registry.platform_fee() == 10_000

    def test_pause_blocks_lifecycle(self, registry, owner, creator, recipient):
        registry.pause(_ctx(owner))
        with pytest.raises(ContractLogicError, match=abi.REVERT_PAUSED):
            _create(registry, creator, recipient)

        registry.unpause(_ctx(owner))
        assert _create(registry, creator, recipient)

    def test_token_must_be_authorized(self, local_chain, registry, owner, creator, recipient):
        token = local_chain.deploy_token()
        with pytest.raises(ContractLogicError, match=abi.REVERT_TOKEN_NOT_AUTHORIZED):
            _create(registry, creator, recipient, token_address=token.address)

        registry.authorize_token(_ctx(owner), token.address, True)
        assert registry.is_token_authorized(token.address)
        assert _create(registry, creator, recipient, token_address=token.address)

    def test_token_payment(self, local_chain, registry, owner, creator, recipient, payer, fee_collector):
        token = local_chain.deploy_token()
        registry.authorize_token(_ctx(owner), token.address, True)
        token.mint(payer.address, 1_000)
        invoice_hash = _create(
            registry, creator, recipient, amount=1_000, token_address=token.address
        )
        token.approve(payer.address, registry.address, 1_000)

        registry.pay_invoice(_ctx(payer), invoice_hash)

        assert token.balance_of(recipient.address) == 975
        assert token.balance_of(fee_collector.address) == 25
        assert token.allowance(payer.address, registry.address) == 0
