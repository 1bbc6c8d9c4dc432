"""Unit tests for the invoice application program and state decoding."""

import base64

from trustinvoice.services.chains.algorand.program import (
    CREATE_INVOICE_ARGS,
    INVOICE_FIELDS,
    METHODS,
    TEAL_VERSION,
    compile_approval_teal,
    compile_clear_teal,
    invoice_key,
)
from trustinvoice.services.chains.algorand.state import (
    decode_global_state,
    encode_global_state,
    invoice_fields,
)


class TestStateKeys:
    """Tests for global state key layout."""

    def test_key_layout(self):
        assert invoice_key("INV-1", "amount") == b"invoice_INV-1_amount"
        assert invoice_key(b"INV-1", "paid") == b"invoice_INV-1_paid"

    def test_longest_key_fits(self):
        """A 46-byte id keeps every field key within 64 bytes."""
        invoice_id = "x" * 46
        assert max(len(invoice_key(invoice_id, field)) for field in INVOICE_FIELDS) == 64


class TestApprovalProgram:
    """Tests for the generated TEAL."""

    def test_version_pragma(self):
        assert compile_approval_teal().startswith(f"#pragma version {TEAL_VERSION}\n")
        assert compile_clear_teal() == f"#pragma version {TEAL_VERSION}\nint 1\nreturn\n"

    def test_every_method_routed(self):
        source = compile_approval_teal()
        for method in METHODS:
            assert f'byte "{method}"' in source
            assert f"\n{method}:\n" in source

    def test_no_read_method(self):
        """Invoices are read from global state, never through an app call."""
        assert METHODS == ("create_invoice", "pay_invoice", "refund_invoice")
        assert "get_invoice" not in compile_approval_teal()

    def test_pay_checks_group(self):
        """Payment must be the second transaction, to the stored recipient."""
        source = compile_approval_teal()
        assert "global GroupSize\nint 2\n==\nassert" in source
        assert "gtxn 1 Receiver" in source
        assert "gtxn 1 Amount\nload 0\n==\nassert" in source

    def test_refund_uses_inner_payment(self):
        source = compile_approval_teal()
        assert "itxn_begin" in source
        assert "itxn_submit" in source

    def test_update_and_delete_rejected(self):
        source = compile_approval_teal()
        assert "int UpdateApplication\n==\nbnz reject" in source
        assert "int DeleteApplication\n==\nbnz reject" in source

    def test_create_argument_count(self):
        assert f"txn NumAppArgs\nint {CREATE_INVOICE_ARGS}\n==\nassert" in compile_approval_teal()


class TestGlobalState:
    """Tests for algod global-state decoding."""

    def test_decode_algod_entries(self):
        entries = [
            {
                "key": base64.b64encode(b"invoice_A_amount").decode(),
                "value": {"type": 2, "uint": 5_000_000, "bytes": ""},
            },
            {
                "key": base64.b64encode(b"invoice_A_recipient").decode(),
                "value": {"type": 1, "bytes": base64.b64encode(b"\x01" * 32).decode(), "uint": 0},
            },
        ]
        state = decode_global_state(entries)

        assert state[b"invoice_A_amount"] == 5_000_000
        assert state[b"invoice_A_recipient"] == b"\x01" * 32

    def test_encode_is_inverse(self):
        state = {b"total_invoices": 3, b"creator": b"\x02" * 32}
        assert decode_global_state(encode_global_state(state)) == state

    def test_invoice_fields(self):
        state = {
            invoice_key("A", "amount"): 10,
            invoice_key("A", "paid"): 0,
            invoice_key("B", "amount"): 20,
        }
        assert invoice_fields(state, "A") == {"amount": 10, "paid": 0}
        assert invoice_fields(state, "C") is None
