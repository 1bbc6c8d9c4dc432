"""Unit tests for log masking helpers."""

from trustinvoice.utils.security import mask_address, mask_tx_hash


class TestMaskAddress:
    """Tests for mask_address."""

    def test_evm_address(self):
        assert mask_address("0x1234567890abcdef1234567890abcdef12345678") == "0x1234...5678"

    def test_algorand_address(self):
        address = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAY5HFKQ"
        assert mask_address(address) == "AAAAAA...HFKQ"

    def test_empty_and_short(self):
        assert mask_address(None) == "***"
        assert mask_address("") == "***"
        assert mask_address("0x1234") == "***"


class TestMaskTxHash:
    """Tests for mask_tx_hash."""

    def test_evm_hash(self):
        tx_hash = "0x" + "ab" * 31 + "cdef"
        assert mask_tx_hash(tx_hash) == "0xabababab...abcdef"

    def test_short(self):
        assert mask_tx_hash("0xabc") == "***"
        assert mask_tx_hash(None) == "***"
