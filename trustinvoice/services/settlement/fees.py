"""
Fee arithmetic.

Pure integer arithmetic on base units (wei, microAlgos). No dependencies on
chain clients so the same calculator backs the engine and the local registry.
"""

from typing import NamedTuple

from trustinvoice.config.constants import (
    BASIS_POINTS,
    DEFAULT_FEE_BPS,
    MAX_FEE_BPS,
    MIN_FEE_BPS,
)
from trustinvoice.utils.exceptions import ValidationError


class FeeSplit(NamedTuple):
    """Gross amount split into platform fee and recipient share."""

    amount: int
    fee: int
    net: int


def validate_fee_bps(fee_bps: int) -> int:
    """
    Validate a basis-points fee rate.

    Args:
        fee_bps: Fee rate in basis points

    Returns:
        The validated fee rate

    Raises:
        ValidationError: If the rate is outside [0, 10000]
    """
    if isinstance(fee_bps, bool) or not isinstance(fee_bps, int):
        raise ValidationError(f"Fee rate must be an integer, got {fee_bps!r}")
    if not MIN_FEE_BPS <= fee_bps <= MAX_FEE_BPS:
        raise ValidationError(
            f"Fee rate {fee_bps} bps outside [{MIN_FEE_BPS}, {MAX_FEE_BPS}]"
        )
    return fee_bps


def calculate_fee(amount: int, fee_bps: int) -> int:
    """
    Calculate platform fee.

    Formula: floor(amount * fee_bps / 10000)

    Args:
        amount: Gross amount in base units
        fee_bps: Fee rate in basis points

    Returns:
        Fee in base units

    Example:
        >>> calculate_fee(100 * 10**18, 250)
        2500000000000000000
    """
    if amount < 0:
        raise ValidationError(f"Amount must not be negative, got {amount}")
    return amount * validate_fee_bps(fee_bps) // BASIS_POINTS


class FeeCalculator:
    """
    Platform fee calculator.

    The fee is charged exactly once: at non-escrow payment or at escrow
    release. Refunds never deduct it.
    """

    def __init__(self, fee_bps: int = DEFAULT_FEE_BPS) -> None:
        self._fee_bps = validate_fee_bps(fee_bps)

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    def fee(self, amount: int) -> int:
        """Fee owed on a gross amount."""
        return calculate_fee(amount, self._fee_bps)

    def net_amount(self, amount: int) -> int:
        """Share forwarded to the recipient."""
        return amount - self.fee(amount)

    def split(self, amount: int) -> FeeSplit:
        """Split a gross amount so that fee + net == amount."""
        fee = self.fee(amount)
        return FeeSplit(amount=amount, fee=fee, net=amount - fee)

    def with_fee_bps(self, fee_bps: int) -> "FeeCalculator":
        """Administrative rate change; returns a new calculator."""
        return FeeCalculator(fee_bps)

    def __repr__(self) -> str:
        return f"FeeCalculator(fee_bps={self._fee_bps})"
