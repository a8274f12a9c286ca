"""
Fee calculation.

fee(amount, bps) = floor(amount * bps / 10000)

Pure integer arithmetic. The bps bound is enforced where rates are
configured (afriflow.config.validate_fee_bps), not here.
"""

from typing import Tuple

from afriflow.core.models import BPS_DENOMINATOR


def compute_fee(amount: int, fee_bps: int) -> int:
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    return amount * fee_bps // BPS_DENOMINATOR


def split_amount(amount: int, fee_bps: int) -> Tuple[int, int]:
    """Return (fee, net) with fee + net == amount."""
    fee = compute_fee(amount, fee_bps)
    return fee, amount - fee


class FeeCalculator:
    """Holds the current rate; the rate itself is set by the service."""

    def __init__(self, fee_bps: int):
        self.fee_bps = fee_bps

    def fee(self, amount: int) -> int:
        return compute_fee(amount, self.fee_bps)

    def split(self, amount: int) -> Tuple[int, int]:
        return split_amount(amount, self.fee_bps)

    def __repr__(self) -> str:
        return f"FeeCalculator(fee_bps={self.fee_bps})"
