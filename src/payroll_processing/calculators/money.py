"""Currency rounding with configurable precision and rounding mode."""

from __future__ import annotations

import decimal
from decimal import Decimal
from typing import Iterable


class MoneyRounder:
    """Rounds monetary amounts with fixed-point ``Decimal`` arithmetic.

    Intermediate values keep full precision; every amount that leaves the
    engine is quantized exactly once. Banker's rounding is the default.
    """

    def __init__(
        self,
        precision: Decimal = Decimal("0.01"),
        rounding: str = decimal.ROUND_HALF_EVEN,
    ):
        self.precision = precision
        self.rounding = rounding

    def round(self, amount: Decimal) -> Decimal:
        """Quantize amount to the currency precision."""
        return amount.quantize(self.precision, rounding=self.rounding)

    def zero(self) -> Decimal:
        return self.round(Decimal("0"))

    def total(self, amounts: Iterable[Decimal]) -> Decimal:
        """Sum already-rounded amounts."""
        return sum(amounts, self.zero())

    @staticmethod
    def clamp(amount: Decimal, ceiling: Decimal) -> Decimal:
        """Floor at zero and cap at ceiling."""
        if amount <= 0:
            return Decimal("0")
        return min(amount, max(ceiling, Decimal("0")))
