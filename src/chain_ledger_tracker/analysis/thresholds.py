"""Stake thresholds and transaction categorization.

Incoming values are matched against three exact stake tiers (1x, 10x and
100x the stake unit) with an absolute tolerance. Anything above the top
tier is a top-up; anything else is uncategorized.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

DEFAULT_STAKE_UNIT = Decimal("0.00000001")
DEFAULT_TOLERANCE = Decimal("1e-10")

# (upper bound in units, label); the last label has no upper bound.
VALUE_RANGES: tuple[tuple[int | None, str], ...] = (
    (1, "< 1 sat"),
    (10, "1-9 sats"),
    (100, "10-99 sats"),
    (1_000, "100-999 sats"),
    (10_000, "1k-9.9k sats"),
    (100_000, "10k-99.9k sats"),
    (None, "100k+ sats"),
)

VALUE_RANGE_LABELS: tuple[str, ...] = tuple(label for _, label in VALUE_RANGES)


class Category(str, Enum):
    """Outcome of categorizing one incoming transaction."""

    WHEEL_ONE = "wheel_one"
    WHEEL_TEN = "wheel_ten"
    GUESS_THE_BLOCK = "guess_the_block"
    TOP_UP = "top_up"
    UNCATEGORIZED = "uncategorized"

    @property
    def is_gaming(self) -> bool:
        return self in (Category.WHEEL_ONE, Category.WHEEL_TEN, Category.GUESS_THE_BLOCK)


@dataclass(frozen=True)
class Thresholds:
    """Stake tiers derived from a single unit."""

    unit: Decimal = DEFAULT_STAKE_UNIT
    tolerance: Decimal = DEFAULT_TOLERANCE

    @property
    def one(self) -> Decimal:
        return self.unit

    @property
    def ten(self) -> Decimal:
        return self.unit * 10

    @property
    def hundred(self) -> Decimal:
        return self.unit * 100

    def matches(self, value: Decimal, target: Decimal) -> bool:
        return abs(value - target) < self.tolerance

    def categorize(self, value: Decimal) -> Category:
        if self.matches(value, self.one):
            return Category.WHEEL_ONE
        if self.matches(value, self.ten):
            return Category.WHEEL_TEN
        if self.matches(value, self.hundred):
            return Category.GUESS_THE_BLOCK
        if value > self.hundred:
            return Category.TOP_UP
        return Category.UNCATEGORIZED

    def to_units(self, value: Decimal) -> int:
        """Value expressed in whole stake units (half-up rounding)."""
        return int((value / self.unit).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def value_range(self, value: Decimal) -> str:
        units = self.to_units(value)
        for upper, label in VALUE_RANGES:
            if upper is None or units < upper:
                return label
        return VALUE_RANGE_LABELS[-1]
