"""Market-cap tranche classification."""

from __future__ import annotations

from enum import Enum
from typing import Tuple


class Tranche(str, Enum):
    """Market-cap brackets, declared from lowest to highest."""

    UNBONDED_BONDED = "unbonded-bonded"
    UP_TO_100K = "0-100k"
    FROM_100K_TO_500K = "100k-500k"
    FROM_500K_TO_1M = "500k-1M"
    FROM_1M_TO_3M = "1M-3M"
    FROM_3M_TO_10M = "3M-10M"
    FROM_10M_TO_20M = "10M-20M"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def __str__(self) -> str:
        return self.value


_RANKS = {tranche: index for index, tranche in enumerate(Tranche)}

# Exclusive upper bounds, ascending. The labels trail their bounds by one
# bracket, and anything at or above 20M lands in the catch-all.
TRANCHE_THRESHOLDS: Tuple[Tuple[float, Tranche], ...] = (
    (100_000, Tranche.UNBONDED_BONDED),
    (500_000, Tranche.UP_TO_100K),
    (1_000_000, Tranche.FROM_100K_TO_500K),
    (3_000_000, Tranche.FROM_500K_TO_1M),
    (10_000_000, Tranche.FROM_1M_TO_3M),
    (20_000_000, Tranche.FROM_3M_TO_10M),
)
TOP_TRANCHE = Tranche.FROM_10M_TO_20M


def classify_market_cap(market_cap: float) -> Tranche:
    """Map a market cap onto its tranche.

    Negative values are accepted and land in the lowest tranche; callers are
    expected to pass non-negative caps.
    """
    for upper_bound, tranche in TRANCHE_THRESHOLDS:
        if market_cap < upper_bound:
            return tranche
    return TOP_TRANCHE


__all__ = ["TOP_TRANCHE", "TRANCHE_THRESHOLDS", "Tranche", "classify_market_cap"]
