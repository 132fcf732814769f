"""Reward arithmetic shared by the ledger and the collection registry."""

import math
from typing import Callable, List, Tuple

from nurture.schemas import ClearRank

RankRewardLookup = Callable[[ClearRank], int]

# Minimum running-game score per rank, best first.
RANK_MIN_SCORES: List[Tuple[ClearRank, int]] = [
    (ClearRank.SS, 250),
    (ClearRank.S, 200),
    (ClearRank.A, 170),
    (ClearRank.B, 140),
    (ClearRank.C, 110),
    (ClearRank.D, 80),
    (ClearRank.E, 50),
]


def floor_scaled(value: float, factor: float) -> int:
    """``floor(value * factor)`` without float noise (100 * 1.15 is 115)."""
    return int(math.floor(round(value * factor, 6)))


def apply_percent_buff(base: int, percent: float) -> int:
    """Return ``floor(base * (1 + percent / 100))``.

    Non-positive bases and a zero percent return *base* unchanged.
    """
    if base <= 0 or abs(percent) < 1e-9:
        return base
    return floor_scaled(base, 1.0 + percent / 100.0)


def rank_for_score(score: int) -> ClearRank:
    for rank, minimum in RANK_MIN_SCORES:
        if score >= minimum:
            return rank
    return ClearRank.F
