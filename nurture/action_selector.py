"""Seeded weighted sampling of growth actions without replacement."""

from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

import numpy as np

from nurture.schemas import GrowthActionDefinition

T = TypeVar("T")


def weighted_choice(entries: Sequence[T], weight_of: Callable[[T], float], roll: float) -> Optional[int]:
    """Index of the entry selected by *roll* in a cumulative-weight walk.

    The first entry whose cumulative weight is ``>= roll`` wins, so a roll of
    0 selects the first positively weighted entry and a roll equal to the
    total selects the last one.  Entries with weight <= 0 are skipped.
    Returns None when no entry has positive weight.
    """
    cumulative = 0.0
    last: Optional[int] = None
    for i, entry in enumerate(entries):
        weight = weight_of(entry)
        if weight <= 0:
            continue
        cumulative += weight
        last = i
        if roll <= cumulative:
            return i
    return last


def total_weight(entries: Iterable[T], weight_of: Callable[[T], float]) -> float:
    return sum(max(0.0, weight_of(e)) for e in entries)


def eligible(
    pool: Iterable[GrowthActionDefinition],
    level: int,
    recent_ids: Iterable[int] = (),
) -> List[GrowthActionDefinition]:
    """Actions offered at *level*: in level range, positive weight, off cooldown."""
    recent = set(recent_ids)
    return [
        a for a in pool
        if a.min_level <= level <= a.max_level
        and a.weight > 0
        and not (a.cooldown_turns > 0 and a.id in recent)
    ]


def pick(
    pool: Iterable[GrowthActionDefinition],
    level: int,
    count: int,
    recent_ids: Optional[Iterable[int]] = None,
    seed: Optional[int] = None,
) -> List[GrowthActionDefinition]:
    """Draw up to *count* distinct actions from *pool*.

    The generator is seeded once per call, so identical arguments give an
    identical ordered result.  After each draw the chosen action is removed,
    together with every remaining action it excludes or that excludes it.
    """
    candidates = eligible(pool, level, recent_ids or ())
    rng = np.random.default_rng(seed)
    picked: List[GrowthActionDefinition] = []

    while len(picked) < count and candidates:
        total = total_weight(candidates, _weight)
        if total <= 0:
            break
        roll = float(rng.random()) * total
        index = weighted_choice(candidates, _weight, roll)
        if index is None:
            break
        chosen = candidates.pop(index)
        picked.append(chosen)
        candidates = [
            c for c in candidates
            if c.id not in chosen.exclusive_with and chosen.id not in c.exclusive_with
        ]

    return picked


def _weight(action: GrowthActionDefinition) -> float:
    return action.weight
