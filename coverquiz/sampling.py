"""Random helpers: Fisher–Yates shuffles and weighted draws without replacement."""
from __future__ import annotations

import math
import random
from numbers import Real
from typing import Callable, List, Optional, Sequence, TypeVar


T = TypeVar("T")


def shuffled(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Return a Fisher–Yates shuffled copy of ``items``."""

    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def sanitize_weight(value: object) -> float:
    """Clamp a weight to a finite, non-negative float; anything else counts as zero."""

    if isinstance(value, bool) or not isinstance(value, Real):
        return 0.0
    weight = float(value)
    if not math.isfinite(weight):
        return 0.0
    return max(0.0, weight)


def weighted_sample_without_replacement(
    items: Sequence[T],
    k: int,
    weight: Callable[[T], float],
    rng: Optional[random.Random] = None,
) -> List[T]:
    """Draw up to ``k`` distinct items, each draw proportional to ``weight(item)``.

    Weights are recomputed over the remaining pool before every draw. When
    every remaining weight is zero the rest is picked uniformly at random.
    ``items`` itself is never modified.
    """

    rng = rng or random
    pool = list(items)
    picked: List[T] = []

    while len(picked) < k and pool:
        weights = [sanitize_weight(weight(item)) for item in pool]
        total = sum(weights)

        if total <= 0:
            picked.extend(shuffled(pool, rng)[: k - len(picked)])
            break

        remainder = rng.random() * total
        choice_index = None
        for idx, item_weight in enumerate(weights):
            remainder -= item_weight
            if item_weight > 0 and remainder <= 0:
                choice_index = idx
                break
        if choice_index is None:
            # float drift left a sliver over; fall back to the last drawable item
            choice_index = max(idx for idx, item_weight in enumerate(weights) if item_weight > 0)
        picked.append(pool.pop(choice_index))

    return picked


__all__ = ["sanitize_weight", "shuffled", "weighted_sample_without_replacement"]
