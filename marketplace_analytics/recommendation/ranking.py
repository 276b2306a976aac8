"""
Percentile helpers for ranked product lists.
"""

import math
from typing import Dict, Iterable, List, Sequence, Tuple


def top_percentile(ranked_ids: Sequence[str], fraction: float = 0.1) -> List[str]:
    """Head of a ranking holding ``ceil(n * fraction)`` entries."""
    if not ranked_ids:
        return []
    return list(ranked_ids[: math.ceil(len(ranked_ids) * fraction)])


def in_top_percentile(product_id: str, ranked_ids: Sequence[str], fraction: float = 0.1) -> bool:
    return product_id in top_percentile(ranked_ids, fraction)


def merge_weighted(
    weights: Dict[str, float], contributions: Iterable[Tuple[str, float]], excluded: set
) -> None:
    """Add contributions to ``weights`` in place, skipping excluded ids."""
    for product_id, weight in contributions:
        if product_id in excluded:
            continue
        weights[product_id] = weights.get(product_id, 0) + weight


def rank_by_weight(weights: Dict[str, float], limit: int) -> List[str]:
    """Ids by descending weight; equal weights keep insertion order."""
    return [pid for pid, _ in sorted(weights.items(), key=lambda item: -item[1])][:limit]
