from collections import Counter
from typing import Iterable, List, Sequence

from .types import Detection


def cap_per_class(candidates: Iterable[Detection], max_per_class: int) -> List[Detection]:
    """
    Streaming per-class limit: keep a candidate while its class has been
    emitted fewer than `max_per_class` times. Input order is preserved, so once
    a class is full every later candidate of that class is dropped.
    """

    if max_per_class < 1:
        raise ValueError(f"max_per_class must be >= 1 (got {max_per_class}).")

    counts: Counter = Counter()
    kept: List[Detection] = []
    for det in candidates:
        if counts[det.detected_class] >= max_per_class:
            continue
        counts[det.detected_class] += 1
        kept.append(det)
    return kept


def sort_by_confidence(candidates: Sequence[Detection]) -> List[Detection]:
    # sorted() is stable: equal confidences keep discovery order.
    return sorted(candidates, key=lambda d: d.confidence, reverse=True)
