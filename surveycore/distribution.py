"""Tracking chosen options and steering probabilities toward a target distribution."""

from __future__ import annotations

import math
import threading
from collections.abc import Sequence

WARMUP = 12
GAIN = 4.2
MIN_FACTOR = 0.45
MAX_FACTOR = 2.2
GAP_LIMIT = 0.42


def _key(question_index: int, row_index: int | None) -> tuple[int, int | None]:
    return (question_index, row_index)


class DistributionTracker:
    """Per-question (or per matrix row) option counts; safe to share between threads."""

    def __init__(self) -> None:
        self._counts: dict[tuple[int, int | None], list[int]] = {}
        self._lock = threading.Lock()

    def record_choice(
        self, question_index: int, option_index: int, option_count: int, row_index: int | None = None
    ) -> None:
        """Count one choice; out-of-range indices are ignored."""
        with self._lock:
            counts = self._counts.setdefault(_key(question_index, row_index), [0] * max(option_count, 0))
            if 0 <= option_index < len(counts):
                counts[option_index] += 1

    def snapshot(
        self, question_index: int, option_count: int, row_index: int | None = None
    ) -> tuple[int, list[int]]:
        """Return (total, per-option counts)."""
        with self._lock:
            counts = self._counts.get(_key(question_index, row_index))
            if counts is None:
                return 0, [0] * max(option_count, 0)
            return sum(counts), list(counts)


def resolve_distribution_probabilities(
    target: Sequence[float],
    option_count: int,
    tracker: DistributionTracker | None,
    question_index: int,
    row_index: int | None = None,
) -> list[float]:
    """Normalise the target and push it away from options already over-represented."""
    if option_count <= 0:
        return list(target)

    clipped = [max(0.0, float(value)) for value in list(target)[:option_count]]
    total = sum(clipped)
    if total <= 0:
        return [1.0 / option_count] * option_count
    normalized = [value / total for value in clipped] + [0.0] * (option_count - len(clipped))

    if tracker is None:
        return normalized
    sample_count, counts = tracker.snapshot(question_index, option_count, row_index)
    if sample_count < WARMUP:
        return normalized

    sample_factor = min(1.0, sample_count / WARMUP)
    adjusted = []
    for index, target_ratio in enumerate(normalized):
        observed = counts[index] if index < len(counts) else 0
        gap = target_ratio - observed / sample_count
        gap = max(-GAP_LIMIT, min(GAP_LIMIT, gap))
        factor = math.exp(GAIN * sample_factor * gap)
        factor = max(MIN_FACTOR, min(MAX_FACTOR, factor))
        adjusted.append(target_ratio * factor)

    total = sum(adjusted)
    if total > 0:
        adjusted = [value / total for value in adjusted]
    return adjusted