"""Per-pipeline record of user accept/reject feedback.

Written by the context analyzer, read by the confidence scorer. Only the most
recent ``window`` records are kept; nothing is persisted.
"""
from __future__ import annotations

from collections import deque
from datetime import UTC, datetime

from promptmark.types import FeedbackRecord, SectionCategory


class FeedbackLog:
    def __init__(self, window: int = 100) -> None:
        self._records: deque[FeedbackRecord] = deque(maxlen=window)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[FeedbackRecord, ...]:
        return tuple(self._records)

    def append(
        self,
        category: SectionCategory,
        *,
        original_confidence: int,
        was_accepted: bool,
        timestamp: datetime | None = None,
    ) -> FeedbackRecord:
        record = FeedbackRecord(
            category=category,
            original_confidence=original_confidence,
            was_accepted=was_accepted,
            timestamp=timestamp or datetime.now(UTC),
        )
        self._records.append(record)
        return record

    def acceptance_rate(self, category: SectionCategory) -> float | None:
        """Fraction of accepted records for ``category``; None without history."""
        relevant = [r for r in self._records if r.category == category]
        if not relevant:
            return None
        return sum(1 for r in relevant if r.was_accepted) / len(relevant)

    def overall_accuracy(self) -> float:
        if not self._records:
            return 0.0
        return sum(1 for r in self._records if r.was_accepted) / len(self._records)

    def clear(self) -> None:
        self._records.clear()
