"""Simple in-process metrics registry for selection and grading instrumentation."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import List


@dataclass
class MetricsRegistry:
    """Holds counters and histograms exposed by the application."""

    selections: int = 0
    selected_item_counts: List[int] = field(default_factory=list)
    new_item_counts: List[int] = field(default_factory=list)
    stats_load_failures: int = 0
    stats_save_failures: int = 0
    storage_failure_reasons: Counter = field(default_factory=Counter)
    grade_outcomes: Counter = field(default_factory=Counter)

    def record_selection(self, selected: int, new_items: int) -> None:
        self.selections += 1
        self.selected_item_counts.append(selected)
        self.new_item_counts.append(new_items)

    def record_load_failure(self, reason: str) -> None:
        self.stats_load_failures += 1
        self.storage_failure_reasons[reason] += 1

    def record_save_failure(self, reason: str) -> None:
        self.stats_save_failures += 1
        self.storage_failure_reasons[reason] += 1

    def record_grade(self, correct: bool) -> None:
        self.grade_outcomes["correct" if correct else "incorrect"] += 1

    @property
    def accuracy_rate(self) -> float:
        total = sum(self.grade_outcomes.values())
        if total == 0:
            return 0.0
        return self.grade_outcomes["correct"] / total

    def reset(self) -> None:
        self.__init__()


METRICS = MetricsRegistry()

__all__ = ["METRICS", "MetricsRegistry"]
