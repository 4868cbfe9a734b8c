"""Repository interfaces for coverquiz persistent state."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .domain import StatsState
from .models import Explanation


class StatsRepository(ABC):
    """Load and persist the learner's selection history."""

    @abstractmethod
    def load(self) -> StatsState:
        """Return the stored state, or a fresh one when nothing usable is stored.

        Implementations must not raise.
        """

    @abstractmethod
    def save(self, state: StatsState) -> None:
        """Persist the state on a best-effort basis without raising."""


class ExplanationRepository(ABC):
    """Read-only lookup of supplementary explanations."""

    @abstractmethod
    def get(self, question_id: str) -> Optional[Explanation]:
        """Return the explanation for a question, if one exists."""

    @property
    @abstractmethod
    def as_of(self) -> Optional[str]:
        """Date the whole explanation layer was written against, if given."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of questions that have an explanation."""


__all__ = ["ExplanationRepository", "StatsRepository"]
