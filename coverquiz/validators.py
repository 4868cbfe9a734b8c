"""Validation utilities for question banks and selection settings."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable, List

from .models import QuestionRecord

if TYPE_CHECKING:
    from .services import SelectionConfig


logger = logging.getLogger(__name__)

HTTP_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


class ValidationError(ValueError):
    """Raised when configuration values cannot drive a sensible selection."""


def is_http_url(value: str) -> bool:
    return bool(HTTP_URL_PATTERN.match((value or "").strip()))


def find_duplicate_ids(questions: Iterable[QuestionRecord]) -> List[str]:
    seen_ids = set()
    duplicates: List[str] = []
    for question in questions:
        if question.id in seen_ids and question.id not in duplicates:
            duplicates.append(question.id)
        seen_ids.add(question.id)
    return duplicates


def unique_questions(questions: Iterable[QuestionRecord]) -> List[QuestionRecord]:
    """Keep the first question for each id, warning about any that are dropped."""

    kept: List[QuestionRecord] = []
    seen_ids = set()
    for question in questions:
        if question.id in seen_ids:
            logger.warning(f"Duplicate question id {question.id!r}; keeping the first occurrence")
            continue
        seen_ids.add(question.id)
        kept.append(question)
    return kept


def validate_selection_config(config: "SelectionConfig") -> None:
    """Reject tuning values that would break coverage or weighting."""

    if config.coverage_target < 1:
        raise ValidationError("coverage_target must be at least 1")
    if config.questions_per_quiz < 1:
        raise ValidationError("questions_per_quiz must be at least 1")
    if config.recent_window < 0:
        raise ValidationError("recent_window must not be negative")
    if not 0 < config.recency_penalty <= 1:
        raise ValidationError("recency_penalty must be in the range (0, 1]")
    if config.count_penalty_exponent < 0:
        raise ValidationError("count_penalty_exponent must not be negative")
    if config.weight_floor <= 0:
        raise ValidationError("weight_floor must be positive so no question is excluded outright")


__all__ = [
    "ValidationError",
    "find_duplicate_ids",
    "is_http_url",
    "unique_questions",
    "validate_selection_config",
]
