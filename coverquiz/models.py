"""Pydantic models for the coverquiz backend."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QuestionChoice(BaseModel):
    """One answer choice with its correctness flag and reference material."""

    model_config = ConfigDict(frozen=True)

    text: str
    is_correct: bool = False
    help_url: str = ""
    text_ref: str = ""
    column: str = ""


class QuestionRecord(BaseModel):
    """Question loaded from the bank; immutable for the lifetime of a session."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: str = ""
    text: str
    choices: List[QuestionChoice]

    @field_validator("id", "text")
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Questions require a non-empty id and text")
        return value

    @field_validator("choices")
    @classmethod
    def validate_choices(cls, value: List[QuestionChoice]) -> List[QuestionChoice]:
        if len(value) < 2:
            raise ValueError("Questions require at least two choices")
        if not any(choice.is_correct for choice in value):
            raise ValueError("Questions require at least one correct choice")
        return value

    @property
    def is_multiple(self) -> bool:
        return sum(1 for choice in self.choices if choice.is_correct) > 1

    @property
    def correct_indices(self) -> List[int]:
        return [idx for idx, choice in enumerate(self.choices) if choice.is_correct]


class ExplanationLink(BaseModel):
    label: str = ""
    url: str = ""


class Explanation(BaseModel):
    """Supplementary explanation keyed by question id."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = ""
    body: str = ""
    as_of: Optional[str] = Field(default=None, alias="asOf")
    links: List[ExplanationLink] = Field(default_factory=list)

    @field_validator("links", mode="before")
    @classmethod
    def drop_empty_links(cls, value):
        if not isinstance(value, list):
            return []
        return [link for link in value if link]


class ChoiceView(BaseModel):
    index: int
    label: str
    text: str
    selected: bool
    is_correct: Optional[bool] = None


class QuestionView(BaseModel):
    """Current question as presented to the learner."""

    position: int
    total: int
    question_id: str
    category: str
    text: str
    is_multiple: bool
    choices: List[ChoiceView]
    graded: bool
    explained: bool
    can_grade: bool


class ToggleChoiceRequest(BaseModel):
    choice_index: int


class GradeResponse(BaseModel):
    question_id: str
    is_correct: bool
    is_multiple: bool
    selected_labels: List[str]
    correct_labels: List[str]
    score: int


class ExplanationResponse(BaseModel):
    question_id: str
    correct_labels: List[str]
    selected_labels: List[str]
    references: List[str]
    title: str = ""
    body: str = ""
    as_of: Optional[str] = None
    links: List[ExplanationLink] = Field(default_factory=list)


class AdvanceResponse(BaseModel):
    finished: bool
    question: Optional[QuestionView] = None


class ReviewItem(BaseModel):
    position: int
    question_id: str
    category: str
    text: str
    selected_labels: List[str]
    correct_labels: List[str]
    is_correct: bool
    references: List[str]


class QuizResultResponse(BaseModel):
    total: int
    correct: int
    rate: int
    items: List[ReviewItem]


class BankStatusResponse(BaseModel):
    question_count: int
    explanation_count: int
    questions_per_quiz: int
    session_counter: int
    ready: bool


__all__ = [
    "AdvanceResponse",
    "BankStatusResponse",
    "ChoiceView",
    "Explanation",
    "ExplanationLink",
    "ExplanationResponse",
    "GradeResponse",
    "QuestionChoice",
    "QuestionRecord",
    "QuestionView",
    "QuizResultResponse",
    "ReviewItem",
    "ToggleChoiceRequest",
]
