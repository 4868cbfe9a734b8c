"""Core services implementing question selection and the quiz session flow."""
from __future__ import annotations

import logging
import math
import random
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .domain import PerQuestionStat
from .metrics import METRICS
from .models import (
    AdvanceResponse,
    BankStatusResponse,
    ChoiceView,
    ExplanationResponse,
    GradeResponse,
    QuestionRecord,
    QuestionView,
    QuizResultResponse,
    ReviewItem,
)
from .repositories import ExplanationRepository, StatsRepository
from .sampling import shuffled, weighted_sample_without_replacement
from .validators import is_http_url, unique_questions


logger = logging.getLogger(__name__)


@dataclass
class SelectionConfig:
    """Tunable parameters of the coverage and review heuristics."""

    coverage_target: int = 20
    questions_per_quiz: int = 10
    recent_window: int = 3
    recency_penalty: float = 0.25
    count_penalty_exponent: float = 1.15
    weight_floor: float = 0.0001


def target_new_count(pool_size: int, count: int, coverage_target: int) -> int:
    """Minimum number of never-shown questions to inject into one session."""

    coverage_target = max(1, coverage_target)
    return min(count, max(1, math.ceil(pool_size / coverage_target)))


def recency_factor(stat: PerQuestionStat, next_session: int, config: SelectionConfig) -> float:
    since_last_shown = next_session - stat.last_seen
    return config.recency_penalty if since_last_shown <= config.recent_window else 1.0


def question_weight(stat: PerQuestionStat, next_session: int, config: SelectionConfig) -> float:
    """Review weight: fewer showings and a longer gap make a question likelier."""

    count_penalty = 1 / math.pow(1 + stat.seen, config.count_penalty_exponent)
    return config.weight_floor + count_penalty * recency_factor(stat, next_session, config)


class QuizSelector:
    """Draws each session's questions and records them in the stats store."""

    def __init__(
        self,
        repository: StatsRepository,
        config: Optional[SelectionConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._repository = repository
        self._config = config or SelectionConfig()
        self._rng = rng
        self._lock = threading.Lock()

    @property
    def config(self) -> SelectionConfig:
        return self._config

    def session_counter(self) -> int:
        return self._repository.load().session_counter

    def select_questions(
        self,
        pool: Sequence[QuestionRecord],
        count: int,
        coverage_target: Optional[int] = None,
    ) -> List[QuestionRecord]:
        """Draw one session's questions.

        Loading, drawing and saving happen under one lock so concurrent callers
        each get their own session number.
        """

        if coverage_target is None:
            coverage_target = self._config.coverage_target
        pool = unique_questions(pool)
        count = max(0, min(count, len(pool)))

        with self._lock:
            stats = self._repository.load()
            next_session = stats.session_counter + 1

            target_new = target_new_count(len(pool), count, coverage_target)
            unseen = [question for question in pool if stats.get_stat(question.id).is_unseen]
            new_count = max(0, min(target_new, len(unseen), count))
            picked_new = shuffled(unseen, self._rng)[:new_count]

            picked_ids = {question.id for question in picked_new}
            rest_pool = [question for question in pool if question.id not in picked_ids]
            picked_rest = weighted_sample_without_replacement(
                rest_pool,
                count - len(picked_new),
                lambda question: question_weight(stats.get_stat(question.id), next_session, self._config),
                self._rng,
            )

            picked = picked_new + picked_rest
            for question in picked:
                stats.set_stat(question.id, stats.get_stat(question.id).shown_in(next_session))
            stats.session_counter = next_session
            try:
                self._repository.save(stats)
            except Exception:
                logger.exception(f"Stats store failed to save session {next_session}; continuing")
                METRICS.record_save_failure("unhandled")

        if len(unseen) < target_new:
            logger.info(
                f"Session {next_session}: only {len(unseen)} unseen questions left for a quota of {target_new}"
            )
        logger.info(
            f"Session {next_session}: selected {len(picked)} questions "
            f"({len(picked_new)} new, {len(picked_rest)} review)"
        )
        METRICS.record_selection(len(picked), len(picked_new))
        return picked


def index_to_label(index: int) -> str:
    return chr(ord("A") + index)


def _labels(indices: Iterable[int]) -> List[str]:
    return [index_to_label(idx) for idx in sorted(set(indices))]


def choice_references(question: QuestionRecord) -> List[str]:
    """Per-choice help URLs and text references, e.g. ``[A] help: https://...``."""

    lines: List[str] = []
    for idx, choice in enumerate(question.choices):
        parts: List[str] = []
        if choice.help_url:
            kind = "help" if is_http_url(choice.help_url) else "help (not a link)"
            parts.append(f"{kind}: {choice.help_url}")
        if choice.text_ref:
            parts.append(f"text: {choice.text_ref}")
        if parts:
            lines.append(f"[{index_to_label(idx)}] " + " / ".join(parts))
    return lines


class QuizFlowError(ValueError):
    """Raised when a quiz action is not allowed in the current state."""


@dataclass
class QuestionState:
    selected: List[int] = field(default_factory=list)
    graded: bool = False
    explained: bool = False
    is_correct: bool = False


@dataclass
class QuizSession:
    """Answers and grading state for one run through a selected question set."""

    questions: List[QuestionRecord]
    states: List[QuestionState] = field(init=False)
    current_index: int = 0
    score: int = 0
    finished: bool = False

    def __post_init__(self) -> None:
        self.states = [QuestionState() for _ in self.questions]

    @classmethod
    def start(cls, picked: Sequence[QuestionRecord], rng: Optional[random.Random] = None) -> "QuizSession":
        """Start a session with every question's choices shuffled for display."""

        questions = [
            question.model_copy(update={"choices": shuffled(question.choices, rng)})
            for question in picked
        ]
        return cls(questions=questions)

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> QuestionRecord:
        return self.questions[self.current_index]

    @property
    def current_state(self) -> QuestionState:
        return self.states[self.current_index]

    def toggle_choice(self, choice_index: int) -> None:
        question = self.current_question
        state = self.current_state
        if state.graded:
            return
        if not 0 <= choice_index < len(question.choices):
            raise IndexError(f"Choice {choice_index} does not exist for question {question.id}")

        if question.is_multiple:
            if choice_index in state.selected:
                state.selected.remove(choice_index)
            else:
                state.selected.append(choice_index)
        else:
            state.selected = [choice_index]

    def grade_current(self) -> bool:
        state = self.current_state
        if state.graded:
            raise QuizFlowError("This question has already been graded")
        if not state.selected:
            raise QuizFlowError("Select at least one choice before grading")

        is_correct = set(state.selected) == set(self.current_question.correct_indices)
        state.graded = True
        state.is_correct = is_correct
        if is_correct:
            self.score += 1
        METRICS.record_grade(is_correct)
        return is_correct

    def mark_explained(self) -> None:
        state = self.current_state
        if not state.graded:
            raise QuizFlowError("Grade the question before asking for the explanation")
        state.explained = True

    def advance(self) -> bool:
        """Move to the next question; return True once the whole set is done."""

        state = self.current_state
        if not state.graded or not state.explained:
            raise QuizFlowError("Grade and review the explanation before moving on")
        if self.current_index < self.total - 1:
            self.current_index += 1
        else:
            self.finished = True
        return self.finished

    def rate(self) -> int:
        if self.total == 0:
            return 0
        return int(math.floor(self.score * 100 / self.total + 0.5))


class QuizService:
    """Facade tying the bank, the selector and the current session together."""

    def __init__(
        self,
        questions: Sequence[QuestionRecord],
        selector: QuizSelector,
        explanations: Optional[ExplanationRepository] = None,
        fixed_question_ids: Optional[Sequence[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._questions = list(questions)
        self._selector = selector
        self._explanations = explanations
        self._fixed_question_ids = list(fixed_question_ids or [])
        self._rng = rng
        self._session: Optional[QuizSession] = None
        self._lock = threading.RLock()

    @property
    def session(self) -> QuizSession:
        if self._session is None:
            raise QuizFlowError("No quiz is in progress; start one first")
        return self._session

    def _pool(self) -> List[QuestionRecord]:
        if not self._fixed_question_ids:
            return self._questions
        wanted = set(self._fixed_question_ids)
        filtered = [question for question in self._questions if question.id in wanted]
        if not filtered:
            logger.warning("None of the fixed question ids exist in the bank; using every question")
            return self._questions
        return filtered

    def start_quiz(self) -> QuizSession:
        if not self._questions:
            raise QuizFlowError("The question bank is empty; a quiz cannot be started")
        pool = self._pool()
        count = min(self._selector.config.questions_per_quiz, len(pool))
        with self._lock:
            picked = self._selector.select_questions(pool, count)
            self._session = QuizSession.start(picked, self._rng)
            return self._session

    def status(self) -> BankStatusResponse:
        return BankStatusResponse(
            question_count=len(self._questions),
            explanation_count=len(self._explanations) if self._explanations is not None else 0,
            questions_per_quiz=self._selector.config.questions_per_quiz,
            session_counter=self._selector.session_counter(),
            ready=bool(self._questions),
        )

    def _active_session(self) -> QuizSession:
        session = self.session
        if session.finished:
            raise QuizFlowError("The quiz is finished; fetch the result or start again")
        return session

    def current_view(self) -> QuestionView:
        session = self._active_session()
        question = session.current_question
        state = session.current_state
        selected = set(state.selected)
        return QuestionView(
            position=session.current_index + 1,
            total=session.total,
            question_id=question.id,
            category=question.category,
            text=question.text,
            is_multiple=question.is_multiple,
            choices=[
                ChoiceView(
                    index=idx,
                    label=index_to_label(idx),
                    text=choice.text,
                    selected=idx in selected,
                    is_correct=choice.is_correct if state.graded else None,
                )
                for idx, choice in enumerate(question.choices)
            ],
            graded=state.graded,
            explained=state.explained,
            can_grade=bool(selected) and not state.graded,
        )

    def toggle_choice(self, choice_index: int) -> QuestionView:
        with self._lock:
            self._active_session().toggle_choice(choice_index)
            return self.current_view()

    def grade(self) -> GradeResponse:
        with self._lock:
            session = self._active_session()
            is_correct = session.grade_current()
        question = session.current_question
        return GradeResponse(
            question_id=question.id,
            is_correct=is_correct,
            is_multiple=question.is_multiple,
            selected_labels=_labels(session.current_state.selected),
            correct_labels=_labels(question.correct_indices),
            score=session.score,
        )

    def explain(self) -> ExplanationResponse:
        with self._lock:
            session = self._active_session()
            session.mark_explained()
        question = session.current_question
        response = ExplanationResponse(
            question_id=question.id,
            correct_labels=_labels(question.correct_indices),
            selected_labels=_labels(session.current_state.selected),
            references=choice_references(question),
        )
        explanation = self._explanations.get(question.id) if self._explanations is not None else None
        if explanation is None:
            return response
        if explanation.body:
            response.title = explanation.title
            response.body = explanation.body
            response.as_of = self._explanations.as_of or explanation.as_of
        response.links = list(explanation.links)
        return response

    def advance(self) -> AdvanceResponse:
        with self._lock:
            finished = self._active_session().advance()
            if finished:
                return AdvanceResponse(finished=True)
            return AdvanceResponse(finished=False, question=self.current_view())

    def result(self) -> QuizResultResponse:
        session = self.session
        items = [
            ReviewItem(
                position=position,
                question_id=question.id,
                category=question.category,
                text=question.text,
                selected_labels=_labels(state.selected),
                correct_labels=_labels(question.correct_indices),
                is_correct=state.is_correct,
                references=choice_references(question),
            )
            for position, (question, state) in enumerate(zip(session.questions, session.states), start=1)
        ]
        return QuizResultResponse(
            total=session.total,
            correct=session.score,
            rate=session.rate(),
            items=items,
        )


__all__ = [
    "QuestionState",
    "QuizFlowError",
    "QuizSelector",
    "QuizService",
    "QuizSession",
    "SelectionConfig",
    "choice_references",
    "index_to_label",
    "question_weight",
    "recency_factor",
    "target_new_count",
]
