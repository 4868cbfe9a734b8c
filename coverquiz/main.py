"""FastAPI application wiring for the coverquiz trainer."""

from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException

from .bank import load_question_bank
from .models import (
    AdvanceResponse,
    BankStatusResponse,
    ExplanationResponse,
    GradeResponse,
    QuestionView,
    QuizResultResponse,
    ToggleChoiceRequest,
)
from .services import QuizFlowError, QuizSelector, QuizService, SelectionConfig
from .storage import JsonExplanationRepository, stats_repository_for
from .validators import validate_selection_config


logger = logging.getLogger(__name__)

DEFAULT_CSV_FILES = "result.csv,result (1).csv,result (2).csv"


def _split_list(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    """Runtime settings read from ``COVERQUIZ_*`` environment variables."""

    csv_files: List[Path] = field(default_factory=lambda: [Path(p) for p in _split_list(DEFAULT_CSV_FILES)])
    explanations_path: Path = Path("explanations.json")
    stats_path: Path = Path("quiz_stats.json")
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    fixed_question_ids: List[str] = field(default_factory=list)
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "Settings":
        selection = SelectionConfig(
            coverage_target=int(os.getenv("COVERQUIZ_COVERAGE_TARGET", "20")),
            questions_per_quiz=int(os.getenv("COVERQUIZ_QUESTIONS_PER_QUIZ", "10")),
            recent_window=int(os.getenv("COVERQUIZ_RECENT_WINDOW", "3")),
            recency_penalty=float(os.getenv("COVERQUIZ_RECENCY_PENALTY", "0.25")),
            count_penalty_exponent=float(os.getenv("COVERQUIZ_COUNT_PENALTY_EXPONENT", "1.15")),
        )
        seed = os.getenv("COVERQUIZ_SEED")
        return cls(
            csv_files=[Path(p) for p in _split_list(os.getenv("COVERQUIZ_CSV_FILES", DEFAULT_CSV_FILES))],
            explanations_path=Path(os.getenv("COVERQUIZ_EXPLANATIONS_PATH", "explanations.json")),
            stats_path=Path(os.getenv("COVERQUIZ_STATS_PATH", "quiz_stats.json")),
            selection=selection,
            fixed_question_ids=_split_list(os.getenv("COVERQUIZ_FIXED_QUESTION_IDS", "")),
            seed=int(seed) if seed else None,
        )


def build_quiz_service(settings: Settings) -> QuizService:
    validate_selection_config(settings.selection)
    rng = random.Random(settings.seed) if settings.seed is not None else None
    questions = load_question_bank(settings.csv_files)
    explanations = JsonExplanationRepository(settings.explanations_path)
    selector = QuizSelector(
        stats_repository_for(settings.stats_path), config=settings.selection, rng=rng
    )
    logger.info(f"Question bank ready with {len(questions)} questions")
    return QuizService(
        questions,
        selector,
        explanations=explanations,
        fixed_question_ids=settings.fixed_question_ids,
        rng=rng,
    )


app = FastAPI(title="coverquiz", version="0.1.0")


def get_quiz_service() -> QuizService:
    return app.state.quiz_service


@app.on_event("startup")
def startup() -> None:
    if getattr(app.state, "quiz_service", None) is not None:
        return
    app.state.quiz_service = build_quiz_service(Settings.from_env())


@app.get("/v1/bank", response_model=BankStatusResponse)
def bank_status(service: QuizService = Depends(get_quiz_service)) -> BankStatusResponse:
    return service.status()


@app.post("/v1/quiz/start", response_model=QuestionView)
def start_quiz(service: QuizService = Depends(get_quiz_service)) -> QuestionView:
    try:
        service.start_quiz()
        return service.current_view()
    except QuizFlowError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/v1/quiz/current", response_model=QuestionView)
def current_question(service: QuizService = Depends(get_quiz_service)) -> QuestionView:
    try:
        return service.current_view()
    except QuizFlowError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/v1/quiz/answer", response_model=QuestionView)
def toggle_answer(
    request: ToggleChoiceRequest, service: QuizService = Depends(get_quiz_service)
) -> QuestionView:
    try:
        return service.toggle_choice(request.choice_index)
    except IndexError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except QuizFlowError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/v1/quiz/grade", response_model=GradeResponse)
def grade_question(service: QuizService = Depends(get_quiz_service)) -> GradeResponse:
    try:
        return service.grade()
    except QuizFlowError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/v1/quiz/explain", response_model=ExplanationResponse)
def explain_question(service: QuizService = Depends(get_quiz_service)) -> ExplanationResponse:
    try:
        return service.explain()
    except QuizFlowError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/v1/quiz/next", response_model=AdvanceResponse)
def next_question(service: QuizService = Depends(get_quiz_service)) -> AdvanceResponse:
    try:
        return service.advance()
    except QuizFlowError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/v1/quiz/result", response_model=QuizResultResponse)
def quiz_result(service: QuizService = Depends(get_quiz_service)) -> QuizResultResponse:
    try:
        return service.result()
    except QuizFlowError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


__all__ = ["Settings", "app", "build_quiz_service"]
