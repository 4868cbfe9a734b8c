"""Question bank ingestion from the exported ``result*.csv`` files."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from .models import QuestionChoice, QuestionRecord
from .validators import find_duplicate_ids, unique_questions


logger = logging.getLogger(__name__)

CHOICE_COLUMNS = ("A", "B", "C", "D")

COLUMN_SET_NO = "練習問題セット"
COLUMN_QUESTION_NO = "設問"
COLUMN_CATEGORY = "カテゴリ"
COLUMN_QUESTION = "出題内容"
COLUMN_CORRECT = "正答"


def _choice_column(key: str) -> str:
    return f"選択肢{key}"


def _help_url_column(key: str) -> str:
    return f"選択肢{key} ヘルプ参照先URL"


def _text_ref_column(key: str) -> str:
    return f"選択肢{key} テキスト参照先"


def _drop_blank_rows(rows: Iterable[Sequence[str]]) -> List[Sequence[str]]:
    return [row for row in rows if any((cell or "").strip() for cell in row)]


def parse_result_rows(rows: Sequence[Sequence[str]]) -> List[QuestionRecord]:
    """Convert a header row plus data rows into question records.

    Only the question text and correct-answer columns are required. Rows that
    cannot form a question with two choices and a correct answer are skipped.
    """

    rows = _drop_blank_rows(rows)
    if len(rows) < 2:
        return []

    header = [(cell or "").strip() for cell in rows[0]]
    index: Dict[str, int] = {name: pos for pos, name in reversed(list(enumerate(header)))}
    if COLUMN_QUESTION not in index or COLUMN_CORRECT not in index:
        logger.warning("CSV header lacks the question or correct-answer column; no questions loaded")
        return []

    questions: List[QuestionRecord] = []
    for row_number, row in enumerate(rows[1:], start=1):

        def get(column: str) -> str:
            pos = index.get(column, -1)
            if 0 <= pos < len(row):
                return (row[pos] or "").strip()
            return ""

        text = get(COLUMN_QUESTION)
        correct_raw = get(COLUMN_CORRECT).upper()
        if not text or not correct_raw:
            logger.debug(f"Row {row_number}: missing question text or correct answer")
            continue
        correct_keys = {ch for ch in correct_raw if ch in CHOICE_COLUMNS}
        if not correct_keys:
            logger.debug(f"Row {row_number}: no usable correct-answer letter in {correct_raw!r}")
            continue

        set_no = get(COLUMN_SET_NO)
        question_no = get(COLUMN_QUESTION_NO)
        question_id = f"{set_no}-{question_no}" if set_no and question_no else f"row-{row_number}"

        choices = [
            QuestionChoice(
                text=get(_choice_column(key)),
                is_correct=key in correct_keys,
                help_url=get(_help_url_column(key)),
                text_ref=get(_text_ref_column(key)),
                column=key,
            )
            for key in CHOICE_COLUMNS
            if get(_choice_column(key))
        ]
        try:
            question = QuestionRecord(
                id=question_id,
                category=get(COLUMN_CATEGORY),
                text=text,
                choices=choices,
            )
        except PydanticValidationError as exc:
            logger.debug(f"Row {row_number} ({question_id}) skipped: {exc.errors()[0]['msg']}")
            continue
        questions.append(question)

    return questions


def read_csv_rows(path: Path) -> List[List[str]]:
    """Read a CSV export as text cells, header row first.

    Rows with more cells than the header are trimmed to the header width
    instead of failing the whole file.
    """

    options = dict(sep=",", dtype=str, keep_default_na=False, encoding="utf-8-sig")
    width = len(pd.read_csv(path, nrows=0, **options).columns)
    df = pd.read_csv(
        path, engine="python", on_bad_lines=lambda line: line[:width], **options
    )
    df = df.fillna("")
    return [[str(column) for column in df.columns]] + df.values.tolist()


def load_question_bank(paths: Iterable[Path]) -> List[QuestionRecord]:
    """Load every readable file, concatenate the questions and drop duplicate ids."""

    loaded: List[QuestionRecord] = []
    for path in paths:
        try:
            rows = read_csv_rows(path)
        except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
            logger.warning(f"Failed loading question CSV {path}: {exc}")
            continue
        questions = parse_result_rows(rows)
        logger.info(f"Loaded {len(questions)} questions from {path}")
        loaded.extend(questions)

    duplicates = find_duplicate_ids(loaded)
    if duplicates:
        logger.warning(f"{len(duplicates)} question ids appear more than once across the bank")
    bank = unique_questions(loaded)
    if not bank:
        logger.warning("No valid questions were loaded; quizzes cannot start")
    return bank


__all__ = ["load_question_bank", "parse_result_rows", "read_csv_rows"]
