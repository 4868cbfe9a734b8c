import random

import pytest

from coverquiz.metrics import METRICS
from coverquiz.models import QuestionChoice, QuestionRecord
from coverquiz.storage import InMemoryStatsRepository


def make_question(question_id, correct=(0,), n_choices=4, category="General"):
    """Build a question whose choice texts encode their position."""
    return QuestionRecord(
        id=question_id,
        category=category,
        text=f"Question {question_id}?",
        choices=[
            QuestionChoice(text=f"{question_id} choice {i}", is_correct=i in correct)
            for i in range(n_choices)
        ],
    )


def make_pool(n):
    return [make_question(f"1-{i}") for i in range(1, n + 1)]


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def repository():
    return InMemoryStatsRepository()


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()
