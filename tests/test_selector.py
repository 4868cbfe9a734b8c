"""Tests for QuizSelector coverage and review scheduling."""

import math
import random
import threading
import time

import pytest

from conftest import make_pool, make_question
from coverquiz.domain import PerQuestionStat, StatsState
from coverquiz.metrics import METRICS
from coverquiz.repositories import StatsRepository
from coverquiz.services import (
    QuizSelector,
    SelectionConfig,
    question_weight,
    recency_factor,
    target_new_count,
)
from coverquiz.storage import InMemoryStatsRepository


class FailingStatsRepository(StatsRepository):
    """Store whose writes always blow up."""

    def __init__(self):
        self.loads = 0

    def load(self):
        self.loads += 1
        return StatsState()

    def save(self, state):
        raise OSError("quota exceeded")


class SlowStatsRepository(InMemoryStatsRepository):
    """In-memory store with a slow read, widening any load/save race."""

    def load(self):
        state = super().load()
        time.sleep(0.05)
        return state


def _seed_history(repository, session_counter, stats):
    state = StatsState(session_counter=session_counter)
    for question_id, (seen, last_seen) in stats.items():
        state.set_stat(question_id, PerQuestionStat(seen=seen, last_seen=last_seen))
    repository.save(state)


def test_target_new_count():
    assert target_new_count(100, 10, 20) == 5
    assert target_new_count(135, 10, 20) == 7
    assert target_new_count(3, 10, 20) == 1
    assert target_new_count(1000, 10, 20) == 10
    assert target_new_count(10, 10, 0) == 10


def test_result_has_requested_size_and_no_duplicates(repository, rng):
    selector = QuizSelector(repository, rng=rng)
    pool = make_pool(40)
    for _ in range(15):
        picked = selector.select_questions(pool, 10, 20)
        ids = [q.id for q in picked]
        assert len(ids) == 10
        assert len(set(ids)) == 10


def test_small_pool_returns_whole_pool(repository, rng):
    selector = QuizSelector(repository, rng=rng)
    pool = make_pool(4)
    picked = selector.select_questions(pool, 10, 20)
    assert sorted(q.id for q in picked) == sorted(q.id for q in pool)


def test_returns_records_not_ids(repository, rng):
    selector = QuizSelector(repository, rng=rng)
    pool = make_pool(5)
    picked = selector.select_questions(pool, 3, 20)
    assert all(q in pool for q in picked)


def test_empty_pool_returns_empty_and_advances_counter(repository, rng):
    selector = QuizSelector(repository, rng=rng)
    assert selector.select_questions([], 10, 20) == []
    assert selector.select_questions([], 0, 0) == []
    assert repository.load().session_counter == 2


def test_non_positive_count_returns_empty(repository, rng):
    selector = QuizSelector(repository, rng=rng)
    assert selector.select_questions(make_pool(5), 0, 20) == []
    assert selector.select_questions(make_pool(5), -3, 20) == []
    state = repository.load()
    assert state.session_counter == 2
    assert state.stats_by_id == {}


def test_session_counter_increments_once_per_call(repository, rng):
    selector = QuizSelector(repository, rng=rng)
    pool = make_pool(12)
    for expected in range(1, 6):
        selector.select_questions(pool, 4, 3)
        assert repository.load().session_counter == expected


def test_stats_updated_only_for_selected_items(repository, rng):
    _seed_history(repository, 6, {"1-1": (2, 5), "1-2": (1, 3)})
    before = repository.load()
    selector = QuizSelector(repository, rng=rng)
    picked = selector.select_questions(make_pool(20), 5, 4)
    after = repository.load()

    assert after.session_counter == 7
    picked_ids = {q.id for q in picked}
    for question in make_pool(20):
        old = before.get_stat(question.id)
        new = after.get_stat(question.id)
        if question.id in picked_ids:
            assert new.seen == old.seen + 1
            assert new.last_seen == 7
        else:
            assert new == old


def test_coverage_scenario_injects_exactly_target_new(repository):
    pool = make_pool(100)
    selector = QuizSelector(repository, rng=random.Random(99))
    picked = selector.select_questions(pool, 10, 20)
    assert len(picked) == 10
    assert METRICS.new_item_counts == [5]
    assert len({q.id for q in picked}) == 10


def test_unseen_priority_when_history_exists(repository):
    pool = make_pool(30)
    seen_ids = {q.id for q in pool[:24]}
    _seed_history(repository, 10, {qid: (1, 10) for qid in seen_ids})
    selector = QuizSelector(repository, rng=random.Random(4))
    target_new = target_new_count(len(pool), 8, 6)

    picked = selector.select_questions(pool, 8, 6)
    unseen_picked = [q for q in picked if q.id not in seen_ids]
    assert target_new == 5
    assert len(unseen_picked) >= target_new
    # new picks come first
    assert all(q.id not in seen_ids for q in picked[:target_new])


def test_unseen_shortfall_is_not_made_up(repository):
    pool = make_pool(20)
    _seed_history(repository, 3, {q.id: (1, 1) for q in pool[:19]})
    selector = QuizSelector(repository, rng=random.Random(8))
    picked = selector.select_questions(pool, 10, 2)
    assert len(picked) == 10
    assert METRICS.new_item_counts == [1]
    assert picked[0].id == pool[19].id


def test_whole_bank_is_covered_within_target_sessions(repository):
    pool = make_pool(135)
    selector = QuizSelector(repository, rng=random.Random(21))
    for _ in range(20):
        selector.select_questions(pool, 10, 20)
    state = repository.load()
    assert all(state.get_stat(q.id).seen > 0 for q in pool)


def test_duplicate_ids_in_pool_are_collapsed(repository, rng):
    pool = [make_question("1-1"), make_question("1-1"), make_question("1-2")]
    picked = QuizSelector(repository, rng=rng).select_questions(pool, 3, 1)
    assert sorted(q.id for q in picked) == ["1-1", "1-2"]


def test_save_failure_does_not_abort_selection(rng):
    repository = FailingStatsRepository()
    selector = QuizSelector(repository, rng=rng)
    picked = selector.select_questions(make_pool(10), 5, 2)
    assert len(picked) == 5
    assert METRICS.stats_save_failures == 1


@pytest.mark.parametrize(
    "next_session, expected",
    [(11, 0.25), (12, 0.25), (13, 0.25), (14, 1.0), (40, 1.0)],
)
def test_recency_window_boundaries(next_session, expected):
    config = SelectionConfig()
    stat = PerQuestionStat(seen=1, last_seen=10)
    assert recency_factor(stat, next_session, config) == expected
    count_penalty = 1 / math.pow(2, 1.15)
    assert question_weight(stat, next_session, config) == pytest.approx(
        0.0001 + count_penalty * expected
    )


def test_unseen_weight_has_no_recency_penalty():
    assert question_weight(PerQuestionStat(), 1, SelectionConfig()) == pytest.approx(1.0001)


def test_weight_is_positive_for_heavily_seen_items():
    config = SelectionConfig()
    previous = None
    for seen in (1, 10, 1000, 10 ** 9):
        weight = question_weight(PerQuestionStat(seen=seen, last_seen=5), 6, config)
        assert weight > 0
        assert weight >= config.weight_floor
        if previous is not None:
            assert weight <= previous
        previous = weight


def test_config_constants_are_tunable():
    config = SelectionConfig(recent_window=1, recency_penalty=0.5, count_penalty_exponent=1.0)
    stat = PerQuestionStat(seen=1, last_seen=10)
    assert recency_factor(stat, 11, config) == 0.5
    assert recency_factor(stat, 12, config) == 1.0
    assert question_weight(stat, 11, config) == pytest.approx(0.0001 + 0.25)


def test_selector_uses_configured_coverage_target():
    repository = InMemoryStatsRepository()
    selector = QuizSelector(repository, config=SelectionConfig(coverage_target=10), rng=random.Random(2))
    selector.select_questions(make_pool(100), 10)
    assert METRICS.new_item_counts == [10]


def test_concurrent_selections_each_get_their_own_session():
    repository = SlowStatsRepository()
    selector = QuizSelector(repository, rng=random.Random(4))
    pool = make_pool(20)

    threads = [
        threading.Thread(target=selector.select_questions, args=(pool, 5, 4)) for _ in range(4)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    state = repository.load()
    assert state.session_counter == 4
    assert sum(state.get_stat(q.id).seen for q in pool) == 20
    assert max(state.get_stat(q.id).last_seen for q in pool) == 4
