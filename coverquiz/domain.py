"""Domain models for per-question selection history."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


NEVER_SEEN_SESSION = -9999


def _coerce_int(value: Any) -> Optional[int]:
    # bool is an int subclass but never a valid counter
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


@dataclass
class PerQuestionStat:
    """How often a question was selected and in which session it was last shown."""

    seen: int = 0
    last_seen: int = NEVER_SEEN_SESSION

    @property
    def is_unseen(self) -> bool:
        return self.seen == 0

    def shown_in(self, session: int) -> "PerQuestionStat":
        return PerQuestionStat(seen=self.seen + 1, last_seen=session)

    def to_dict(self) -> dict:
        return {"seen": self.seen, "lastSeen": self.last_seen}

    @classmethod
    def from_dict(cls, payload: Any) -> "PerQuestionStat":
        if not isinstance(payload, dict):
            return cls()
        seen = _coerce_int(payload.get("seen"))
        last_seen = _coerce_int(payload.get("lastSeen"))
        if seen is None or seen <= 0:
            return cls()
        if last_seen is None or last_seen == NEVER_SEEN_SESSION:
            # shown at some point, session unknown: treat as before the first session
            last_seen = 0
        return cls(seen=seen, last_seen=last_seen)


@dataclass
class StatsState:
    """Persisted selection history for one learner."""

    session_counter: int = 0
    stats_by_id: Dict[str, PerQuestionStat] = field(default_factory=dict)

    def get_stat(self, question_id: str) -> PerQuestionStat:
        stat = self.stats_by_id.get(question_id)
        if stat is None:
            return PerQuestionStat()
        return PerQuestionStat(seen=stat.seen, last_seen=stat.last_seen)

    def set_stat(self, question_id: str, stat: PerQuestionStat) -> None:
        self.stats_by_id[question_id] = PerQuestionStat(seen=stat.seen, last_seen=stat.last_seen)

    def to_dict(self) -> dict:
        return {
            "sessionCounter": self.session_counter,
            "statsById": {key: stat.to_dict() for key, stat in self.stats_by_id.items()},
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "StatsState":
        """Build a state from loosely shaped JSON, coercing each field on its own.

        Accepts the current ``sessionCounter``/``statsById`` layout as well as
        the older ``quizRun``/``byId`` one. Anything that is not usable falls
        back to its default instead of failing the whole record.
        """

        state = cls()
        if not isinstance(payload, dict):
            return state

        counter = _coerce_int(payload.get("sessionCounter", payload.get("quizRun")))
        if counter is not None and counter > 0:
            state.session_counter = counter

        entries = payload.get("statsById", payload.get("byId"))
        if not isinstance(entries, dict):
            return state
        for key, value in entries.items():
            stat = PerQuestionStat.from_dict(value)
            if stat.is_unseen:
                continue
            state.stats_by_id[str(key)] = stat
        return state


__all__ = ["NEVER_SEEN_SESSION", "PerQuestionStat", "StatsState"]
