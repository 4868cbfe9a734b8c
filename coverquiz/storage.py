"""Concrete repository implementations backed by memory, JSON files and SQLite."""
from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from json import JSONDecodeError
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from .domain import StatsState
from .metrics import METRICS
from .models import Explanation
from .repositories import ExplanationRepository, StatsRepository


logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "kintone_quiz_stats_v1"


class InMemoryStatsRepository(StatsRepository):
    """Keeps the serialised stats record in process memory."""

    def __init__(self, payload: Optional[dict] = None) -> None:
        self._payload = payload

    @property
    def payload(self) -> Optional[dict]:
        return self._payload

    def load(self) -> StatsState:
        return StatsState.from_dict(self._payload)

    def save(self, state: StatsState) -> None:
        self._payload = json.loads(json.dumps(state.to_dict()))


class JsonFileStatsRepository(StatsRepository):
    """Persists the stats record to a single JSON file on the learner's machine."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StatsState:
        if not self._path.exists():
            return StatsState()
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(f"Failed reading quiz stats from {self._path}: {exc}")
            METRICS.record_load_failure(type(exc).__name__)
            return StatsState()
        except JSONDecodeError as exc:
            logger.warning(
                f"Invalid JSON in {self._path} (line {exc.lineno}, col {exc.colno}): {exc.msg}"
            )
            METRICS.record_load_failure("JSONDecodeError")
            return StatsState()
        return StatsState.from_dict(payload)

    def save(self, state: StatsState) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(state.to_dict(), ensure_ascii=False), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            logger.warning(f"Failed to save quiz stats to {self._path}: {exc}")
            METRICS.record_save_failure(type(exc).__name__)
            with contextlib.suppress(OSError):
                tmp.unlink()


class SqliteStatsRepository(StatsRepository):
    """Stores the stats record under a key in a SQLite key/value table."""

    def __init__(self, db_path: Path, storage_key: str = DEFAULT_STORAGE_KEY) -> None:
        self._db_path = db_path
        self._storage_key = storage_key
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        try:
            self._initialise_schema()
        except sqlite3.Error:
            self._conn.close()
            raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _initialise_schema(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS local_storage (
                    storage_key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    def load(self) -> StatsState:
        try:
            with self._lock:
                cursor = self._conn.cursor()
                row = cursor.execute(
                    "SELECT value_json FROM local_storage WHERE storage_key = ?",
                    (self._storage_key,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning(f"Failed reading quiz stats from {self._db_path}: {exc}")
            METRICS.record_load_failure(type(exc).__name__)
            return StatsState()
        if not row:
            return StatsState()
        try:
            payload = json.loads(row["value_json"])
        except JSONDecodeError as exc:
            logger.warning(f"Stored quiz stats under {self._storage_key!r} are not valid JSON: {exc.msg}")
            METRICS.record_load_failure("JSONDecodeError")
            return StatsState()
        return StatsState.from_dict(payload)

    def save(self, state: StatsState) -> None:
        payload = json.dumps(state.to_dict(), ensure_ascii=False)
        try:
            with self._lock:
                cursor = self._conn.cursor()
                cursor.execute(
                    """
                    INSERT OR REPLACE INTO local_storage (storage_key, value_json)
                    VALUES (?, ?)
                    """,
                    (self._storage_key, payload),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning(f"Failed to save quiz stats to {self._db_path}: {exc}")
            METRICS.record_save_failure(type(exc).__name__)


class JsonExplanationRepository(ExplanationRepository):
    """Explanation layer read once from an ``explanations.json`` file.

    The file looks like ``{"asOf": "...", "items": [{"id": ..., "body": ...}]}``.
    A missing or broken file leaves the layer empty.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._items: Dict[str, Explanation] = {}
        self._as_of: Optional[str] = None
        self._load()

    def _load(self) -> None:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning(f"Explanation file {self._path} not found; explanations disabled")
            return
        except (OSError, UnicodeDecodeError, JSONDecodeError) as exc:
            logger.warning(f"Failed loading explanations from {self._path}: {exc}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Explanation file {self._path} does not contain an object")
            return

        as_of = data.get("asOf")
        self._as_of = str(as_of) if as_of else None
        items = data.get("items")
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            try:
                explanation = Explanation.model_validate({**item, "id": str(item["id"])})
            except PydanticValidationError as exc:
                logger.debug(f"Skipping malformed explanation {item.get('id')!r}: {exc}")
                continue
            self._items[explanation.id] = explanation
        logger.info(f"Loaded {len(self._items)} explanations from {self._path}")

    def get(self, question_id: str) -> Optional[Explanation]:
        return self._items.get(question_id)

    @property
    def as_of(self) -> Optional[str]:
        return self._as_of

    def __len__(self) -> int:
        return len(self._items)


def stats_repository_for(path: Path) -> StatsRepository:
    """Pick a SQLite store for ``.db``/``.sqlite`` paths and a JSON file otherwise.

    A database that cannot be opened leaves the learner with in-memory stats
    for the rest of the process.
    """

    path = Path(path)
    if path.suffix.lower() in {".db", ".sqlite", ".sqlite3"}:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return SqliteStatsRepository(path)
        except (OSError, sqlite3.Error) as exc:
            logger.warning(f"Cannot open quiz stats database {path}: {exc}; keeping stats in memory")
            METRICS.record_load_failure(type(exc).__name__)
            return InMemoryStatsRepository()
    return JsonFileStatsRepository(path)


__all__ = [
    "DEFAULT_STORAGE_KEY",
    "InMemoryStatsRepository",
    "JsonExplanationRepository",
    "JsonFileStatsRepository",
    "SqliteStatsRepository",
    "stats_repository_for",
]
