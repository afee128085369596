"""
Pattern Learner Stores: durable homes for PatternLearnerState.

The learner treats a store as an opaque blob store with three verbs:
load, save and clear. Nothing is written unless save() is called.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Protocol, Union

from cadence_kernel.models.learning import PatternLearnerState


class PatternLearnerStore(Protocol):
    def load(self) -> PatternLearnerState: ...

    def save(self, state: PatternLearnerState) -> None: ...

    def clear(self) -> None: ...


class MemoryPatternLearnerStore:
    """
    In-memory store. load() hands out the held state itself, so a learner
    working on it is visible here before save().
    """

    def __init__(self, state: Optional[PatternLearnerState] = None):
        self.state = state or PatternLearnerState()

    def load(self) -> PatternLearnerState:
        return self.state

    def save(self, state: PatternLearnerState) -> None:
        self.state = state

    def clear(self) -> None:
        self.state = PatternLearnerState()


class JsonFilePatternLearnerStore:
    """State as a single JSON document on disk."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> PatternLearnerState:
        if not self.path.exists():
            return PatternLearnerState()
        return PatternLearnerState.model_validate_json(self.path.read_text(encoding="utf-8"))

    def save(self, state: PatternLearnerState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class SqlitePatternLearnerStore:
    """
    State as one versioned row in SQLite.
    Safe to share across threads; access is serialized.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the state table if it doesn't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS pattern_learner_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version INTEGER NOT NULL,
                    state_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
            """)
            self._conn.commit()

    def load(self) -> PatternLearnerState:
        with self._lock:
            row = self._conn.execute(
                "SELECT state_json FROM pattern_learner_state WHERE id = 1"
            ).fetchone()
        if row is None:
            return PatternLearnerState()
        return PatternLearnerState.model_validate_json(row[0])

    def save(self, state: PatternLearnerState) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO pattern_learner_state (id, version, state_json, updated_at)
                VALUES (1, ?, ?, datetime('now'))
                ON CONFLICT(id) DO UPDATE SET
                    version = excluded.version,
                    state_json = excluded.state_json,
                    updated_at = excluded.updated_at
                """,
                (state.version, state.model_dump_json()),
            )
            self._conn.commit()

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM pattern_learner_state")
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()
