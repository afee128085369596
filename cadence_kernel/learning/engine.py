"""
Pattern Learner: learns recurring schedules from completion history.

Learning loop:
- Completions are recorded per task (append-only)
- analyze_task classifies the history and proposes an RRULE
- The user accepts or rejects; a rejected proposal never resurfaces
  for the same evidence

The learner only proposes. Installing an accepted rule onto the task is
the caller's job, and nothing is persisted until save() is called.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cadence_kernel.exceptions import UnknownTaskError
from cadence_kernel.learning.classifier import classify, covered_days
from cadence_kernel.learning.store import PatternLearnerStore
from cadence_kernel.logging_config import get_logger
from cadence_kernel.models.learning import (
    CompletionEvent,
    FeedbackEntry,
    PatternLearnerState,
    Suggestion,
    TaskLearningRecord,
)
from cadence_kernel.models.settings import SmartRecurrenceSettings
from cadence_kernel.models.task import Task
from cadence_kernel.tasks.registry import TaskLookup

logger = get_logger(__name__)


def compute_suggestion_id(suggestion: Suggestion) -> str:
    """Stable identity of a suggestion, derived from its evidence only."""
    payload = json.dumps(
        suggestion.evidence.identity(), sort_keys=True, separators=(",", ":")
    )
    return "sug_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class PatternLearner:
    """
    Owns PatternLearnerState. Mutations for one task are serialized
    with a per-task lock; analysis reads a snapshot.
    """

    def __init__(
        self,
        store: PatternLearnerStore,
        tasks: TaskLookup,
        settings_provider: Callable[[], SmartRecurrenceSettings],
        default_timezone: str = "UTC",
    ):
        self._store = store
        self._tasks = tasks
        self._settings_provider = settings_provider
        self._default_timezone = default_timezone
        self._state = PatternLearnerState()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # --- Persistence ---

    def load(self) -> None:
        """Hydrate state from the store."""
        self._state = self._store.load()
        logger.debug("learner_state_loaded", tasks=len(self._state.tasks))

    def save(self) -> None:
        """Flush state to the store."""
        self._store.save(self._state)

    def reset(self) -> None:
        """Drop all learned state, in memory and in the store."""
        self._store.clear()
        self._state = PatternLearnerState()

    # --- Recording ---

    def record_completion(self, task_id: str, timestamp: Union[datetime, str]) -> None:
        """Append a completion. Raises UnknownTaskError for unresolvable ids."""
        self._require_task(task_id)
        event = CompletionEvent(task_id=task_id, timestamp=timestamp)
        with self._lock_for(task_id):
            record = self._state.tasks.setdefault(task_id, TaskLearningRecord())
            record.completions.append(event.timestamp)

    def get_record(self, task_id: str) -> Optional[TaskLearningRecord]:
        """Copy of a task's learning record, or None if nothing was recorded."""
        if task_id not in self._state.tasks:
            return None
        with self._lock_for(task_id):
            record = self._state.tasks.get(task_id)
            return record.model_copy(deep=True) if record else None

    # --- Analysis ---

    def analyze_task(self, task_id: str) -> Optional[Suggestion]:
        """
        Propose a recurrence rule for a task, or None when there is not
        enough evidence, learning is off, or the best proposal was rejected.
        Does not modify state.
        """
        task = self._tasks.get_task(task_id)
        if task is None or not task.enabled:
            logger.debug("analysis_skipped", task_id=task_id, reason="task_unavailable")
            return None

        settings = self._settings_provider()
        if not settings.enabled:
            logger.debug("analysis_skipped", task_id=task_id, reason="learning_disabled")
            return None

        completions, rejected = [], set()
        # Reads only take a lock for tasks that have a record
        if task_id in self._state.tasks:
            with self._lock_for(task_id):
                record = self._state.tasks.get(task_id)
                if record is not None:
                    completions = list(record.completions)
                    rejected = record.rejected_ids()

        if len(completions) < settings.required_completions:
            logger.debug(
                "analysis_skipped",
                task_id=task_id,
                reason="insufficient_data",
                completions=len(completions),
                required=settings.required_completions,
            )
            return None

        try:
            tz = self._timezone_for(task)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            logger.warning(
                "analysis_skipped",
                task_id=task_id,
                reason="invalid_timezone",
                error=str(exc),
            )
            return None

        days = covered_days(completions, tz)
        candidate = classify(days, settings.effective_threshold)
        if candidate is None:
            logger.debug("analysis_no_pattern", task_id=task_id, covered_days=len(days))
            return None

        suggestion = Suggestion(
            suggested_rrule=candidate.evidence.to_rrule(),
            evidence=candidate.evidence,
            confidence=round(candidate.confidence, 4),
        )
        sid = compute_suggestion_id(suggestion)
        if sid in rejected:
            logger.info("suggestion_suppressed", task_id=task_id, suggestion_id=sid)
            return None

        logger.info(
            "suggestion_ready",
            task_id=task_id,
            suggestion_id=sid,
            rrule=suggestion.suggested_rrule,
            confidence=suggestion.confidence,
        )
        return suggestion

    @staticmethod
    def get_suggestion_id(suggestion: Suggestion) -> str:
        return compute_suggestion_id(suggestion)

    # --- Feedback ---

    def accept_suggestion(self, task_id: str, suggestion_id: str) -> FeedbackEntry:
        """Record that the user accepted a suggestion."""
        return self._record_feedback(task_id, suggestion_id, accepted=True)

    def reject_suggestion(self, task_id: str, suggestion_id: str) -> FeedbackEntry:
        """Record a rejection. The same evidence will not be proposed again."""
        return self._record_feedback(task_id, suggestion_id, accepted=False)

    def _record_feedback(self, task_id: str, suggestion_id: str, accepted: bool) -> FeedbackEntry:
        self._require_task(task_id)
        entry = FeedbackEntry(
            suggestion_id=suggestion_id,
            accepted=accepted,
            timestamp=datetime.now(timezone.utc),
        )
        with self._lock_for(task_id):
            record = self._state.tasks.setdefault(task_id, TaskLearningRecord())
            record.feedback.append(entry)
        logger.info(
            "suggestion_feedback",
            task_id=task_id,
            suggestion_id=suggestion_id,
            accepted=accepted,
        )
        return entry

    # --- Helpers ---

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get_task(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def _timezone_for(self, task: Task) -> ZoneInfo:
        return ZoneInfo(task.frequency.timezone or task.timezone or self._default_timezone)

    def _lock_for(self, task_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = self._locks[task_id] = threading.Lock()
            return lock
