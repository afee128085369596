"""
Task Registry: resolves task ids for the learner and the evaluator.

The kernel only needs TaskLookup.get_task. TaskRegistry is the in-memory
implementation used by tests and embedding applications.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from cadence_kernel.exceptions import UnknownTaskError
from cadence_kernel.models.task import Task


class TaskLookup(Protocol):
    def get_task(self, task_id: str) -> Optional[Task]: ...


class TaskRegistry:
    """In-memory task lookup."""

    def __init__(self, tasks: Optional[List[Task]] = None):
        self._tasks: Dict[str, Task] = {}
        for task in tasks or []:
            self.upsert_task(task)

    def upsert_task(self, task: Task) -> None:
        """Insert or replace a task."""
        self._tasks[task.id] = task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def remove_task(self, task_id: str) -> bool:
        """Remove a task. Returns False if it was not registered."""
        if task_id in self._tasks:
            del self._tasks[task_id]
            return True
        return False

    def get_enabled_tasks(self) -> List[Task]:
        return [t for t in self._tasks.values() if t.enabled]

    def install_rule(self, task_id: str, rule_text: str) -> Task:
        """Install an RRULE on a task, e.g. after a suggestion was accepted."""
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        frequency = task.frequency.model_copy(update={"type": "rrule", "rrule_string": rule_text})
        updated = task.model_copy(
            update={"frequency": frequency, "updated_at": datetime.now(timezone.utc)}
        )
        self._tasks[task_id] = updated
        return updated
