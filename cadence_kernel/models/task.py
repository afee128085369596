"""Task Model: the slice of a recurring task the kernel reads."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class TaskFrequency(BaseModel):
    """Recurrence configuration attached to a task."""

    type: str = "daily"                     # "daily" | "weekly" | "monthly" | "rrule"
    interval: int = Field(ge=1, default=1)
    rrule_string: Optional[str] = None      # e.g., "FREQ=WEEKLY;BYDAY=MO,WE,FR"
    dtstart: Optional[datetime] = None      # Series anchor
    timezone: Optional[str] = None          # IANA name, wins over the task timezone
    time: Optional[str] = None              # Fixed time-of-day override, "HH:MM"
    when_done: Optional[bool] = None


class Task(BaseModel):
    """A recurring task as resolved by the task lookup collaborator."""

    id: str
    name: str
    enabled: bool = True
    frequency: TaskFrequency = TaskFrequency()
    due_at: Optional[datetime] = None
    timezone: Optional[str] = None
    when_done: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @property
    def rule_text(self) -> Optional[str]:
        """The installed RRULE text, if any."""
        text = self.frequency.rrule_string
        if text is None or not text.strip():
            return None
        return text
