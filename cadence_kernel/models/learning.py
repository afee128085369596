"""Learning Model: completion history, feedback and recurrence suggestions."""

from datetime import datetime, timezone
from typing import Annotated, Dict, List, Literal, Set, Union

from pydantic import BaseModel, Field, field_validator

WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CompletionEvent(BaseModel):
    """One observed completion of a task."""

    task_id: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class FeedbackEntry(BaseModel):
    """A user's verdict on a surfaced suggestion."""

    suggestion_id: str
    accepted: bool
    timestamp: datetime


class TaskLearningRecord(BaseModel):
    """Everything the learner knows about one task. Append-only."""

    completions: List[datetime] = []        # Insertion order
    feedback: List[FeedbackEntry] = []

    def rejected_ids(self) -> Set[str]:
        return {f.suggestion_id for f in self.feedback if not f.accepted}


class PatternLearnerState(BaseModel):
    """The learner's entire durable state."""

    version: int = 1
    tasks: Dict[str, TaskLearningRecord] = {}


# --- Evidence variants ---

class DailyEvidence(BaseModel):
    """Completions land on (nearly) every Nth day."""

    frequency_type: Literal["daily"] = "daily"
    interval: int = Field(ge=1, default=1)

    def to_rrule(self) -> str:
        return _with_interval("FREQ=DAILY", self.interval)

    def identity(self) -> dict:
        return {"frequency_type": self.frequency_type, "interval": self.interval}


class WeeklyEvidence(BaseModel):
    """Completions land on a fixed set of weekdays."""

    frequency_type: Literal["weekly"] = "weekly"
    interval: int = Field(ge=1, default=1)
    by_day: List[str]                       # Weekday codes, MO..SU order

    @field_validator("by_day")
    @classmethod
    def _normalize_days(cls, value: List[str]) -> List[str]:
        codes = {code.upper() for code in value}
        unknown = codes - set(WEEKDAY_CODES)
        if unknown:
            raise ValueError(f"unknown weekday codes: {sorted(unknown)}")
        if not codes:
            raise ValueError("by_day must name at least one weekday")
        return [code for code in WEEKDAY_CODES if code in codes]

    def to_rrule(self) -> str:
        rule = _with_interval("FREQ=WEEKLY", self.interval)
        return f"{rule};BYDAY={','.join(self.by_day)}"

    def identity(self) -> dict:
        return {
            "frequency_type": self.frequency_type,
            "interval": self.interval,
            "by_day": list(self.by_day),
        }


class MonthlyEvidence(BaseModel):
    """Completions land on a fixed day of the month."""

    frequency_type: Literal["monthly"] = "monthly"
    interval: int = Field(ge=1, default=1)
    by_month_day: List[int]

    @field_validator("by_month_day")
    @classmethod
    def _normalize_month_days(cls, value: List[int]) -> List[int]:
        days = sorted(set(value))
        if not days:
            raise ValueError("by_month_day must name at least one day")
        if days[0] < 1 or days[-1] > 31:
            raise ValueError("by_month_day values must be within 1..31")
        return days

    def to_rrule(self) -> str:
        rule = _with_interval("FREQ=MONTHLY", self.interval)
        return f"{rule};BYMONTHDAY={','.join(str(d) for d in self.by_month_day)}"

    def identity(self) -> dict:
        return {
            "frequency_type": self.frequency_type,
            "interval": self.interval,
            "by_month_day": list(self.by_month_day),
        }


Evidence = Annotated[
    Union[DailyEvidence, WeeklyEvidence, MonthlyEvidence],
    Field(discriminator="frequency_type"),
]


class Suggestion(BaseModel):
    """A proposed recurrence rule. Computed fresh, never persisted."""

    suggested_rrule: str
    evidence: Evidence
    confidence: float = Field(ge=0.0, le=1.0)


def _with_interval(rule: str, interval: int) -> str:
    if interval == 1:
        return rule
    return f"{rule};INTERVAL={interval}"
