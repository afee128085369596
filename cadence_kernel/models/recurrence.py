"""Rule Model: parsed RRULE subset and validation outcome."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RuleFailure(str, Enum):
    INVALID = "invalid"         # Unparsable or outside the supported subset
    EXPIRED = "expired"         # UNTIL is in the past
    EXHAUSTED = "exhausted"     # COUNT has been used up


class RuleValidation(BaseModel):
    """Result of validating an RRULE string."""

    valid: bool
    error: Optional[str] = None             # Human-readable
    reason: Optional[RuleFailure] = None    # Machine-readable


class RecurrenceRule(BaseModel):
    """The supported RRULE subset, one field per rule part."""

    freq: str                               # "DAILY" | "WEEKLY" | "MONTHLY"
    interval: int = Field(ge=1, default=1)
    by_day: List[str] = []
    by_month_day: List[int] = []
    count: Optional[int] = Field(ge=0, default=None)
    until: Optional[datetime] = None        # Always UTC once normalized
    wkst: Optional[str] = None
