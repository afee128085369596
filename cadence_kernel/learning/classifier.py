"""
Cadence classification over a task's completion history.

Each classifier looks at the distinct local calendar days a task was
completed on (several completions on one day count once, whatever the
time of day) and returns a candidate with a confidence in [0, 1]:

- daily:   covered days / days on the interval grid between first and last
- weekly:  weeks containing every qualifying weekday / weeks spanned
- monthly: months hit on the anchor day / months long enough to hold it,
  provided at least half of the covered days land on the anchor
"""

from calendar import monthrange
from collections import Counter
from datetime import date, datetime, tzinfo
from typing import Iterable, List, NamedTuple, Optional, Union

from cadence_kernel.models.learning import (
    WEEKDAY_CODES,
    DailyEvidence,
    MonthlyEvidence,
    WeeklyEvidence,
)

MIN_WEEKS_SPANNED = 3
MIN_MONTHS_SPANNED = 3

# Higher wins a confidence tie
SPECIFICITY = {"daily": 0, "weekly": 1, "monthly": 2}


class Candidate(NamedTuple):
    evidence: Union[DailyEvidence, WeeklyEvidence, MonthlyEvidence]
    confidence: float


def covered_days(completions: Iterable[datetime], tz: tzinfo) -> List[date]:
    """Distinct calendar days in ``tz`` that carry at least one completion."""
    return sorted({c.astimezone(tz).date() for c in completions})


def classify_daily(days: List[date]) -> Optional[Candidate]:
    if len(days) < 2:
        return None

    gaps = Counter((b - a).days for a, b in zip(days, days[1:]))
    top = max(gaps.values())
    interval = min(gap for gap, n in gaps.items() if n == top)

    first, last = days[0], days[-1]
    expected = (last - first).days // interval + 1
    on_grid = sum(1 for d in days if (d - first).days % interval == 0)
    return Candidate(DailyEvidence(interval=interval), min(1.0, on_grid / expected))


def classify_weekly(days: List[date]) -> Optional[Candidate]:
    if not days:
        return None

    first_monday = days[0].toordinal() - days[0].weekday()
    weeks_spanned = (days[-1].toordinal() - first_monday) // 7 + 1
    if weeks_spanned < MIN_WEEKS_SPANNED:
        return None

    weekdays_by_week = {}
    for d in days:
        week = (d.toordinal() - first_monday) // 7
        weekdays_by_week.setdefault(week, set()).add(d.weekday())

    weeks_with_day = Counter(wd for present in weekdays_by_week.values() for wd in present)
    qualifying = {wd for wd, n in weeks_with_day.items() if n > weeks_spanned / 2}
    # Every weekday qualifying is a daily cadence, not a weekly one
    if not qualifying or len(qualifying) == 7:
        return None

    full_weeks = sum(1 for present in weekdays_by_week.values() if qualifying <= present)
    evidence = WeeklyEvidence(by_day=[WEEKDAY_CODES[wd] for wd in sorted(qualifying)])
    return Candidate(evidence, full_weeks / weeks_spanned)


def classify_monthly(days: List[date]) -> Optional[Candidate]:
    if not days:
        return None

    first_month = _month_index(days[0])
    months_spanned = _month_index(days[-1]) - first_month + 1
    if months_spanned < MIN_MONTHS_SPANNED:
        return None

    day_counts = Counter(d.day for d in days)
    top = max(day_counts.values())
    anchor = min(day for day, n in day_counts.items() if n == top)
    # At least half the covered days must sit on the anchor
    if top * 2 < len(days):
        return None

    eligible = 0
    for index in range(first_month, first_month + months_spanned):
        year, month = divmod(index, 12)
        if monthrange(year, month + 1)[1] >= anchor:
            eligible += 1
    if eligible == 0:
        return None

    hit_months = {_month_index(d) for d in days if d.day == anchor}
    return Candidate(MonthlyEvidence(by_month_day=[anchor]), len(hit_months) / eligible)


def classify(days: List[date], threshold: float) -> Optional[Candidate]:
    """
    Best candidate at or above ``threshold``. Ties go to the more
    specific cadence (monthly, then weekly, then daily).
    """
    candidates = [
        c for c in (classify_daily(days), classify_weekly(days), classify_monthly(days))
        if c is not None and c.confidence >= threshold
    ]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda c: (c.confidence, SPECIFICITY[c.evidence.frequency_type]),
    )


def _month_index(d: date) -> int:
    return d.year * 12 + (d.month - 1)
