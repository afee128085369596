"""
Recurrence Engine: occurrence math over RFC 5545 RRULE text.

The single place that turns a task's installed rule into concrete dates:
- Next occurrence strictly after a reference instant
- All occurrences inside a window (inclusive)
- Whether a calendar day carries an occurrence
- Rule validation (invalid / expired / exhausted) and plain-English rendering

Every entry point degrades to None / [] / False on a bad rule and logs
the fault with the task id. Nothing here raises to the caller.
"""

import threading
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Dict, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from dateutil.rrule import rrule

from cadence_kernel.exceptions import InvalidRuleError
from cadence_kernel.logging_config import get_logger
from cadence_kernel.models.recurrence import RuleFailure, RuleValidation
from cadence_kernel.models.settings import EvaluatorConfig
from cadence_kernel.models.task import Task, TaskFrequency
from cadence_kernel.recurrence.rule_text import build_rrule, describe_rule, parse_rule_text

# A fixed time moves an occurrence by less than this within its local day
FIXED_TIME_MARGIN = timedelta(days=2)

logger = get_logger(__name__)

CacheKey = Tuple[str, str, str, str]


class RecurrenceEngine:
    """
    Evaluates installed recurrence rules.
    Parsed rules are memoized per (task id, rule text, dtstart, timezone).
    """

    def __init__(self, config: Optional[EvaluatorConfig] = None):
        self.config = config or EvaluatorConfig()
        self._cache: Dict[CacheKey, rrule] = {}
        self._cache_lock = threading.Lock()

    # --- Occurrence queries ---

    def get_next_occurrence(self, task: Task, from_: datetime) -> Optional[datetime]:
        """
        First occurrence strictly after ``from_``, or None when the series
        has ended, the task has no rule, or the rule cannot be evaluated.
        A fixed time-of-day on the task replaces the occurrence's time.
        """
        if task.rule_text is None:
            logger.warning("rrule_missing", task_id=task.id)
            return None

        try:
            rule = self._get_rrule(task)
            tz = self._resolve_timezone(task)
            base = self._get_base_date(task, _as_aware(from_, tz))

            for occurrence in rule.xafter(base, inc=False):
                candidate = self._apply_fixed_time(occurrence, task.frequency)
                # A fixed time can pull an occurrence back to or before the base
                if candidate > base:
                    return candidate
            return None
        except Exception as exc:
            logger.error("next_occurrence_failed", task_id=task.id, error=str(exc))
            return None

    def get_occurrences_between(
        self, task: Task, from_: datetime, to: datetime
    ) -> List[datetime]:
        """
        All occurrences in [from_, to], ascending and without duplicates.
        The bounds apply after the fixed time override, so an occurrence the
        override moves into the window is kept and one it moves out is not.
        """
        if task.rule_text is None:
            logger.warning("rrule_missing", task_id=task.id)
            return []

        try:
            rule = self._get_rrule(task)
            tz = self._resolve_timezone(task)
            start, end = _as_aware(from_, tz), _as_aware(to, tz)
            if end < start:
                return []

            margin = FIXED_TIME_MARGIN if task.frequency.time else timedelta(0)
            seen = set()
            for occurrence in rule.xafter(start - margin, inc=True):
                if occurrence > end + margin:
                    break
                occurrence = self._apply_fixed_time(occurrence, task.frequency)
                if not start <= occurrence <= end:
                    continue
                if len(seen) >= self.config.max_occurrences:
                    logger.warning(
                        "occurrence_limit_reached",
                        task_id=task.id,
                        limit=self.config.max_occurrences,
                    )
                    break
                seen.add(occurrence)
            return sorted(seen)
        except Exception as exc:
            logger.error(
                "occurrences_between_failed",
                task_id=task.id,
                from_=str(from_),
                to=str(to),
                error=str(exc),
            )
            return []

    def is_occurrence_on(self, task: Task, day: Union[date, datetime]) -> bool:
        """
        True if the rule fires anywhere on the calendar day containing ``day``,
        in the rule's timezone. The fixed time override is not consulted.
        Naive datetimes are read as wall-clock time in that timezone.
        """
        if task.rule_text is None:
            return False

        try:
            rule = self._get_rrule(task)
            tz = self._resolve_timezone(task)
            local_day = _local_date(day, tz)
            start = datetime.combine(local_day, time.min, tzinfo=tz)
            end = datetime.combine(local_day, time.max, tzinfo=tz)
            return bool(rule.between(start, end, inc=True))
        except Exception as exc:
            logger.error("occurrence_check_failed", task_id=task.id, day=str(day), error=str(exc))
            return False

    # --- Rule inspection ---

    def validate_rrule(
        self, rule_text: str, dtstart: Optional[datetime] = None
    ) -> RuleValidation:
        """
        Classify rule text as valid, invalid, expired (UNTIL already passed)
        or exhausted (COUNT used up). The series is anchored at ``dtstart``
        when given, otherwise at the current instant.
        """
        now = datetime.now(timezone.utc).replace(microsecond=0)
        try:
            parsed = parse_rule_text(rule_text)
            anchor = _as_aware(dtstart, timezone.utc) if dtstart else now
            upcoming = build_rrule(parsed, anchor).after(now, inc=True)
        except (InvalidRuleError, ValueError) as exc:
            return RuleValidation(valid=False, error=str(exc), reason=RuleFailure.INVALID)

        if parsed.count == 0:
            return RuleValidation(
                valid=False, error="RRULE COUNT is 0", reason=RuleFailure.EXHAUSTED
            )
        if upcoming is None:
            if parsed.until is not None and parsed.until < now:
                return RuleValidation(
                    valid=False,
                    error="RRULE has expired (UNTIL date is in the past)",
                    reason=RuleFailure.EXPIRED,
                )
            if parsed.count is not None:
                return RuleValidation(
                    valid=False,
                    error=f"RRULE COUNT of {parsed.count} is exhausted",
                    reason=RuleFailure.EXHAUSTED,
                )
            return RuleValidation(
                valid=False,
                error="RRULE produces no occurrences",
                reason=RuleFailure.INVALID,
            )
        return RuleValidation(valid=True)

    def to_natural_language(self, rule_text: str) -> str:
        """Plain-English description; the input is returned as-is if unparsable."""
        try:
            return describe_rule(parse_rule_text(rule_text))
        except InvalidRuleError as exc:
            logger.error("rrule_describe_failed", rrule=rule_text, error=str(exc))
            return rule_text

    # --- Cache control ---

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    # --- Internals ---

    def _get_rrule(self, task: Task) -> rrule:
        """Get or build the parsed rule for a task."""
        tz = self._resolve_timezone(task)
        dtstart = self._resolve_dtstart(task, tz)
        rule_text = task.rule_text
        key = (task.id, rule_text, dtstart.isoformat(), str(tz))

        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        rule = build_rrule(parse_rule_text(rule_text, tz), dtstart)
        with self._cache_lock:
            return self._cache.setdefault(key, rule)

    def _resolve_timezone(self, task: Task) -> tzinfo:
        name = task.frequency.timezone or task.timezone or self.config.default_timezone
        return ZoneInfo(name)

    def _resolve_dtstart(self, task: Task, tz: tzinfo) -> datetime:
        anchor = task.frequency.dtstart or task.due_at or task.created_at
        if anchor.tzinfo is None:
            anchor = anchor.replace(tzinfo=tz)
        return anchor.astimezone(tz).replace(microsecond=0)

    def _get_base_date(self, task: Task, from_: datetime) -> datetime:
        """Reference instant the next occurrence is searched from."""
        when_done = task.frequency.when_done
        if when_done is None:
            when_done = task.when_done

        if when_done:
            # Relative to the completion instant
            return from_
        # Fixed schedules keep their anchor through dtstart
        return from_

    def _apply_fixed_time(self, occurrence: datetime, frequency: TaskFrequency) -> datetime:
        if not frequency.time:
            return occurrence

        hours, sep, minutes = frequency.time.partition(":")
        try:
            if not sep:
                raise ValueError("expected HH:MM")
            return occurrence.replace(
                hour=int(hours), minute=int(minutes), second=0, microsecond=0
            )
        except ValueError as exc:
            logger.warning("fixed_time_invalid", time=frequency.time, error=str(exc))
            return occurrence


def _as_aware(value: datetime, tz: tzinfo) -> datetime:
    """Naive instants are UTC; the result is expressed in ``tz``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)


def _local_date(value: Union[date, datetime], tz: tzinfo) -> date:
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(tz).date()
