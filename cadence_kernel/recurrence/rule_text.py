"""
RRULE text handling for the supported RFC 5545 subset.

Parses rule text into a RecurrenceRule, builds the dateutil rrule that
does the occurrence math, and renders rules as plain English.

Supported parts: FREQ (DAILY | WEEKLY | MONTHLY), INTERVAL, BYDAY
(two-letter codes), BYMONTHDAY (1..31), COUNT, UNTIL, WKST.
"""

from datetime import datetime, time, timezone, tzinfo
from typing import Dict, List

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, rrule, weekdays

from cadence_kernel.exceptions import InvalidRuleError
from cadence_kernel.models.learning import WEEKDAY_CODES
from cadence_kernel.models.recurrence import RecurrenceRule

FREQUENCIES = {"DAILY": DAILY, "WEEKLY": WEEKLY, "MONTHLY": MONTHLY}
SUPPORTED_PARTS = {"FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY", "COUNT", "UNTIL", "WKST"}

WEEKDAY_NAMES = {
    "MO": "Monday",
    "TU": "Tuesday",
    "WE": "Wednesday",
    "TH": "Thursday",
    "FR": "Friday",
    "SA": "Saturday",
    "SU": "Sunday",
}
_UNITS = {"DAILY": ("day", "days"), "WEEKLY": ("week", "weeks"), "MONTHLY": ("month", "months")}
_WORKWEEK = ["MO", "TU", "WE", "TH", "FR"]


def parse_rule_text(text: str, tz: tzinfo = timezone.utc) -> RecurrenceRule:
    """
    Parse RRULE text. A floating UNTIL (no trailing Z) is read as wall-clock
    time in ``tz``; a date-only UNTIL covers the whole of that day.
    Raises InvalidRuleError on anything outside the supported subset.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidRuleError("RRULE string is required")

    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]

    parts = _split_parts(body)
    unknown = sorted(set(parts) - SUPPORTED_PARTS)
    if unknown:
        raise InvalidRuleError(f"Unsupported rule part(s): {', '.join(unknown)}")

    freq = parts.get("FREQ", "").upper()
    if not freq:
        raise InvalidRuleError("FREQ is required")
    if freq not in FREQUENCIES:
        raise InvalidRuleError(f"Unsupported FREQ '{freq}' (expected DAILY, WEEKLY or MONTHLY)")

    if "COUNT" in parts and "UNTIL" in parts:
        raise InvalidRuleError("COUNT and UNTIL must not both be set")

    return RecurrenceRule(
        freq=freq,
        interval=_parse_int(parts, "INTERVAL", minimum=1) or 1,
        by_day=_parse_by_day(parts.get("BYDAY")),
        by_month_day=_parse_by_month_day(parts.get("BYMONTHDAY")),
        count=_parse_int(parts, "COUNT", minimum=0),
        until=_parse_until(parts["UNTIL"], tz) if "UNTIL" in parts else None,
        wkst=_parse_weekday(parts["WKST"]) if "WKST" in parts else None,
    )


def build_rrule(rule: RecurrenceRule, dtstart: datetime) -> rrule:
    """Build the dateutil rrule for a parsed rule anchored at an aware dtstart."""
    day_map = dict(zip(WEEKDAY_CODES, weekdays))
    return rrule(
        FREQUENCIES[rule.freq],
        dtstart=dtstart,
        interval=rule.interval,
        byweekday=[day_map[code] for code in rule.by_day] or None,
        bymonthday=rule.by_month_day or None,
        count=rule.count,
        until=rule.until,
        wkst=day_map[rule.wkst] if rule.wkst else None,
    )


def describe_rule(rule: RecurrenceRule) -> str:
    """Render a rule as English, e.g. "every week on Monday and Friday"."""
    singular, plural = _UNITS[rule.freq]
    if rule.freq == "WEEKLY" and rule.interval == 1 and rule.by_day == _WORKWEEK:
        text = "every weekday"
    else:
        text = f"every {singular}" if rule.interval == 1 else f"every {rule.interval} {plural}"
        if rule.by_day:
            text += " on " + _join([WEEKDAY_NAMES[code] for code in rule.by_day])

    if rule.by_month_day:
        text += " on the " + _join([_ordinal(day) for day in rule.by_month_day])
    if rule.count is not None:
        text += f" for {rule.count} time" + ("" if rule.count == 1 else "s")
    if rule.until is not None:
        text += f" until {rule.until:%B} {rule.until.day}, {rule.until.year}"
    return text


# --- Parsing helpers ---

def _split_parts(body: str) -> Dict[str, str]:
    parts: Dict[str, str] = {}
    for chunk in body.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        key, sep, value = chunk.partition("=")
        key = key.strip().upper()
        if not sep or not key or not value.strip():
            raise InvalidRuleError(f"Malformed rule part '{chunk}'")
        if key in parts:
            raise InvalidRuleError(f"Duplicate rule part '{key}'")
        parts[key] = value.strip()
    return parts


def _parse_int(parts: Dict[str, str], key: str, minimum: int):
    raw = parts.get(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise InvalidRuleError(f"{key} must be an integer, got '{raw}'") from None
    if value < minimum:
        raise InvalidRuleError(f"{key} must be >= {minimum}, got {value}")
    return value


def _parse_weekday(raw: str) -> str:
    code = raw.strip().upper()
    if code not in WEEKDAY_CODES:
        raise InvalidRuleError(f"Unknown weekday code '{raw}'")
    return code


def _parse_by_day(raw) -> List[str]:
    if raw is None:
        return []
    codes = {_parse_weekday(item) for item in raw.split(",")}
    return [code for code in WEEKDAY_CODES if code in codes]


def _parse_by_month_day(raw) -> List[int]:
    if raw is None:
        return []
    days = set()
    for item in raw.split(","):
        try:
            day = int(item)
        except ValueError:
            raise InvalidRuleError(f"BYMONTHDAY values must be integers, got '{item}'") from None
        if not 1 <= day <= 31:
            raise InvalidRuleError(f"BYMONTHDAY values must be within 1..31, got {day}")
        days.add(day)
    return sorted(days)


def _parse_until(raw: str, tz: tzinfo) -> datetime:
    value = raw.strip().upper()
    try:
        if value.endswith("Z"):
            return datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
        if "T" in value:
            local = datetime.strptime(value, "%Y%m%dT%H%M%S")
        else:
            local = datetime.combine(datetime.strptime(value, "%Y%m%d").date(), time.max)
    except ValueError:
        raise InvalidRuleError(f"Malformed UNTIL value '{raw}'") from None
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


# --- Rendering helpers ---

def _join(items: List[str]) -> str:
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + " and " + items[-1]


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"
