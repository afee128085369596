"""Tests for the Recurrence Engine."""

from datetime import date, datetime, timedelta, timezone

from structlog.testing import capture_logs

from cadence_kernel.models.recurrence import RuleFailure
from cadence_kernel.models.settings import EvaluatorConfig
from cadence_kernel.models.task import Task, TaskFrequency
from cadence_kernel.recurrence.engine import RecurrenceEngine

UTC = timezone.utc
DTSTART = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)  # A Monday


def _make_task(
    rule: str = "FREQ=DAILY",
    task_id: str = "task-1",
    dtstart: datetime = DTSTART,
    time: str = None,
    tz: str = None,
) -> Task:
    return Task(
        id=task_id,
        name="Stand-up notes",
        frequency=TaskFrequency(
            type="rrule",
            rrule_string=rule,
            dtstart=dtstart,
            time=time,
            timezone=tz,
        ),
    )


class TestNextOccurrence:
    def setup_method(self):
        self.engine = RecurrenceEngine()

    def test_strictly_after_from(self):
        task = _make_task()
        assert self.engine.get_next_occurrence(task, DTSTART) == datetime(2025, 1, 7, 9, 0, tzinfo=UTC)

    def test_earliest_later_occurrence(self):
        task = _make_task()
        result = self.engine.get_next_occurrence(task, datetime(2025, 1, 6, 10, 0, tzinfo=UTC))
        assert result == datetime(2025, 1, 7, 9, 0, tzinfo=UTC)

    def test_weekly_by_day(self):
        task = _make_task("FREQ=WEEKLY;BYDAY=MO,WE,FR")
        assert self.engine.get_next_occurrence(task, DTSTART) == datetime(2025, 1, 8, 9, 0, tzinfo=UTC)

    def test_monthly_by_month_day(self):
        task = _make_task("FREQ=MONTHLY;BYMONTHDAY=15")
        assert self.engine.get_next_occurrence(task, DTSTART) == datetime(2025, 1, 15, 9, 0, tzinfo=UTC)

    def test_naive_from_is_utc(self):
        task = _make_task()
        result = self.engine.get_next_occurrence(task, datetime(2025, 1, 6, 10, 0))
        assert result == datetime(2025, 1, 7, 9, 0, tzinfo=UTC)

    def test_series_end_returns_none(self):
        task = _make_task("FREQ=DAILY;COUNT=3")
        assert self.engine.get_next_occurrence(task, datetime(2025, 1, 8, 9, 0, tzinfo=UTC)) is None

    def test_fixed_time_replaces_rule_time(self):
        task = _make_task(time="18:30")
        result = self.engine.get_next_occurrence(task, datetime(2025, 1, 6, 10, 0, tzinfo=UTC))
        assert result == datetime(2025, 1, 7, 18, 30, tzinfo=UTC)

    def test_fixed_time_never_lands_on_or_before_from(self):
        task = _make_task(time="07:00")
        # The 09:00 occurrence today moves to 07:00, which is already past
        result = self.engine.get_next_occurrence(task, datetime(2025, 1, 6, 8, 30, tzinfo=UTC))
        assert result == datetime(2025, 1, 7, 7, 0, tzinfo=UTC)

    def test_fixed_time_in_rule_timezone(self):
        task = _make_task(time="08:00", tz="Europe/Paris")
        result = self.engine.get_next_occurrence(task, datetime(2025, 1, 6, 12, 0, tzinfo=UTC))
        assert result == datetime(2025, 1, 7, 7, 0, tzinfo=UTC)

    def test_malformed_fixed_time_is_ignored(self):
        task = _make_task(time="noon")
        result = self.engine.get_next_occurrence(task, DTSTART)
        assert result == datetime(2025, 1, 7, 9, 0, tzinfo=UTC)

    def test_missing_rule_logs_warning(self):
        task = _make_task(rule=None)
        with capture_logs() as logs:
            assert self.engine.get_next_occurrence(task, DTSTART) is None
        assert logs[0]["event"] == "rrule_missing"
        assert logs[0]["log_level"] == "warning"
        assert logs[0]["task_id"] == "task-1"

    def test_invalid_rule_logs_error(self):
        task = _make_task("FREQ=SOMETIMES")
        with capture_logs() as logs:
            assert self.engine.get_next_occurrence(task, DTSTART) is None
        assert logs[0]["log_level"] == "error"
        assert logs[0]["task_id"] == "task-1"
        assert "SOMETIMES" in logs[0]["error"]

    def test_unknown_timezone_returns_none(self):
        task = _make_task(tz="Mars/Olympus_Mons")
        assert self.engine.get_next_occurrence(task, DTSTART) is None

    def test_when_done_uses_reference_instant(self):
        task = _make_task().model_copy(update={"when_done": True})
        completed = datetime(2025, 1, 9, 15, 0, tzinfo=UTC)
        assert self.engine.get_next_occurrence(task, completed) == datetime(2025, 1, 10, 9, 0, tzinfo=UTC)

    def test_dtstart_falls_back_to_due_at(self):
        task = Task(
            id="task-due",
            name="Pay rent",
            due_at=datetime(2025, 2, 1, 12, 0, tzinfo=UTC),
            frequency=TaskFrequency(type="rrule", rrule_string="FREQ=MONTHLY"),
        )
        result = self.engine.get_next_occurrence(task, datetime(2025, 2, 2, tzinfo=UTC))
        assert result == datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class TestOccurrencesBetween:
    def setup_method(self):
        self.engine = RecurrenceEngine()

    def test_inclusive_ordered_unique(self):
        task = _make_task()
        end = datetime(2025, 1, 10, 9, 0, tzinfo=UTC)
        result = self.engine.get_occurrences_between(task, DTSTART, end)

        assert len(result) == 5
        assert result[0] == DTSTART
        assert result[-1] == end
        assert result == sorted(set(result))

    def test_weekly_window(self):
        task = _make_task("FREQ=WEEKLY;BYDAY=MO,FR")
        result = self.engine.get_occurrences_between(
            task, datetime(2025, 1, 7, tzinfo=UTC), datetime(2025, 1, 20, tzinfo=UTC)
        )
        assert [d.date() for d in result] == [date(2025, 1, 10), date(2025, 1, 13), date(2025, 1, 17)]

    def test_fixed_time_applied_before_bounds(self):
        task = _make_task(time="06:15")
        result = self.engine.get_occurrences_between(
            task, DTSTART, datetime(2025, 1, 8, 9, 0, tzinfo=UTC)
        )
        # Jan 6 06:15 falls before the 09:00 window start
        assert result == [
            datetime(2025, 1, 7, 6, 15, tzinfo=UTC),
            datetime(2025, 1, 8, 6, 15, tzinfo=UTC),
        ]

    def test_fixed_time_can_move_occurrence_into_window(self):
        task = _make_task(time="23:00")
        result = self.engine.get_occurrences_between(
            task, datetime(2025, 1, 6, 10, 0, tzinfo=UTC), datetime(2025, 1, 6, 23, 30, tzinfo=UTC)
        )
        assert result == [datetime(2025, 1, 6, 23, 0, tzinfo=UTC)]

    def test_reversed_window_is_empty(self):
        task = _make_task()
        assert self.engine.get_occurrences_between(task, DTSTART + timedelta(days=3), DTSTART) == []

    def test_missing_rule_is_empty(self):
        assert self.engine.get_occurrences_between(_make_task(rule=None), DTSTART, DTSTART) == []

    def test_invalid_rule_is_empty(self):
        task = _make_task("FREQ=DAILY;BYDAY=XX")
        assert self.engine.get_occurrences_between(task, DTSTART, DTSTART + timedelta(days=5)) == []

    def test_capped_by_max_occurrences(self):
        engine = RecurrenceEngine(EvaluatorConfig(max_occurrences=3))
        task = _make_task()
        with capture_logs() as logs:
            result = engine.get_occurrences_between(task, DTSTART, DTSTART + timedelta(days=30))
        assert len(result) == 3
        assert logs[0]["event"] == "occurrence_limit_reached"


class TestIsOccurrenceOn:
    def setup_method(self):
        self.engine = RecurrenceEngine()

    def test_matching_and_non_matching_days(self):
        task = _make_task("FREQ=WEEKLY;BYDAY=MO")
        assert self.engine.is_occurrence_on(task, date(2025, 1, 13)) is True
        assert self.engine.is_occurrence_on(task, date(2025, 1, 14)) is False

    def test_any_time_of_day_counts(self):
        task = _make_task("FREQ=WEEKLY;BYDAY=MO")
        assert self.engine.is_occurrence_on(task, datetime(2025, 1, 13, 23, 59, tzinfo=UTC)) is True

    def test_ignores_fixed_time(self):
        task = _make_task("FREQ=WEEKLY;BYDAY=MO", time="23:00")
        assert self.engine.is_occurrence_on(task, date(2025, 1, 13)) is True

    def test_day_is_local_to_rule_timezone(self):
        task = _make_task(
            "FREQ=WEEKLY;BYDAY=MO",
            dtstart=datetime(2025, 1, 6, 23, 30),
            tz="America/New_York",
        )
        assert self.engine.is_occurrence_on(task, date(2025, 1, 13)) is True
        assert self.engine.is_occurrence_on(task, date(2025, 1, 14)) is False
        # 04:30 UTC on Tuesday is still Monday evening in New York
        assert self.engine.is_occurrence_on(task, datetime(2025, 1, 14, 4, 30, tzinfo=UTC)) is True

    def test_missing_or_invalid_rule_is_false(self):
        assert self.engine.is_occurrence_on(_make_task(rule=None), date(2025, 1, 13)) is False
        assert self.engine.is_occurrence_on(_make_task("nonsense"), date(2025, 1, 13)) is False


class TestValidateRRule:
    def setup_method(self):
        self.engine = RecurrenceEngine()

    def test_valid_rules(self):
        for rule in (
            "FREQ=DAILY",
            "RRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR",
            "FREQ=MONTHLY;INTERVAL=2;BYMONTHDAY=1,15",
            "FREQ=DAILY;UNTIL=20990101T000000Z",
        ):
            result = self.engine.validate_rrule(rule)
            assert result.valid is True, rule
            assert result.error is None

    def test_past_until_is_expired(self):
        result = self.engine.validate_rrule("FREQ=DAILY;UNTIL=20200101T000000Z")
        assert result.valid is False
        assert result.reason == RuleFailure.EXPIRED
        assert "expired" in result.error

    def test_zero_count_is_exhausted(self):
        result = self.engine.validate_rrule("FREQ=DAILY;COUNT=0")
        assert result.valid is False
        assert result.reason == RuleFailure.EXHAUSTED

    def test_consumed_count_is_exhausted(self):
        result = self.engine.validate_rrule("FREQ=DAILY;COUNT=3", dtstart=datetime(2020, 1, 1))
        assert result.valid is False
        assert result.reason == RuleFailure.EXHAUSTED

    def test_invalid_rules(self):
        for rule in (
            "",
            "garbage",
            "FREQ=HOURLY",
            "FREQ=DAILY;INTERVAL=0",
            "FREQ=WEEKLY;BYDAY=MON",
            "FREQ=MONTHLY;BYMONTHDAY=32",
            "FREQ=DAILY;COUNT=2;UNTIL=20990101T000000Z",
            "FREQ=DAILY;BYSETPOS=1",
        ):
            result = self.engine.validate_rrule(rule)
            assert result.valid is False, rule
            assert result.reason == RuleFailure.INVALID, rule
            assert result.error


class TestNaturalLanguage:
    def setup_method(self):
        self.engine = RecurrenceEngine()

    def test_descriptions(self):
        cases = {
            "FREQ=DAILY": "every day",
            "FREQ=DAILY;INTERVAL=2;COUNT=5": "every 2 days for 5 times",
            "FREQ=WEEKLY;BYDAY=MO,WE,FR": "every week on Monday, Wednesday and Friday",
            "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR": "every weekday",
            "FREQ=MONTHLY;BYMONTHDAY=15": "every month on the 15th",
            "FREQ=MONTHLY;BYMONTHDAY=1,22": "every month on the 1st and 22nd",
            "FREQ=DAILY;UNTIL=20250301T000000Z": "every day until March 1, 2025",
        }
        for rule, expected in cases.items():
            assert self.engine.to_natural_language(rule) == expected

    def test_unparsable_returned_unchanged(self):
        assert self.engine.to_natural_language("not a rule") == "not a rule"


class TestRuleCache:
    def setup_method(self):
        self.engine = RecurrenceEngine()

    def test_repeated_calls_reuse_entry(self):
        task = _make_task()
        first = self.engine.get_next_occurrence(task, DTSTART)
        second = self.engine.get_next_occurrence(task, DTSTART)

        assert first == second
        assert self.engine.cache_size() == 1

    def test_entry_per_task(self):
        self.engine.get_next_occurrence(_make_task(task_id="a"), DTSTART)
        self.engine.get_next_occurrence(_make_task(task_id="b"), DTSTART)
        assert self.engine.cache_size() == 2

    def test_changed_rule_text_is_new_entry(self):
        self.engine.get_next_occurrence(_make_task("FREQ=DAILY"), DTSTART)
        result = self.engine.get_next_occurrence(_make_task("FREQ=WEEKLY"), DTSTART)

        assert result == datetime(2025, 1, 13, 9, 0, tzinfo=UTC)
        assert self.engine.cache_size() == 2

    def test_changed_dtstart_is_not_served_stale(self):
        probe = datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
        nine = self.engine.get_next_occurrence(_make_task(), probe)
        ten = self.engine.get_next_occurrence(
            _make_task(dtstart=datetime(2025, 1, 6, 10, 0, tzinfo=UTC)), probe
        )

        assert nine.hour == 9
        assert ten.hour == 10
        assert self.engine.cache_size() == 2

    def test_changed_timezone_is_new_entry(self):
        self.engine.get_next_occurrence(_make_task(), DTSTART)
        self.engine.get_next_occurrence(_make_task(tz="Europe/Paris"), DTSTART)
        assert self.engine.cache_size() == 2

    def test_clear_cache(self):
        self.engine.get_next_occurrence(_make_task(), DTSTART)
        self.engine.clear_cache()
        assert self.engine.cache_size() == 0

    def test_failed_parse_is_not_cached(self):
        self.engine.get_next_occurrence(_make_task("FREQ=NEVER"), DTSTART)
        assert self.engine.cache_size() == 0
