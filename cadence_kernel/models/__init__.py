"""Cadence kernel data models."""

from cadence_kernel.models.learning import (
    CompletionEvent,
    DailyEvidence,
    Evidence,
    FeedbackEntry,
    MonthlyEvidence,
    PatternLearnerState,
    Suggestion,
    TaskLearningRecord,
    WeeklyEvidence,
)
from cadence_kernel.models.recurrence import RecurrenceRule, RuleFailure, RuleValidation
from cadence_kernel.models.settings import (
    EvaluatorConfig,
    Sensitivity,
    SmartRecurrenceSettings,
)
from cadence_kernel.models.task import Task, TaskFrequency

__all__ = [
    "CompletionEvent",
    "DailyEvidence",
    "EvaluatorConfig",
    "Evidence",
    "FeedbackEntry",
    "MonthlyEvidence",
    "PatternLearnerState",
    "RecurrenceRule",
    "RuleFailure",
    "RuleValidation",
    "Sensitivity",
    "SmartRecurrenceSettings",
    "Suggestion",
    "Task",
    "TaskFrequency",
    "TaskLearningRecord",
    "WeeklyEvidence",
]
