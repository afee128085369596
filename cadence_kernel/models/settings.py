"""Configuration for the pattern learner and the rule evaluator."""

from enum import Enum

from pydantic import BaseModel, Field


class Sensitivity(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class SmartRecurrenceSettings(BaseModel):
    """User-editable learning settings. Read fresh on every analysis."""

    enabled: bool = True
    auto_adjust: bool = False               # Consumed by the host application
    min_completions_for_learning: int = Field(ge=1, default=10)
    confidence_threshold: float = Field(ge=0.0, le=1.0, default=0.7)
    sensitivity: Sensitivity = Sensitivity.CONSERVATIVE
    min_sample_size: int = Field(ge=1, default=5)
    min_confidence: float = Field(ge=0.0, le=1.0, default=0.75)

    @property
    def effective_threshold(self) -> float:
        return max(self.confidence_threshold, self.min_confidence)

    @property
    def required_completions(self) -> int:
        return max(self.min_completions_for_learning, self.min_sample_size)


class EvaluatorConfig(BaseModel):
    """Configuration for the recurrence engine."""

    default_timezone: str = "UTC"           # Used when neither rule nor task names one
    max_occurrences: int = Field(ge=1, default=1000)
