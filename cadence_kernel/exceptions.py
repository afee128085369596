"""Exceptions raised by the cadence kernel."""


class CadenceKernelError(Exception):
    """Base class for kernel errors."""


class UnknownTaskError(CadenceKernelError, LookupError):
    """A caller passed a task id the task lookup cannot resolve."""

    def __init__(self, task_id: str):
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id


class InvalidRuleError(CadenceKernelError, ValueError):
    """RRULE text is malformed or outside the supported subset."""
