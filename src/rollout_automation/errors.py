from __future__ import annotations

from typing import Optional


class RolloutError(Exception):
    """Base class for rollout failures."""


class TaskListError(RolloutError, ValueError):
    """Raised when a task list or host inventory cannot be loaded."""


class GuardEvaluationError(RolloutError, ValueError):
    """Raised for a ``when`` expression that cannot be parsed or evaluated."""

    def __init__(self, expression: str, message: str):
        super().__init__(f"invalid guard {expression!r}: {message}")
        self.expression = expression


class ExecutorError(RolloutError):
    """An operation failed on the target host."""

    def __init__(self, message: str, *, stdout: Optional[str] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.stdout = stdout
        self.exit_code = exit_code


class PortWaitTimeout(ExecutorError, TimeoutError):
    """Raised when a port does not reach the wanted state in time."""


class TransportError(ExecutorError):
    """The host could not be reached; fatal to that host's run only."""


class SecretResolutionError(RolloutError):
    """A secret reference in the run variables could not be resolved."""
