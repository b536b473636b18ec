from __future__ import annotations


class MeetwiseError(Exception):
    """Base class for errors raised by the scheduling engine."""


class ConfigError(MeetwiseError, RuntimeError):
    pass


class CalendarProviderError(MeetwiseError):
    """A calendar provider call failed. `retryable` marks transient failures (5xx, timeouts)."""

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class ClassifierError(MeetwiseError):
    pass


class HoldConflictError(MeetwiseError):
    pass


class WorkflowCancelledError(MeetwiseError):
    def __init__(self, request_id: str, status: str) -> None:
        super().__init__(f"meeting request {request_id} is {status}")
        self.request_id = request_id
        self.status = status


class RecordNotFoundError(MeetwiseError):
    pass
