"""
Error classes for the CronHalo orchestrator.

Errors fall into three groups by how far they propagate:
- AuthorizationError: rejects the inbound request before any task runs (401)
- TaskExecutionError and subclasses: recorded on a single task's result, run continues
- SchedulingError / ConfigurationError: fatal at startup, never raised mid-run

AggregationError (and anything unexpected) is caught by the endpoint and
reported as a 500 without taking the process down.
"""

from __future__ import annotations


class CronHaloError(Exception):
    """Base exception for CronHalo."""

    pass


class ConfigurationError(CronHaloError):
    """Invalid or missing process configuration."""

    pass


class SchedulingError(CronHaloError):
    """Malformed recurrence rule or task registry entry."""

    pass


class AuthorizationError(CronHaloError):
    """
    An authorization layer rejected the request.

    `layer` and `reason` are for server-side audit logs only; the HTTP
    response never says which layer failed.
    """

    def __init__(self, layer: str, reason: str):
        super().__init__(f"{layer}: {reason}")
        self.layer = layer
        self.reason = reason


class TaskExecutionError(CronHaloError):
    """Base class for per-task failures. Recovered into the task's result."""

    pass


class TaskTimeoutError(TaskExecutionError):
    """Task endpoint did not answer within its deadline."""

    def __init__(self, message: str = "timeout"):
        super().__init__(message)


class TaskHTTPError(TaskExecutionError):
    """Task endpoint answered with a non-2xx status."""

    def __init__(self, status: int, message: str | None = None):
        self.status = status
        self.detail = message
        if message:
            super().__init__(f"HTTP {status}: {message}")
        else:
            super().__init__(f"HTTP {status}")


class TaskTransportError(TaskExecutionError):
    """Connection refused, DNS failure and other transport-level errors."""

    pass


class AggregationError(CronHaloError):
    """Failure while building the run report. Surfaces as a 500."""

    pass
