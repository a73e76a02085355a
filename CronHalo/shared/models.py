from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from CronHalo.errors import SchedulingError
from CronHalo.scheduler.schedules import Schedule, parse_schedule
from CronHalo.security.signing import utc_timestamp


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            # Normalize to uppercase before lookup
            value = value.upper()
            for member in cls:
                if member.value == value:
                    return member
        return None


class ScheduledTask(BaseModel):
    """A registry entry. Defined by configuration and never mutated."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str
    name: str
    description: str = ""
    endpoint: str
    method: HttpMethod = HttpMethod.GET
    schedule: Schedule
    maxDurationSeconds: Optional[float] = None
    enabled: bool = True
    body: Optional[Dict[str, Any]] = None

    @field_validator("id", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("endpoint")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"endpoint must be a path starting with '/', got {value!r}")
        return value

    @field_validator("schedule", mode="before")
    @classmethod
    def _parse_schedule(cls, value: Any) -> Schedule:
        try:
            return parse_schedule(value)
        except SchedulingError as e:
            # Re-raised by the registry as SchedulingError
            raise ValueError(str(e)) from e

    @field_validator("maxDurationSeconds")
    @classmethod
    def _positive_deadline(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("maxDurationSeconds must be positive")
        return value

    def describe(self) -> Dict[str, Any]:
        """JSON-safe view of the task (schedule rendered as text)."""
        data = self.model_dump(exclude={"schedule", "body"})
        data["method"] = self.method.value
        data["schedule"] = str(self.schedule)
        return data


class TaskExecutionResult(BaseModel):
    """Outcome of one task within one run."""

    taskId: str
    taskName: str
    success: bool
    startTime: datetime
    endTime: datetime
    durationMs: int
    error: Optional[str] = None
    responseSummary: Optional[Dict[str, Any]] = None

    def to_response(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "taskId": self.taskId,
            "taskName": self.taskName,
            "success": self.success,
            "duration": self.durationMs,
        }
        if self.error is not None:
            item["error"] = self.error
        if self.responseSummary is not None:
            item["summary"] = self.responseSummary
        return item


class RunReport(BaseModel):
    """Summary of one orchestrator invocation. Safe to log and return."""

    timestamp: datetime
    message: str = "Orchestrator run completed"
    tasksEvaluated: int = 0
    tasksExecuted: int = 0
    tasksSuccessful: int = 0
    tasksFailed: int = 0
    totalDurationMs: int = 0
    results: List[TaskExecutionResult] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_counts(self) -> "RunReport":
        if self.tasksExecuted != self.tasksSuccessful + self.tasksFailed:
            raise ValueError("tasksExecuted must equal tasksSuccessful + tasksFailed")
        if self.tasksExecuted > self.tasksEvaluated:
            raise ValueError("tasksExecuted cannot exceed tasksEvaluated")
        if self.tasksExecuted != len(self.results):
            raise ValueError("tasksExecuted must match the number of results")
        return self

    @classmethod
    def empty(cls, timestamp: datetime, duration_ms: int = 0) -> "RunReport":
        return cls(
            timestamp=timestamp,
            message="No tasks scheduled to run at this time",
            totalDurationMs=duration_ms,
        )

    def to_response(self) -> Dict[str, Any]:
        ts = self.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return {
            "success": True,
            "message": self.message,
            "timestamp": utc_timestamp(ts),
            "tasksEvaluated": self.tasksEvaluated,
            "tasksExecuted": self.tasksExecuted,
            "tasksSuccessful": self.tasksSuccessful,
            "tasksFailed": self.tasksFailed,
            "duration": self.totalDurationMs,
            "results": [r.to_response() for r in self.results],
        }
