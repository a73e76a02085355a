"""Run aggregation: folds per-task results into one RunReport."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import ValidationError

from CronHalo.errors import AggregationError
from CronHalo.shared.models import RunReport, TaskExecutionResult


def format_task_result(result: TaskExecutionResult) -> str:
    status = "OK" if result.success else "FAIL"
    return f"[{status}] {result.taskName} ({result.durationMs}ms)"


def elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))


class RunAggregator:
    """Accumulates task results for one run, in execution order."""

    def __init__(
        self,
        started_at: datetime,
        tasks_evaluated: int,
        timestamp: datetime | None = None,
    ):
        self.started_at = started_at
        # Schedule evaluation time reported to callers; defaults to the start time
        self.timestamp = timestamp or started_at
        self.tasks_evaluated = tasks_evaluated
        self.results: List[TaskExecutionResult] = []

    def add(self, result: TaskExecutionResult) -> "RunAggregator":
        self.results.append(result)
        return self

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def build(self, finished_at: datetime) -> RunReport:
        try:
            return RunReport(
                timestamp=self.timestamp,
                tasksEvaluated=self.tasks_evaluated,
                tasksExecuted=len(self.results),
                tasksSuccessful=self.successful,
                tasksFailed=self.failed,
                totalDurationMs=elapsed_ms(self.started_at, finished_at),
                results=list(self.results),
            )
        except ValidationError as e:
            raise AggregationError(f"Failed to build run report: {e}") from e
