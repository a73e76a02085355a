"""
Orchestrator run: resolve due tasks, execute them in registry order, and
aggregate the results.

Execution is a fold over the due-task list into a RunAggregator. The executor
returns failures as result values, so one task never aborts the run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import reduce
from typing import Callable

from CronHalo.engine.aggregator import RunAggregator, elapsed_ms, format_task_result
from CronHalo.engine.executor import TaskExecutor
from CronHalo.scheduler.registry import TaskRegistry
from CronHalo.scheduler.resolver import get_tasks_to_run
from CronHalo.shared.models import RunReport, ScheduledTask

logger = logging.getLogger(__name__)


class Orchestrator:
    def __init__(
        self,
        registry: TaskRegistry,
        executor: TaskExecutor,
        clock: Callable[[], datetime] | None = None,
    ):
        self.registry = registry
        self.executor = executor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _run_task(self, aggregator: RunAggregator, task: ScheduledTask) -> RunAggregator:
        result = self.executor.execute(task)
        logger.info(f"[ORCHESTRATOR] {format_task_result(result)}")
        if not result.success:
            logger.error(f"[ORCHESTRATOR] Task {task.id} failed: {result.error}")
        return aggregator.add(result)

    def run(self, now: datetime | None = None) -> RunReport:
        """
        Execute every task due at `now` (defaults to the current time).

        The schedule is evaluated against `now`; durations are measured with
        the orchestrator clock.
        """
        started = self._clock()
        now = now or started
        logger.info(f"[ORCHESTRATOR] Starting orchestrator run at {now.isoformat()}")

        due = get_tasks_to_run(self.registry, now)
        logger.info(f"[ORCHESTRATOR] Found {len(due)} task(s) to run")

        if not due:
            return RunReport.empty(now, elapsed_ms(started, self._clock()))

        aggregator = reduce(
            self._run_task, due, RunAggregator(started, len(due), timestamp=now)
        )
        report = aggregator.build(self._clock())

        logger.info(
            f"[ORCHESTRATOR] Completed. Success: {report.tasksSuccessful}, "
            f"Failed: {report.tasksFailed}, Total Duration: {report.totalDurationMs}ms"
        )
        return report
