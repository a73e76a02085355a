"""Due-task resolution."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from CronHalo.shared.models import ScheduledTask


def should_task_run(task: ScheduledTask, now: datetime) -> bool:
    """True when the task is enabled and its schedule matches `now` (UTC, minute granularity)."""
    if not task.enabled:
        return False
    return task.schedule.matches(now)


def get_tasks_to_run(registry: Iterable[ScheduledTask], now: datetime) -> list[ScheduledTask]:
    """
    Tasks due at `now`, in registry order.

    Pure and deterministic. There is no memory of earlier runs: a trigger
    that fires twice inside a matching minute gets the same tasks twice, and
    downstream endpoints are expected to be idempotent.
    """
    return [task for task in registry if should_task_run(task, now)]
