"""
Task registry: the fixed, ordered catalog of scheduled jobs.

Registry order is execution order when several tasks fall due in the same
run. The registry is built once at startup; a malformed entry raises
SchedulingError there instead of surfacing during a run.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Iterator

from pydantic import ValidationError

from CronHalo.errors import SchedulingError
from CronHalo.shared.models import ScheduledTask

logger = logging.getLogger(__name__)


# Built-in catalog for the cost dashboard. All times are UTC.
DEFAULT_TASKS: list[dict[str, Any]] = [
    {
        "id": "cleanup-sessions",
        "name": "Cleanup Expired Sessions",
        "description": "Removes expired user sessions",
        "schedule": "hourly",
        "endpoint": "/api/cron/cleanup-sessions",
        "method": "GET",
        "maxDurationSeconds": 60,
    },
    {
        "id": "poll-costs",
        "name": "Poll Azure Costs",
        "description": "Syncs cost data for all active Azure tenants",
        "schedule": "daily at 02:00",
        "endpoint": "/api/cron/poll-costs",
        "method": "GET",
        "maxDurationSeconds": 300,
    },
    {
        "id": "poll-resources",
        "name": "Poll Azure Resources",
        "description": "Syncs resource inventory for all active Azure tenants",
        "schedule": "daily at 03:00",
        "endpoint": "/api/cron/poll-resources",
        "method": "GET",
        "maxDurationSeconds": 300,
    },
    {
        "id": "evaluate-alerts",
        "name": "Evaluate Alert Rules",
        "description": "Evaluates alert rules against current cost data and triggers notifications",
        "schedule": "daily at 04:00",
        "endpoint": "/api/cron/evaluate-alerts",
        "method": "GET",
        "maxDurationSeconds": 180,
    },
    {
        "id": "send-reports",
        "name": "Send Scheduled Reports",
        "description": "Processes and sends scheduled cost reports and alert digests",
        "schedule": "weekly on monday at 08:00",
        "endpoint": "/api/cron/send-reports",
        "method": "POST",
        "maxDurationSeconds": 300,
    },
]


def build_task(data: dict[str, Any] | ScheduledTask) -> ScheduledTask:
    """Validate one task definition, converting validation failures to SchedulingError."""
    if isinstance(data, ScheduledTask):
        return data
    try:
        return ScheduledTask(**data)
    except ValidationError as e:
        task_id = data.get("id", "<unknown>") if isinstance(data, dict) else "<unknown>"
        raise SchedulingError(f"Invalid task definition {task_id!r}: {e}") from e
    except TypeError as e:
        raise SchedulingError(f"Invalid task definition: {e}") from e


class TaskRegistry:
    """Ordered, immutable collection of ScheduledTask."""

    def __init__(self, tasks: Iterable[dict[str, Any] | ScheduledTask]):
        built = [build_task(t) for t in tasks]
        seen: set[str] = set()
        for task in built:
            if task.id in seen:
                raise SchedulingError(f"Duplicate task id: {task.id}")
            seen.add(task.id)
        self._tasks: tuple[ScheduledTask, ...] = tuple(built)
        self._by_id = {task.id: task for task in self._tasks}

    @property
    def tasks(self) -> tuple[ScheduledTask, ...]:
        return self._tasks

    def get(self, task_id: str) -> ScheduledTask | None:
        return self._by_id.get(task_id)

    def __iter__(self) -> Iterator[ScheduledTask]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._by_id

    @classmethod
    def from_file(cls, path: str) -> TaskRegistry:
        """Load a registry from a JSON file of the form {"tasks": [...]}"""
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SchedulingError(f"Failed to load task registry from {path}: {e}") from e

        tasks = data.get("tasks") if isinstance(data, dict) else data
        if not isinstance(tasks, list):
            raise SchedulingError(f"Task registry {path} must contain a 'tasks' list")

        registry = cls(tasks)
        logger.info(f"Loaded {len(registry)} task(s) from {path}")
        return registry


def default_registry() -> TaskRegistry:
    return TaskRegistry(DEFAULT_TASKS)
