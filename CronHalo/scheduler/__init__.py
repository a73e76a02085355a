"""
Task registry, recurrence rules and due-task resolution
"""

from .schedules import (
    CronExpression,
    DailyAt,
    EveryNMinutes,
    Hourly,
    WeeklyAt,
    parse_schedule,
)

__all__ = [
    "CronExpression",
    "DailyAt",
    "EveryNMinutes",
    "Hourly",
    "WeeklyAt",
    "parse_schedule",
]
