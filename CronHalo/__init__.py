"""CronHalo scheduled task orchestrator.

The FastAPI app and the HTTP executor are imported lazily, on first
attribute access.
"""

from __future__ import annotations

from typing import Any

__version__ = "1.0.0"

__all__ = [
    "Orchestrator",
    "TaskExecutor",
    "TaskRegistry",
    "create_app",
    "load_settings",
]


def __getattr__(name: str) -> Any:
    if name == "Orchestrator":
        from .engine.orchestrator import Orchestrator

        return Orchestrator

    if name == "TaskExecutor":
        from .engine.executor import TaskExecutor

        return TaskExecutor

    if name == "TaskRegistry":
        from .scheduler.registry import TaskRegistry

        return TaskRegistry

    if name == "create_app":
        from .backend.main import create_app

        return create_app

    if name == "load_settings":
        from .config import load_settings

        return load_settings

    raise AttributeError(f"module 'CronHalo' has no attribute {name!r}")
