"""
Configuration settings for the CronHalo orchestrator
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from CronHalo.errors import ConfigurationError
from CronHalo.security.rate_limit import DEFAULT_LIMIT, DEFAULT_WINDOW_SECONDS


@dataclass
class OrchestratorSettings:
    """Everything the orchestrator reads from its environment at startup"""

    cron_secret: str = ""
    allowed_origins: list[str] = field(default_factory=list)
    app_base_url: str = "http://localhost:3000"
    rate_limit: int = DEFAULT_LIMIT
    rate_window_seconds: int = DEFAULT_WINDOW_SECONDS
    redis_url: str | None = None
    tasks_file: str | None = None
    log_level: str = "INFO"

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks
        secret = "set" if self.cron_secret else "unset"
        return (
            f"OrchestratorSettings(cron_secret=<{secret}>, "
            f"allowed_origins={self.allowed_origins!r}, app_base_url={self.app_base_url!r}, "
            f"rate_limit={self.rate_limit}, rate_window_seconds={self.rate_window_seconds}, "
            f"redis_url={'set' if self.redis_url else None}, tasks_file={self.tasks_file!r}, "
            f"log_level={self.log_level!r})"
        )


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _list_setting(environ: Mapping[str, str], name: str) -> list[str]:
    raw = environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_settings(environ: Mapping[str, str] | None = None) -> OrchestratorSettings:
    """Build settings from environment variables"""
    environ = os.environ if environ is None else environ

    base_url = environ.get("APP_BASE_URL") or environ.get("NEXT_PUBLIC_APP_URL")
    if not base_url:
        base_url = f"http://localhost:{environ.get('PORT', '3000')}"

    return OrchestratorSettings(
        cron_secret=environ.get("CRON_SECRET", ""),
        allowed_origins=_list_setting(environ, "CRON_ALLOWED_IPS"),
        app_base_url=base_url.rstrip("/"),
        rate_limit=_int_setting(environ, "CRON_RATE_LIMIT", DEFAULT_LIMIT),
        rate_window_seconds=_int_setting(
            environ, "CRON_RATE_WINDOW_SECONDS", DEFAULT_WINDOW_SECONDS
        ),
        redis_url=environ.get("REDIS_URL") or None,
        tasks_file=environ.get("CRON_TASKS_FILE") or None,
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
    )
