# Test configuration and fixtures
import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
import requests

from CronHalo.scheduler.registry import TaskRegistry
from CronHalo.security.rate_limit import InMemoryRateLimiter

# Set test environment variables
os.environ["TESTING"] = "1"  # Signal that we're in test mode
os.environ.setdefault("LOG_LEVEL", "INFO")

TEST_SECRET = "test-cron-secret-0123456789abcdef"


class FakeClock:
    """Deterministic clock returning a fixed instant that tests can advance."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_response(status_code: int = 200, json_data=None, text: str = "") -> Mock:
    """Build a Mock that quacks like requests.Response."""
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if json_data is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = json_data
    response.text = text
    body = json.dumps(json_data).encode("utf-8") if json_data is not None else text.encode("utf-8")
    response.iter_content.return_value = [body] if body else []
    return response


@pytest.fixture
def response_factory():
    """Factory for fake requests.Response objects."""
    return make_response


@pytest.fixture
def secret():
    """Shared cron secret."""
    return TEST_SECRET


@pytest.fixture
def fixed_now():
    """Monday 2025-01-06 02:00:00 UTC."""
    return datetime(2025, 1, 6, 2, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now):
    return FakeClock(fixed_now)


@pytest.fixture
def task_defs():
    """Hourly task A and daily-at-02:00 task B."""
    return [
        {
            "id": "task-a",
            "name": "Task A",
            "endpoint": "/api/cron/task-a",
            "method": "GET",
            "schedule": "hourly",
            "maxDurationSeconds": 5,
        },
        {
            "id": "task-b",
            "name": "Task B",
            "endpoint": "/api/cron/task-b",
            "method": "POST",
            "schedule": "daily at 02:00",
            "maxDurationSeconds": 10,
        },
    ]


@pytest.fixture
def registry(task_defs):
    return TaskRegistry(task_defs)


@pytest.fixture
def mock_session():
    """Mock requests.Session; tests set request.return_value / side_effect."""
    session = Mock(spec=requests.Session)
    session.request.return_value = make_response(200, {"success": True})
    return session


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter(limit=10, window_seconds=3600)


@pytest.fixture
def no_sleep():
    """Replacement for time.sleep that records calls instead of blocking."""
    return Mock()


@pytest.fixture
def mock_redis():
    """Mock Redis client for testing."""
    mock_redis = Mock()
    mock_redis.ping.return_value = True
    mock_redis.zrange.return_value = []
    mock_redis.delete.return_value = True
    return mock_redis
