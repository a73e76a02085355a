# Unit tests for per-origin rate limiting
import threading
from unittest.mock import Mock

import pytest

from CronHalo.security.rate_limit import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    client_identifier,
)
from CronHalo.shared.redis_utils import RedisConfig, RedisKeys, SyncRedisClient


class Tick:
    """Monotonic fake clock in seconds."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value


@pytest.mark.unit
class TestInMemoryRateLimiter:
    """Test the in-process sliding window."""

    def test_allows_up_to_limit_then_rejects(self):
        limiter = InMemoryRateLimiter(limit=10, window_seconds=3600, clock=Tick())

        decisions = [limiter.hit("ip:1.2.3.4") for _ in range(11)]

        assert all(d.allowed for d in decisions[:10])
        assert not decisions[10].allowed
        assert decisions[9].remaining == 0
        assert decisions[10].retry_after > 0

    def test_budget_is_per_origin(self):
        """One noisy caller cannot exhaust another's budget."""
        limiter = InMemoryRateLimiter(limit=2, window_seconds=60, clock=Tick())
        limiter.hit("a")
        limiter.hit("a")

        assert not limiter.hit("a").allowed
        assert limiter.hit("b").allowed

    def test_window_slides(self):
        clock = Tick()
        limiter = InMemoryRateLimiter(limit=2, window_seconds=60, clock=clock)
        limiter.hit("a")
        clock.value += 30
        limiter.hit("a")
        assert not limiter.hit("a").allowed

        clock.value += 31  # first attempt has aged out
        assert limiter.hit("a").allowed
        assert not limiter.hit("a").allowed

    def test_rejected_attempts_are_not_counted(self):
        clock = Tick()
        limiter = InMemoryRateLimiter(limit=1, window_seconds=60, clock=clock)
        limiter.hit("a")
        for _ in range(5):
            limiter.hit("a")
        assert limiter.attempts("a") == 1

    def test_reset(self):
        limiter = InMemoryRateLimiter(limit=1, window_seconds=60, clock=Tick())
        limiter.hit("a")
        limiter.reset("a")
        assert limiter.hit("a").allowed
        limiter.reset()
        assert limiter.attempts("a") == 0

    def test_expired_origins_are_forgotten(self):
        clock = Tick()
        limiter = InMemoryRateLimiter(limit=10, window_seconds=60, clock=clock)
        for i in range(500):
            limiter.hit(f"10.0.{i // 256}.{i % 256}")
        assert limiter.tracked() == 500

        clock.value += 61
        limiter.hit("192.0.2.1")

        assert limiter.tracked() == 1
        assert limiter.attempts("10.0.0.0") == 0

    def test_rotating_forwarded_origins_do_not_accumulate(self):
        """Spoofed X-Forwarded-For values must not grow the map once their window passes."""
        clock = Tick()
        limiter = InMemoryRateLimiter(limit=10, window_seconds=60, clock=clock)

        for i in range(5000):
            limiter.hit(f"origin-{i}")
            clock.value += 61

        assert limiter.tracked() == 1

    def test_live_origins_survive_sweep(self):
        clock = Tick()
        limiter = InMemoryRateLimiter(limit=10, window_seconds=60, clock=clock)
        limiter.hit("stale")
        clock.value += 30
        limiter.hit("fresh")
        clock.value += 31

        limiter.hit("other")

        assert limiter.attempts("stale") == 0
        assert limiter.attempts("fresh") == 1
        assert limiter.tracked() == 2

    def test_concurrent_hits_never_exceed_limit(self):
        """Overlapping triggers cannot both take the last slot."""
        limiter = InMemoryRateLimiter(limit=10, window_seconds=3600)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                decision = limiter.hit("shared")
                with lock:
                    allowed.append(decision.allowed)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(allowed) == 10
        assert len(allowed) == 80


@pytest.mark.unit
class TestRedisRateLimiter:
    """Test the Redis-backed limiter against a mocked client."""

    @pytest.fixture
    def client(self):
        client = Mock(spec=SyncRedisClient)
        client.oldest_attempt.return_value = 1000.0
        return client

    def test_allows_within_limit(self, client):
        client.record_attempt.return_value = (3, "m3")
        limiter = RedisRateLimiter(client, limit=10, window_seconds=3600, clock=Tick())

        decision = limiter.hit("1.2.3.4")

        assert decision.allowed
        assert decision.remaining == 7
        client.record_attempt.assert_called_once_with(
            RedisKeys.rate_limit("cron", "1.2.3.4"), 3600, now=1000.0
        )
        client.discard.assert_not_called()

    def test_rejects_and_withdraws_over_limit(self, client):
        client.record_attempt.return_value = (11, "m11")
        limiter = RedisRateLimiter(client, limit=10, window_seconds=3600, clock=Tick(1600.0))

        decision = limiter.hit("1.2.3.4")

        assert not decision.allowed
        client.discard.assert_called_once_with(RedisKeys.rate_limit("cron", "1.2.3.4"), "m11")
        assert decision.retry_after == 3001


@pytest.mark.unit
class TestSyncRedisClient:
    """Test the Redis client wrapper with a mocked redis connection."""

    def test_record_attempt_uses_transaction(self, mock_redis):
        pipe = Mock()
        pipe.execute.return_value = [0, 1, 4, True]
        mock_redis.pipeline.return_value = pipe
        client = SyncRedisClient(RedisConfig(), client=mock_redis)

        count, member = client.record_attempt("k", 3600, now=5000.0)

        assert count == 4
        assert member.startswith("5000.000000:")
        mock_redis.pipeline.assert_called_once_with(transaction=True)
        pipe.zremrangebyscore.assert_called_once_with("k", 0, 1400.0)
        pipe.zadd.assert_called_once_with("k", {member: 5000.0})
        pipe.expire.assert_called_once_with("k", 3600)

    def test_oldest_attempt(self, mock_redis):
        client = SyncRedisClient(RedisConfig(), client=mock_redis)
        assert client.oldest_attempt("k") is None

        mock_redis.zrange.return_value = [("m", 42.5)]
        assert client.oldest_attempt("k") == 42.5

    def test_config_builds_url(self):
        assert RedisConfig(host="cache", port=6380, db=2).url == "redis://cache:6380/2"
        assert RedisConfig(url="redis://x:1/0").url == "redis://x:1/0"


@pytest.mark.unit
class TestClientIdentifier:
    """Test origin resolution from headers."""

    def test_first_forwarded_hop(self):
        headers = {"x-forwarded-for": "10.0.0.1, 10.0.0.2"}
        assert client_identifier(headers) == "10.0.0.1"

    def test_real_ip_fallback(self):
        assert client_identifier({"x-real-ip": "10.0.0.9"}) == "10.0.0.9"

    def test_peer_fallback(self):
        assert client_identifier({}, peer="127.0.0.1") == "127.0.0.1"
        assert client_identifier({}) == "unknown"

    def test_accepts_request_header_mapping(self):
        from starlette.datastructures import Headers

        headers = Headers({"X-Forwarded-For": "198.51.100.3", "X-Real-IP": "10.0.0.9"})
        assert client_identifier(headers, peer="127.0.0.1") == "198.51.100.3"
