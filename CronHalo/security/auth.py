"""
Defense-in-depth authorization for the orchestrator entry point.

Four independent layers run in a fixed order and the first failure wins:

1. origin allow-list (skipped when no allow-list is configured)
2. per-origin rate limit
3. HMAC signature + timestamp freshness
4. bearer shared secret, with a ~1s delay on failure

Each layer raises AuthorizationError. Callers map every AuthorizationError to
the same 401 body so the response never reveals which layer tripped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from CronHalo.errors import AuthorizationError
from CronHalo.security.rate_limit import RateLimiter, client_identifier
from CronHalo.security.signing import (
    constant_time_compare,
    extract_signature_headers,
    utc_timestamp,
    verify,
)

logger = logging.getLogger(__name__)

SENSITIVE_KEY_PARTS = ("secret", "token", "password", "signature", "authorization", "key")
FAILED_SECRET_DELAY_SECONDS = 1.0


def redact_context(context: Mapping[str, Any]) -> dict[str, Any]:
    """Drop empty values and mask anything that looks like a credential."""
    sanitized: dict[str, Any] = {}
    for key, value in context.items():
        if value is None:
            continue
        if any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
            sanitized[key] = "[REDACTED]"
            continue
        if isinstance(value, (str, int, float, bool)):
            sanitized[key] = value
    return sanitized


@dataclass
class RequestContext:
    """What the pipeline needs to know about one inbound request."""

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    peer: str | None = None

    def __post_init__(self):
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    @property
    def origin(self) -> str:
        return client_identifier(self.headers, self.peer)

    @property
    def user_agent(self) -> str | None:
        return self.headers.get("user-agent")

    def audit_context(self) -> dict[str, Any]:
        return {
            "ip": self.origin,
            "timestamp": utc_timestamp(),
            "userAgent": self.user_agent,
            "method": self.method,
            "path": self.path,
        }


class AuthorizationPipeline:
    """Ordered authorization checks for cron-triggered requests."""

    def __init__(
        self,
        secret: str,
        rate_limiter: RateLimiter,
        allowed_origins: list[str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ):
        self.secret = secret
        self.rate_limiter = rate_limiter
        self.allowed_origins = [o for o in (allowed_origins or []) if o]
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.checks: list[Callable[[RequestContext], None]] = [
            self.check_origin,
            self.check_rate_limit,
            self.check_signature,
            self.check_shared_secret,
        ]

    def authorize(self, ctx: RequestContext):
        """Run every layer in order. Raises AuthorizationError on the first failure."""
        if not self.secret:
            self._reject(ctx, "config", "CRON_SECRET not configured")
        for check in self.checks:
            check(ctx)

    def check_origin(self, ctx: RequestContext):
        if not self.allowed_origins:
            return
        if ctx.origin not in self.allowed_origins:
            self._reject(ctx, "origin", "Request from non-allow-listed origin")

    def check_rate_limit(self, ctx: RequestContext):
        try:
            decision = self.rate_limiter.hit(ctx.origin)
        except Exception as e:
            # Limiter store outages must not stop scheduled runs
            logger.warning(f"[CRON] Rate limit check skipped, limiter error: {e}")
            return
        if not decision.allowed:
            self._reject(
                ctx,
                "rate_limit",
                f"Rate limit exceeded ({decision.limit} per window, retry after {decision.retry_after}s)",
            )

    def check_signature(self, ctx: RequestContext):
        timestamp, signature = extract_signature_headers(ctx.headers)
        result = verify(
            ctx.method,
            ctx.path,
            timestamp,
            ctx.body,
            signature,
            self.secret,
            now=self._clock(),
        )
        if not result.ok:
            self._reject(ctx, "signature", result.detail, requestTimestamp=timestamp)

    def check_shared_secret(self, ctx: RequestContext):
        provided = ctx.headers.get("authorization", "")
        if not constant_time_compare(provided, f"Bearer {self.secret}"):
            self._sleep(FAILED_SECRET_DELAY_SECONDS)
            self._reject(ctx, "shared_secret", "Invalid bearer credential")

    def _reject(self, ctx: RequestContext, layer: str, reason: str, **extra):
        context = redact_context({**ctx.audit_context(), **extra})
        logger.error(f"[CRON] Unauthorized request rejected by {layer}: {reason} {context}")
        raise AuthorizationError(layer, reason)
