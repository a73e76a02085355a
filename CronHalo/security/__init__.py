"""
Request signing, rate limiting and authorization for cron-triggered calls
"""

from .auth import AuthorizationPipeline, RequestContext, redact_context
from .rate_limit import InMemoryRateLimiter, RateLimitDecision, RedisRateLimiter
from .signing import SignedRequest, VerificationFailure, VerificationResult, sign, verify

__all__ = [
    "AuthorizationPipeline",
    "RequestContext",
    "redact_context",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RateLimitDecision",
    "SignedRequest",
    "VerificationFailure",
    "VerificationResult",
    "sign",
    "verify",
]
