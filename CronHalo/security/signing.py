"""
HMAC-SHA256 request signing for internal cron calls.

A signature binds the HTTP method, path, timestamp and body:

    METHOD:PATH:TIMESTAMP:BODY

where BODY is the exact JSON text sent on the wire (empty when there is no
body). Verification rejects timestamps outside a 5 minute window before it
looks at the signature, so a replayed request fails even if it was signed
correctly.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

MAX_TIMESTAMP_AGE = timedelta(minutes=5)

TIMESTAMP_HEADER = "X-Timestamp"
SIGNATURE_HEADER = "X-Signature"
# Names used by older cron clients
LEGACY_TIMESTAMP_HEADER = "X-Cron-Timestamp"
LEGACY_SIGNATURE_HEADER = "X-Cron-Signature"


class VerificationFailure(str, Enum):
    MISSING_HEADER = "missing_header"
    MISSING_SECRET = "missing_secret"
    BAD_TIMESTAMP = "bad_timestamp"
    TIMESTAMP_IN_FUTURE = "timestamp_in_future"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: VerificationFailure | None = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok


def serialize_body(body: Any) -> str:
    """Serialize a request body exactly as it is signed and sent."""
    if body is None or body == "":
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        return body
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO 8601 UTC timestamp with millisecond precision, e.g. 2025-01-01T02:00:00.000Z"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC. Raises ValueError."""
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings without leaking where they first differ.

    Length is not secret, so a length mismatch returns immediately.
    """
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    result = 0
    for x, y in zip(a_bytes, b_bytes):
        result |= x ^ y
    return result == 0


def canonical_message(method: str, path: str, timestamp: str, body: Any = None) -> str:
    return f"{method.upper()}:{path}:{timestamp}:{serialize_body(body)}"


def sign(method: str, path: str, timestamp: str, body: Any, secret: str) -> str:
    """Return the hex HMAC-SHA256 signature for a request."""
    message = canonical_message(method, path, timestamp, body)
    return hmac.new(
        secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def verify(
    method: str,
    path: str,
    timestamp: str | None,
    body: Any,
    signature: str | None,
    secret: str,
    now: datetime | None = None,
) -> VerificationResult:
    """
    Verify a signed request.

    Checks run in order: headers present, secret configured, timestamp
    parses, timestamp not in the future, timestamp within the freshness
    window, signature matches.
    """
    if not timestamp:
        return VerificationResult(False, VerificationFailure.MISSING_HEADER, "Missing timestamp header")
    if not signature:
        return VerificationResult(False, VerificationFailure.MISSING_HEADER, "Missing signature header")
    if not secret:
        return VerificationResult(False, VerificationFailure.MISSING_SECRET, "HMAC secret not configured")

    try:
        request_time = parse_timestamp(timestamp)
    except (ValueError, TypeError):
        return VerificationResult(False, VerificationFailure.BAD_TIMESTAMP, "Invalid timestamp format")

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    age = now - request_time

    if age < timedelta(0):
        return VerificationResult(False, VerificationFailure.TIMESTAMP_IN_FUTURE, "Timestamp is in the future")

    if age > MAX_TIMESTAMP_AGE:
        minutes = int(age.total_seconds() // 60)
        return VerificationResult(
            False,
            VerificationFailure.EXPIRED,
            f"Request expired ({minutes} minutes old, max 5 minutes)",
        )

    expected = sign(method, path, timestamp, body, secret)
    if not constant_time_compare(signature, expected):
        return VerificationResult(False, VerificationFailure.BAD_SIGNATURE, "Invalid signature")

    return VerificationResult(True)


def extract_signature_headers(headers: Mapping[str, str]) -> tuple[str | None, str | None]:
    """Return (timestamp, signature) from request headers, accepting legacy names."""
    lowered = {k.lower(): v for k, v in headers.items()}
    timestamp = lowered.get(TIMESTAMP_HEADER.lower()) or lowered.get(
        LEGACY_TIMESTAMP_HEADER.lower()
    )
    signature = lowered.get(SIGNATURE_HEADER.lower()) or lowered.get(
        LEGACY_SIGNATURE_HEADER.lower()
    )
    return timestamp, signature


@dataclass(frozen=True)
class SignedRequest:
    """A request tuple plus its signature. Never stored."""

    method: str
    path: str
    timestamp: str
    body: str
    signature: str

    @classmethod
    def create(
        cls,
        method: str,
        path: str,
        secret: str,
        body: Any = None,
        now: datetime | None = None,
    ) -> SignedRequest:
        timestamp = utc_timestamp(now)
        body_text = serialize_body(body)
        return cls(
            method=method.upper(),
            path=path,
            timestamp=timestamp,
            body=body_text,
            signature=sign(method, path, timestamp, body_text, secret),
        )

    def headers(self, secret: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {secret}",
            TIMESTAMP_HEADER: self.timestamp,
            SIGNATURE_HEADER: self.signature,
            "Content-Type": "application/json",
        }
