"""
FastAPI dependency for task endpoints invoked by the orchestrator.

Task endpoints receive the same Authorization / X-Timestamp / X-Signature
headers as the orchestrator itself, signed for their own method and path.
Mount the guard on a route to require them:

    guard = SignedRequestGuard(secret)

    @app.get("/api/cron/poll-costs", dependencies=[Depends(guard)])
    def poll_costs(): ...
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import HTTPException, Request

from CronHalo.security.auth import redact_context
from CronHalo.security.rate_limit import client_identifier
from CronHalo.security.signing import constant_time_compare, extract_signature_headers, verify

logger = logging.getLogger(__name__)


class SignedRequestGuard:
    def __init__(self, secret: str | Callable[[], str]):
        self._secret = secret

    @property
    def secret(self) -> str:
        return self._secret() if callable(self._secret) else self._secret

    async def __call__(self, request: Request) -> None:
        secret = self.secret
        body = await request.body()
        timestamp, signature = extract_signature_headers(request.headers)

        result = verify(
            request.method,
            request.url.path,
            timestamp,
            body.decode("utf-8", errors="replace") if body else "",
            signature,
            secret,
        )
        bearer_ok = bool(secret) and constant_time_compare(
            request.headers.get("authorization", ""), f"Bearer {secret}"
        )

        if result.ok and bearer_ok:
            return

        context = redact_context(
            {
                "ip": client_identifier(
                    request.headers, request.client.host if request.client else None
                ),
                "path": request.url.path,
                "method": request.method,
                "userAgent": request.headers.get("user-agent"),
            }
        )
        reason = result.detail if not result.ok else "Invalid bearer credential"
        logger.error(f"[CRON] Signed request rejected: {reason} {context}")
        raise HTTPException(status_code=401, detail="Unauthorized")
