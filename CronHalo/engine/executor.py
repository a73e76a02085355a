"""
Execution engine: calls one task endpoint with a signed request.

Every failure mode of a single task (deadline exceeded, non-2xx, transport
error) is turned into a failed TaskExecutionResult. Nothing raised for a per-task
failure escapes `execute`, so one bad task never stops the rest of the run.
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

from CronHalo.errors import (
    TaskExecutionError,
    TaskHTTPError,
    TaskTimeoutError,
    TaskTransportError,
)
from CronHalo.security.signing import SignedRequest
from CronHalo.shared.models import ScheduledTask, TaskExecutionResult

logger = logging.getLogger(__name__)

# Only these top-level fields of a task response make it into the run report
SUMMARY_FIELDS = [
    "success",
    "message",
    "total",
    "successful",
    "failed",
    "evaluated",
    "triggered",
    "processed",
    "sent",
    "skipped",
    "tenantsProcessed",
    "totalCostsIngested",
    "totalResourcesIngested",
]
MAX_SAMPLE_ERRORS = 3
MAX_ERROR_LENGTH = 200
READ_CHUNK_SIZE = 8192


def _truncate(text: str, limit: int = MAX_ERROR_LENGTH) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def extract_response_summary(payload: Any) -> Optional[Dict[str, Any]]:
    """
    Reduce a task's JSON response to an allow-listed summary.

    Never forwards the full payload: unknown fields are dropped and at most
    three error samples are kept.
    """
    if not isinstance(payload, dict):
        return None

    summary: Dict[str, Any] = {}
    for field in SUMMARY_FIELDS:
        if field in payload:
            value = payload[field]
            summary[field] = _truncate(value) if isinstance(value, str) else value

    errors = payload.get("errors")
    if isinstance(errors, list):
        summary["errorCount"] = len(errors)
        summary["sampleErrors"] = [
            _truncate(e if isinstance(e, str) else str(e))
            for e in errors[:MAX_SAMPLE_ERRORS]
        ]

    return summary


def _parse_json(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


def _error_message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message")
        if message:
            return _truncate(message if isinstance(message, str) else str(message))
    return None


class TaskExecutor:
    """Runs scheduled tasks against the internal service."""

    def __init__(
        self,
        base_url: str,
        secret: str,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.session = session or requests.Session()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_request(self, task: ScheduledTask) -> SignedRequest:
        return SignedRequest.create(
            task.method.value,
            task.endpoint,
            self.secret,
            body=task.body,
            now=self._clock(),
        )

    def _send(
        self,
        task: ScheduledTask,
        signed: SignedRequest,
        cancelled: threading.Event | None = None,
    ) -> tuple[int, bytes]:
        """Send the request and read the whole body. Returns (status, body)."""
        try:
            response = self.session.request(
                signed.method,
                f"{self.base_url}{task.endpoint}",
                headers=signed.headers(self.secret),
                data=signed.body.encode("utf-8") if signed.body else None,
                timeout=task.maxDurationSeconds,
                stream=True,
            )
        except requests.Timeout as e:
            raise TaskTimeoutError() from e
        except requests.RequestException as e:
            raise TaskTransportError(str(e) or e.__class__.__name__) from e

        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                if cancelled is not None and cancelled.is_set():
                    raise TaskTimeoutError()
                chunks.append(chunk)
        except requests.RequestException as e:
            raise TaskTransportError(str(e) or e.__class__.__name__) from e
        finally:
            response.close()
        return response.status_code, b"".join(chunks)

    def _send_with_deadline(
        self, task: ScheduledTask, signed: SignedRequest
    ) -> tuple[int, bytes]:
        """
        Run `_send` on a worker thread and stop waiting at the task deadline.

        The requests timeout bounds each socket read, not the whole call.
        On expiry the worker is told to drop the response and left to finish.
        """
        cancelled = threading.Event()
        pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"cron-task-{task.id}"
        )
        try:
            future = pool.submit(self._send, task, signed, cancelled)
            try:
                return future.result(timeout=task.maxDurationSeconds)
            except concurrent.futures.TimeoutError as e:
                cancelled.set()
                raise TaskTimeoutError() from e
        finally:
            pool.shutdown(wait=False)

    def _call(self, task: ScheduledTask) -> Any:
        """Issue the HTTP call. Returns the parsed JSON body (or None). Raises TaskExecutionError."""
        try:
            signed = self.build_request(task)
            if task.maxDurationSeconds is None:
                status, body = self._send(task, signed)
            else:
                status, body = self._send_with_deadline(task, signed)
        except TaskExecutionError:
            raise
        except Exception as e:
            logger.exception(f"[ORCHESTRATOR] Unexpected error calling task {task.id}: {e}")
            raise TaskTransportError(str(e) or e.__class__.__name__) from e

        payload = _parse_json(body)
        if not 200 <= status < 300:
            raise TaskHTTPError(status, _error_message(payload))

        if payload is None and body:
            logger.warning(f"[ORCHESTRATOR] Task {task.id} returned a non-JSON body")
        return payload

    def execute(self, task: ScheduledTask) -> TaskExecutionResult:
        start = self._clock()
        logger.info(f"[ORCHESTRATOR] Executing task: {task.name} ({task.id})")

        error: Optional[str] = None
        summary: Optional[Dict[str, Any]] = None
        try:
            payload = self._call(task)
            summary = extract_response_summary(payload)
        except TaskExecutionError as e:
            error = str(e)

        end = self._clock()
        return TaskExecutionResult(
            taskId=task.id,
            taskName=task.name,
            success=error is None,
            startTime=start,
            endTime=end,
            durationMs=max(0, int((end - start).total_seconds() * 1000)),
            error=error,
            responseSummary=summary,
        )
