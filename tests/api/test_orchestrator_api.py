# API tests for the orchestrator endpoint
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import requests
from fastapi.testclient import TestClient

from CronHalo.backend.main import create_app
from CronHalo.backend.routes.cron import ORCHESTRATOR_PATH
from CronHalo.config import OrchestratorSettings
from CronHalo.security.signing import SignedRequest


@pytest.mark.api
class TestOrchestratorAPI:
    """Test the HTTP entry point end to end with a mocked task session."""

    @pytest.fixture
    def settings(self, secret):
        return OrchestratorSettings(cron_secret=secret, app_base_url="http://internal.test")

    @pytest.fixture
    def app(self, settings, registry, rate_limiter, mock_session, no_sleep):
        return create_app(
            settings=settings,
            registry=registry,
            rate_limiter=rate_limiter,
            session=mock_session,
            sleep=no_sleep,
        )

    @pytest.fixture
    def client(self, app):
        return TestClient(app)

    def signed_headers(self, secret, now=None, origin="203.0.113.7"):
        signed = SignedRequest.create("GET", ORCHESTRATOR_PATH, secret, now=now)
        headers = signed.headers(secret)
        headers["X-Forwarded-For"] = origin
        return headers

    def run_at(self, client, secret, hour, minute=0, **kwargs):
        """Call the endpoint with the schedule clock pinned to hour:minute UTC."""
        pinned = datetime(2025, 1, 6, hour, minute, tzinfo=timezone.utc)
        orchestrator = client.app.state.orchestrator
        original_run = orchestrator.run
        with patch.object(orchestrator, "run", side_effect=lambda: original_run(pinned)):
            return client.get(ORCHESTRATOR_PATH, headers=self.signed_headers(secret, **kwargs))

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["tasks"] == 2
        assert body["rateLimiter"] == "InMemoryRateLimiter"

    def test_successful_run(self, client, secret, mock_session):
        response = self.run_at(client, secret, 2)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Orchestrator run completed"
        assert body["timestamp"] == "2025-01-06T02:00:00.000Z"
        assert body["tasksEvaluated"] == 2
        assert body["tasksExecuted"] == 2
        assert body["tasksSuccessful"] == 2
        assert body["tasksFailed"] == 0
        assert [r["taskId"] for r in body["results"]] == ["task-a", "task-b"]
        assert body["results"][0]["summary"] == {"success": True}
        assert mock_session.request.call_count == 2

    def test_no_tasks_due(self, client, secret, mock_session):
        response = self.run_at(client, secret, 3, 17)

        assert response.status_code == 200
        body = response.json()
        assert body["tasksEvaluated"] == 0
        assert body["message"] == "No tasks scheduled to run at this time"
        mock_session.request.assert_not_called()

    def test_partial_failure_reported(self, client, secret, mock_session, response_factory):
        mock_session.request.side_effect = [
            response_factory(500, {"error": "db down"}),
            requests.Timeout(),
        ]

        body = self.run_at(client, secret, 2).json()

        assert body["tasksFailed"] == 2
        assert body["results"][0]["error"] == "HTTP 500: db down"
        assert body["results"][1]["error"] == "timeout"

    def test_stale_timestamp_never_reaches_resolver(self, client, secret):
        """Valid signature, 10 minute old timestamp: 401 and no resolution."""
        stale = datetime.now(timezone.utc) - timedelta(minutes=10)

        with patch("CronHalo.engine.orchestrator.get_tasks_to_run") as resolver:
            response = client.get(ORCHESTRATOR_PATH, headers=self.signed_headers(secret, now=stale))

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        resolver.assert_not_called()

    def test_wrong_bearer(self, client, secret, no_sleep):
        headers = self.signed_headers(secret)
        headers["Authorization"] = "Bearer nope"

        response = client.get(ORCHESTRATOR_PATH, headers=headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        no_sleep.assert_called_once_with(1.0)

    def test_missing_headers(self, client):
        response = client.get(ORCHESTRATOR_PATH)
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_rate_limited_origin_gets_same_401(self, client, secret, rate_limiter):
        for _ in range(10):
            rate_limiter.hit("198.51.100.9")

        with patch("CronHalo.security.auth.verify") as verify:
            response = client.get(
                ORCHESTRATOR_PATH, headers=self.signed_headers(secret, origin="198.51.100.9")
            )

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        verify.assert_not_called()

    def test_rejected_origin(self, secret, registry, rate_limiter, mock_session, no_sleep):
        settings = OrchestratorSettings(cron_secret=secret, allowed_origins=["76.76.21.21"])
        app = create_app(settings=settings, registry=registry, rate_limiter=rate_limiter, session=mock_session, sleep=no_sleep)

        response = TestClient(app).get(ORCHESTRATOR_PATH, headers=self.signed_headers(secret, origin="10.1.1.1"))

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_non_utf8_body_is_unauthorized(self, client, secret, rate_limiter, caplog):
        """Undecodable bodies go through the pipeline and get the same 401."""
        headers = self.signed_headers(secret, origin="192.0.2.44")

        with caplog.at_level("ERROR", logger="CronHalo.security.auth"):
            response = client.request("GET", ORCHESTRATOR_PATH, headers=headers, content=b"\xff\xfe")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert rate_limiter.attempts("192.0.2.44") == 1
        assert "192.0.2.44" in caplog.text

    def test_unexpected_failure_is_500(self, client, secret):
        orchestrator = client.app.state.orchestrator
        with patch.object(orchestrator, "run", side_effect=RuntimeError("boom")):
            response = client.get(ORCHESTRATOR_PATH, headers=self.signed_headers(secret))

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Orchestrator failed"
        assert body["message"] == "boom"
        assert isinstance(body["duration"], int)

    def test_server_keeps_serving_after_500(self, client, secret):
        orchestrator = client.app.state.orchestrator
        with patch.object(orchestrator, "run", side_effect=RuntimeError("boom")):
            client.get(ORCHESTRATOR_PATH, headers=self.signed_headers(secret))

        assert self.run_at(client, secret, 3).status_code == 200

    def test_response_never_contains_secret(self, client, secret):
        response = self.run_at(client, secret, 2)
        assert secret not in response.text
