from datetime import date

import pytest
from fastapi.testclient import TestClient

from app.db.models import NotificationJobState
from app.db.session import get_sync_session
from app.main import create_application
from app.routers.admin import email as email_routes


@pytest.fixture
def client(supervisor, session_factory):
    """Client over a fresh app; the lifespan is not run so nothing starts on its own."""
    application = create_application()
    application.state.document_expiry_supervisor = supervisor

    def override_sync_session():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_sync_session] = override_sync_session
    return TestClient(application)


class TestEmailRoutes:
    """Test the scheduler admin endpoints."""

    def test_stats_use_response_envelope(self, client, make_document, make_job):
        document = make_document(date(2025, 1, 20))
        make_job(document.id, 30, state=NotificationJobState.SENT, attempt_count=1)

        response = client.get("/api/admin/email/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "success"
        assert body["data"]["sent"] == 1
        assert body["data"]["total"] == 1
        assert "X-Request-ID" in response.headers

    def test_recent_jobs_respects_limit(self, client, make_document, make_job):
        document = make_document(date(2025, 1, 20))
        make_job(document.id, 30)
        make_job(document.id, 7)

        response = client.get("/api/admin/email/jobs", params={"limit": 1})

        assert response.status_code == 200
        jobs = response.json()["data"]
        assert len(jobs) == 1
        assert jobs[0]["documentId"] == document.id
        assert jobs[0]["state"] == "pending"

    def test_recent_jobs_rejects_bad_limit(self, client):
        response = client.get("/api/admin/email/jobs", params={"limit": 0})

        assert response.status_code == 422
        assert response.json()["meta"]["error_code"] == "VALIDATION_ERROR"

    def test_retry_failed_job(self, client, make_document, make_job):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30, state=NotificationJobState.FAILED, attempt_count=3)

        response = client.post(f"/api/admin/email/jobs/{job.id}/retry")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["outcome"] == "sent"
        assert data["job"]["attemptCount"] == 4
        assert data["job"]["state"] == "sent"

    def test_retry_non_failed_job_is_conflict(self, client, make_document, make_job):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)

        response = client.post(f"/api/admin/email/jobs/{job.id}/retry")

        assert response.status_code == 409
        assert response.json()["meta"]["error_code"] == "JOB_NOT_FAILED"

    def test_retry_unknown_job_is_not_found(self, client):
        response = client.post("/api/admin/email/jobs/777/retry")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_scan_runs_a_tick(self, client, transport, make_document):
        make_document(date(2025, 1, 5))

        response = client.post("/api/admin/email/scan")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["trigger"] == "manual"
        assert data["scan"]["created_count"] == 3
        assert data["dispatch"]["sent_count"] == 3

    def test_email_setup_sends_test_message(self, client, transport):
        response = client.post("/api/admin/email/test")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["success"] is True
        assert data["connection_verified"] is True
        assert data["recipients"] == ["admin@rental.example"]
        [sent] = transport.sent
        assert sent["recipients"] == ["admin@rental.example"]
        assert sent["subject"] == "Email Configuration Test - Rental Back Office"

    def test_email_setup_reports_connection_failure(self, client, transport):
        transport.connection_ok = False

        response = client.post("/api/admin/email/test")

        assert response.status_code == 502
        body = response.json()
        assert body["meta"]["error_code"] == "EMAIL_TEST_FAILED"
        assert body["data"]["connection_verified"] is False
        assert transport.sent == []

    def test_scheduler_start_and_stop(self, client):
        started = client.post("/api/admin/email/scheduler/start")
        assert started.json()["data"]["running"] is True

        again = client.post("/api/admin/email/scheduler/start")
        assert again.json()["message"] == "Scheduler was already running"

        stopped = client.post("/api/admin/email/scheduler/stop")
        assert stopped.json()["data"]["running"] is False

        status = client.get("/api/admin/email/scheduler")
        assert status.json()["data"]["running"] is False

    def test_scheduler_lifecycle_runs_in_threadpool(self, client, monkeypatch):
        calls = []

        async def recording_threadpool(func, *args, **kwargs):
            calls.append(func.__name__)
            return func(*args, **kwargs)

        monkeypatch.setattr(email_routes, "run_in_threadpool", recording_threadpool)

        client.post("/api/admin/email/scheduler/start")
        client.post("/api/admin/email/scheduler/stop")

        assert calls == ["start", "stop"]

    def test_defaults_roundtrip(self, client):
        response = client.put("/api/admin/email/defaults", json={"thresholds": [1, 14]})

        assert response.status_code == 200
        assert response.json()["data"]["thresholds"] == [14, 1]
        assert client.get("/api/admin/email/defaults").json()["data"]["thresholds"] == [14, 1]

    @pytest.mark.parametrize("thresholds", [[], [5, -3], ["soon"]])
    def test_invalid_defaults_are_rejected(self, client, thresholds):
        response = client.put(
            "/api/admin/email/defaults", json={"thresholds": thresholds}
        )

        assert response.status_code == 400
        assert response.json()["meta"]["error_code"] == "CONFIG_ERROR"
        assert client.get("/api/admin/email/defaults").json()["data"]["thresholds"] == [
            30,
            7,
            1,
        ]


class TestDocumentRoutes:
    """Test per-document notification endpoints."""

    def test_replace_and_read_overrides(self, client, make_document):
        document = make_document(date(2025, 3, 1), override_days=[10])

        before = client.get(f"/api/admin/documents/{document.id}/notifications")
        assert before.json()["data"]["thresholds"] == [10]

        response = client.put(
            f"/api/admin/documents/{document.id}/notifications",
            json={"enabled": True, "thresholds": [3, 10, 21]},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["thresholds"] == [21, 10, 3]
        assert data["usesDefaults"] is False

    def test_empty_overrides_fall_back_to_defaults(self, client, make_document):
        document = make_document(date(2025, 3, 1), override_days=[10])

        response = client.put(
            f"/api/admin/documents/{document.id}/notifications",
            json={"thresholds": []},
        )

        assert response.json()["data"]["usesDefaults"] is True

    def test_unknown_document_is_not_found(self, client):
        response = client.get("/api/admin/documents/999/notifications")

        assert response.status_code == 404
        assert response.json()["meta"]["error_code"] == "DOCUMENT_NOT_FOUND"

    def test_notification_history(self, client, make_document, make_job):
        document = make_document(date(2025, 1, 20))
        make_job(document.id, 30, state=NotificationJobState.SENT, attempt_count=1)

        response = client.get(f"/api/admin/documents/{document.id}/notification-history")

        assert response.status_code == 200
        [job] = response.json()["data"]
        assert job["thresholdDays"] == 30
        assert job["state"] == "sent"


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "healthy"
