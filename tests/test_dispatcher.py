import smtplib

import pytest
from datetime import date

from app.db.models import NotificationJobState
from app.services.document_expiry import (
    DispatchOutcome,
    NotificationDispatcher,
    NotificationJobStore,
    SendResult,
    SmtpMailTransport,
    render_document_expiry_message,
)
from app.utils.errors import BusinessLogicError, NotFoundError


def _dispatcher(db_session, transport, send_timeout_seconds: float = 2.0):
    return NotificationDispatcher(
        db_session,
        transport=transport,
        max_retries=3,
        send_timeout_seconds=send_timeout_seconds,
        business_timezone="Asia/Kolkata",
    )


class TestDispatchPending:
    """Test batch dispatch of pending jobs."""

    @pytest.mark.asyncio
    async def test_successful_send_marks_job_sent(
        self, db_session, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)

        result = await _dispatcher(db_session, transport).dispatch_pending(25)

        assert result.sent_count == 1
        assert result.failed_count == 0
        assert transport.sent[0]["recipients"] == ["site@rental.example"]
        assert transport.sent[0]["subject"] == "Document Expiry Alert - CM-001 (insurance)"

        sent = await NotificationJobStore(db_session).get_job(job.id)
        assert sent.state == NotificationJobState.SENT
        assert sent.attempt_count == 1
        assert sent.sent_at is not None

    @pytest.mark.asyncio
    async def test_failed_send_becomes_retry_eligible(
        self, db_session, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)
        transport.fail_next = 1

        result = await _dispatcher(db_session, transport).dispatch_pending(25)

        assert result.retry_count == 1
        retried = await NotificationJobStore(db_session).get_job(job.id)
        assert retried.state == NotificationJobState.RETRY_ELIGIBLE
        assert retried.attempt_count == 1
        assert retried.last_error == "451 Temporary local problem"

    @pytest.mark.asyncio
    async def test_job_fails_permanently_at_retry_ceiling(
        self, db_session, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)
        transport.always_fail = True
        dispatcher = _dispatcher(db_session, transport)

        outcomes = []
        for _ in range(4):
            result = await dispatcher.dispatch_pending(25)
            outcomes.append((result.retry_count, result.failed_count))

        assert outcomes == [(1, 0), (1, 0), (0, 1), (0, 0)]
        assert transport.calls == 3

        failed = await NotificationJobStore(db_session).get_job(job.id)
        assert failed.state == NotificationJobState.FAILED
        assert failed.attempt_count == 3

    @pytest.mark.asyncio
    async def test_send_timeout_is_a_failure(
        self, db_session, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)
        transport.delay = 0.5

        result = await _dispatcher(
            db_session, transport, send_timeout_seconds=0.05
        ).dispatch_pending(25)

        assert result.retry_count == 1
        timed_out = await NotificationJobStore(db_session).get_job(job.id)
        assert "timed out" in timed_out.last_error

    @pytest.mark.asyncio
    async def test_transport_exception_is_a_failure(
        self, db_session, transport, make_document, make_job, monkeypatch
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)

        def exploding_send(*args, **kwargs):
            raise ConnectionResetError("connection reset by peer")

        monkeypatch.setattr(transport, "send", exploding_send)

        result = await _dispatcher(db_session, transport).dispatch_pending(25)

        assert result.retry_count == 1
        broken = await NotificationJobStore(db_session).get_job(job.id)
        assert "ConnectionResetError" in broken.last_error

    @pytest.mark.asyncio
    async def test_job_without_recipients_fails_visibly(
        self, db_session, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30, recipients="")

        result = await _dispatcher(db_session, transport).dispatch_pending(25)

        assert result.retry_count == 1
        assert transport.calls == 0
        assert (
            await NotificationJobStore(db_session).get_job(job.id)
        ).last_error == "No recipients configured"

    @pytest.mark.asyncio
    async def test_lost_claim_is_skipped_without_sending(
        self, db_session, session_factory, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        make_job(document.id, 30)
        dispatcher = _dispatcher(db_session, transport)
        [job] = await dispatcher.job_store.list_dispatchable(25)

        # Another dispatcher claims the job after this one listed it
        other_session = session_factory()
        try:
            assert await NotificationJobStore(other_session).claim(
                job.id, NotificationJobState.PENDING, job.created_at
            )
        finally:
            other_session.close()

        outcome = await dispatcher._dispatch(job)

        assert outcome == DispatchOutcome.SKIPPED
        assert transport.calls == 0


class TestDispatchJob:
    """Test single-job dispatch and operator retry."""

    @pytest.mark.asyncio
    async def test_dispatch_job_unknown_id_raises(self, db_session, transport):
        with pytest.raises(NotFoundError):
            await _dispatcher(db_session, transport).dispatch_job(9999)

    @pytest.mark.asyncio
    async def test_dispatch_job_skips_terminal_jobs(
        self, db_session, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30, state=NotificationJobState.SENT, attempt_count=1)

        outcome = await _dispatcher(db_session, transport).dispatch_job(job.id)

        assert outcome == DispatchOutcome.SKIPPED
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_manual_retry_keeps_attempt_history(
        self, db_session, supervisor, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)
        transport.always_fail = True
        dispatcher = _dispatcher(db_session, transport)
        for _ in range(3):
            await dispatcher.dispatch_pending(25)

        transport.always_fail = False
        result = await supervisor.retry_job(job.id)

        assert result["outcome"] == DispatchOutcome.SENT
        assert result["job"].state == NotificationJobState.SENT
        assert result["job"].attempt_count == 4

    @pytest.mark.asyncio
    async def test_manual_retry_that_fails_returns_to_failed(
        self, supervisor, transport, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30, state=NotificationJobState.FAILED, attempt_count=3)
        transport.always_fail = True

        result = await supervisor.retry_job(job.id)

        assert result["outcome"] == DispatchOutcome.FAILED
        assert result["job"].attempt_count == 4

    @pytest.mark.asyncio
    async def test_manual_retry_rejects_non_failed_jobs(
        self, supervisor, make_document, make_job
    ):
        document = make_document(date(2025, 1, 20))
        job = make_job(document.id, 30)

        with pytest.raises(BusinessLogicError):
            await supervisor.retry_job(job.id)

    @pytest.mark.asyncio
    async def test_manual_retry_unknown_job(self, supervisor):
        with pytest.raises(NotFoundError):
            await supervisor.retry_job(4242)


class TestRenderMessage:
    """Test expiry alert rendering."""

    def test_upcoming_document(self):
        message = render_document_expiry_message(
            {
                "machine_number": "CM-001",
                "machine_name": "Mixer <A>",
                "document_type": "fitness",
                "expiry_date": "2025-01-20",
            },
            date(2025, 1, 10),
        )

        assert message.subject == "Document Expiry Alert - CM-001 (fitness)"
        assert "expires in 10 days" in message.body
        assert "20/01/2025" in message.body
        assert "Mixer &lt;A&gt;" in message.html_body

    def test_expired_document(self):
        message = render_document_expiry_message(
            {"machine_number": "CM-001", "document_type": "insurance", "expiry_date": "2025-01-05"},
            date(2025, 1, 10),
        )

        assert "has EXPIRED" in message.body
        assert "Machine Name: N/A" in message.body

    def test_one_day_left_is_singular(self):
        message = render_document_expiry_message(
            {"machine_number": "CM-001", "document_type": "insurance", "expiry_date": "2025-01-11"},
            date(2025, 1, 10),
        )

        assert "expires in 1 day!" in message.body


class FakeSmtp:
    """Stands in for smtplib.SMTP and records the conversation"""

    instances = []
    refuse_login = False

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.commands = []
        FakeSmtp.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.commands.append("quit")

    def starttls(self):
        self.commands.append("starttls")

    def login(self, username, password):
        if FakeSmtp.refuse_login:
            raise smtplib.SMTPAuthenticationError(535, b"Authentication failed")
        self.commands.append("login")

    def noop(self):
        self.commands.append("noop")

    def send_message(self, message):
        self.commands.append(("send", message["To"], message["Subject"]))

    def close(self):
        self.commands.append("close")


class TestSmtpMailTransport:
    """Test the SMTP transport against a stand-in server."""

    @pytest.fixture(autouse=True)
    def fake_smtp(self, monkeypatch):
        FakeSmtp.instances = []
        FakeSmtp.refuse_login = False
        monkeypatch.setattr(smtplib, "SMTP", FakeSmtp)

    def _transport(self):
        return SmtpMailTransport(
            host="smtp.rental.example",
            port=587,
            from_address="alerts@rental.example",
            username="alerts",
            password="secret",
            timeout=5.0,
        )

    def test_verify_connection_opens_an_authenticated_session(self):
        assert self._transport().verify_connection() is True

        [server] = FakeSmtp.instances
        assert server.timeout == 5.0
        assert server.commands == ["starttls", "login", "noop", "quit"]

    def test_verify_connection_reports_rejected_credentials(self):
        FakeSmtp.refuse_login = True

        assert self._transport().verify_connection() is False
        assert FakeSmtp.instances[0].commands == ["starttls", "close"]

    def test_send_delivers_one_message_to_all_recipients(self):
        result = self._transport().send(
            ["a@rental.example", "b@rental.example"], "Subject", "Body", "<p>Body</p>"
        )

        assert result == SendResult(success=True)
        assert ("send", "a@rental.example, b@rental.example", "Subject") in (
            FakeSmtp.instances[0].commands
        )

    def test_send_failure_is_returned_not_raised(self):
        FakeSmtp.refuse_login = True

        result = self._transport().send(["a@rental.example"], "Subject", "Body")

        assert result.success is False
        assert result.error.startswith("SMTPAuthenticationError")
