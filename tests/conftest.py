import json
import time
from datetime import date, datetime, timedelta, timezone
from typing import Generator, List, Optional

import pytest
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import (
    DocumentNotificationSetting,
    DocumentType,
    Machine,
    MachineDocument,
    NotificationJob,
    NotificationJobState,
)
from app.db.db import create_tables
from app.db.session import build_engine
from app.services.document_expiry import (
    DocumentExpirySupervisor,
    MailTransport,
    NotificationDefaults,
    NotificationPolicyResolver,
    SendResult,
)

# 12:00 in Asia/Kolkata on 10 Jan 2025
FIXED_NOW = datetime(2025, 1, 10, 6, 30, tzinfo=timezone.utc)
ADMIN_EMAILS = ["admin@rental.example"]


class FakeMailTransport(MailTransport):
    """In-memory transport that records sends and can be told to fail"""

    def __init__(self, fail_next: int = 0, always_fail: bool = False, delay: float = 0.0):
        self.fail_next = fail_next
        self.always_fail = always_fail
        self.delay = delay
        self.error = "451 Temporary local problem"
        self.connection_ok = True
        self.calls = 0
        self.sent: List[dict] = []

    def send(self, recipients, subject, body, html_body=None) -> SendResult:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)

        if self.always_fail:
            return SendResult(success=False, error=self.error)
        if self.fail_next > 0:
            self.fail_next -= 1
            return SendResult(success=False, error=self.error)

        self.sent.append(
            {
                "recipients": list(recipients),
                "subject": subject,
                "body": body,
                "html_body": html_body,
            }
        )
        return SendResult(success=True)

    def verify_connection(self) -> bool:
        return self.connection_ok


# Test database setup
@pytest.fixture
def test_engine(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits."""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def defaults() -> NotificationDefaults:
    return NotificationDefaults([30, 7, 1])


@pytest.fixture
def resolver(defaults) -> NotificationPolicyResolver:
    return NotificationPolicyResolver(defaults)


@pytest.fixture
def transport() -> FakeMailTransport:
    return FakeMailTransport()


@pytest.fixture
def supervisor(session_factory, transport, defaults) -> Generator[DocumentExpirySupervisor, None, None]:
    supervisor = DocumentExpirySupervisor(
        session_factory=session_factory,
        transport=transport,
        defaults=defaults,
        tick_interval_seconds=3600,
        run_on_start=False,
        max_retries=3,
        send_timeout_seconds=2.0,
        batch_size=25,
        admin_emails=ADMIN_EMAILS,
        business_timezone="Asia/Kolkata",
        clock=lambda: FIXED_NOW,
    )
    yield supervisor
    supervisor.stop(timeout=5)


# Test data factories
@pytest.fixture
def sample_machine(db_session: Session) -> Machine:
    """Create an active machine with a responsible contact."""
    machine = Machine(
        machine_number="CM-001",
        name="Concrete Mixer 1",
        is_active=True,
        contact_name="Site Supervisor",
        contact_email="site@rental.example",
    )
    db_session.add(machine)
    db_session.commit()
    db_session.refresh(machine)
    return machine


@pytest.fixture
def make_machine(db_session: Session):
    counter = {"value": 100}

    def _make_machine(
        contact_email: Optional[str] = None, is_active: bool = True
    ) -> Machine:
        counter["value"] += 1
        machine = Machine(
            machine_number=f"CM-{counter['value']}",
            name=f"Concrete Mixer {counter['value']}",
            is_active=is_active,
            contact_email=contact_email,
        )
        db_session.add(machine)
        db_session.commit()
        db_session.refresh(machine)
        return machine

    return _make_machine


@pytest.fixture
def make_document(db_session: Session, sample_machine: Machine):
    def _make_document(
        expiry_date: date,
        machine: Optional[Machine] = None,
        document_type: DocumentType = DocumentType.INSURANCE,
        override_days: Optional[List[int]] = None,
        notifications_enabled: bool = True,
        is_active: bool = True,
    ) -> MachineDocument:
        document = MachineDocument(
            machine_id=(machine or sample_machine).id,
            document_type=document_type,
            expiry_date=expiry_date,
            notifications_enabled=notifications_enabled,
            is_active=is_active,
        )
        for days in override_days or []:
            document.notification_settings.append(
                DocumentNotificationSetting(days_before=days, is_active=True)
            )
        db_session.add(document)
        db_session.commit()
        db_session.refresh(document)
        return document

    return _make_document


@pytest.fixture
def make_job(db_session: Session):
    def _make_job(
        document_id: int,
        threshold_days: int,
        state: NotificationJobState = NotificationJobState.PENDING,
        attempt_count: int = 0,
        last_attempt_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        expiry_date: date = date(2025, 1, 20),
        recipients: str = "site@rental.example",
    ) -> NotificationJob:
        created = created_at or datetime(2025, 1, 1, 9, 0)
        job = NotificationJob(
            document_id=document_id,
            threshold_days=threshold_days,
            state=state,
            scheduled_for=expiry_date - timedelta(days=threshold_days),
            attempt_count=attempt_count,
            last_attempt_at=last_attempt_at,
            recipient_snapshot=recipients,
            document_snapshot=json.dumps(
                {
                    "document_id": document_id,
                    "machine_number": "CM-001",
                    "machine_name": "Concrete Mixer 1",
                    "document_type": "insurance",
                    "expiry_date": expiry_date.isoformat(),
                }
            ),
            created_at=created,
            updated_at=created,
        )
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job

    return _make_job

