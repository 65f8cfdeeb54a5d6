import asyncio
import html
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import (
    DISPATCHABLE_JOB_STATES,
    NotificationJob,
    NotificationJobState,
)
from app.templates.document_expiry_template import (
    document_expiry_html_template,
    document_expiry_subject_template,
    document_expiry_text_template,
    document_expiry_urgency_colors,
    email_test_html_template,
    email_test_subject_template,
    email_test_text_template,
)
from app.utils.datetime_utils import business_date, naive_utc_now
from app.utils.errors import NotFoundError
from app.utils.logging import get_logger

from .job_store import NotificationJobStore
from .mail_transport import MailTransport, SendResult

logger = get_logger()

URGENT_WITHIN_DAYS = 7


class DispatchOutcome(str, Enum):
    SENT = "sent"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DispatchResult:
    sent_count: int = 0
    failed_count: int = 0
    retry_count: int = 0
    skipped_count: int = 0
    errors: List[str] = field(default_factory=list)

    def record(self, outcome: DispatchOutcome) -> None:
        if outcome == DispatchOutcome.SENT:
            self.sent_count += 1
        elif outcome == DispatchOutcome.RETRY:
            self.retry_count += 1
        elif outcome == DispatchOutcome.FAILED:
            self.failed_count += 1
        else:
            self.skipped_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "retry_count": self.retry_count,
            "skipped_count": self.skipped_count,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str
    html_body: str


def render_document_expiry_message(
    document_summary: Dict[str, Any], today: date
) -> RenderedMessage:
    """
    Build the expiry alert for a job's captured document summary.

    The day count is relative to the send date, so a retried job reports the
    time actually remaining rather than the time at creation.
    """
    machine_number = str(document_summary.get("machine_number") or "N/A")
    machine_name = str(document_summary.get("machine_name") or "N/A")
    document_type = str(document_summary.get("document_type") or "document")
    expiry_raw = document_summary.get("expiry_date")

    days_until_expiry: Optional[int] = None
    expiry_text = "N/A"
    if expiry_raw:
        try:
            expiry_date = date.fromisoformat(expiry_raw)
            days_until_expiry = (expiry_date - today).days
            expiry_text = expiry_date.strftime("%d/%m/%Y")
        except (TypeError, ValueError):
            expiry_text = str(expiry_raw)

    if days_until_expiry is None:
        urgency = "upcoming"
        status_line = "This document is approaching its expiry date."
    elif days_until_expiry <= 0:
        urgency = "expired"
        status_line = "This document has EXPIRED!"
    else:
        urgency = "urgent" if days_until_expiry <= URGENT_WITHIN_DAYS else "upcoming"
        unit = "day" if days_until_expiry == 1 else "days"
        status_line = f"This document expires in {days_until_expiry} {unit}!"

    urgency_color, background_color = document_expiry_urgency_colors[urgency]

    subject = document_expiry_subject_template.format(
        machine_number=machine_number, document_type=document_type
    )
    body = document_expiry_text_template.format(
        machine_number=machine_number,
        machine_name=machine_name,
        document_type=document_type,
        expiry_date=expiry_text,
        status_line=status_line,
    )
    html_body = document_expiry_html_template.format(
        machine_number=html.escape(machine_number),
        machine_name=html.escape(machine_name),
        document_type=html.escape(document_type),
        expiry_date=html.escape(expiry_text),
        status_line=html.escape(status_line),
        urgency_color=urgency_color,
        background_color=background_color,
    )
    return RenderedMessage(subject=subject, body=body, html_body=html_body)


def render_email_test_message(
    admin_emails: List[str], from_address: str, sent_at: datetime
) -> RenderedMessage:
    """Message sent by the admin email check to confirm delivery end to end"""
    fields = {
        "timestamp": sent_at.strftime("%d/%m/%Y %H:%M:%S UTC"),
        "from_address": from_address or "N/A",
        "admin_emails": ", ".join(admin_emails) or "N/A",
    }
    return RenderedMessage(
        subject=email_test_subject_template,
        body=email_test_text_template.format(**fields),
        html_body=email_test_html_template.format(
            **{key: html.escape(value) for key, value in fields.items()}
        ),
    )


def _parse_recipients(recipient_snapshot: str) -> List[str]:
    return [
        address.strip()
        for address in (recipient_snapshot or "").split(",")
        if address.strip()
    ]


def _parse_document_summary(job: NotificationJob) -> Dict[str, Any]:
    try:
        summary = json.loads(job.document_snapshot or "{}")
    except ValueError:
        summary = {}
    if not isinstance(summary, dict):
        summary = {}
    summary.setdefault("document_id", job.document_id)
    return summary


class NotificationDispatcher:
    """
    Sends due notification jobs and records the outcome.

    Each job is claimed with a compare-and-set before sending, so two
    dispatchers (or a dispatcher and an operator retry) never send the same
    job concurrently. A lost claim is a skip.
    """

    def __init__(
        self,
        db_session: Session,
        transport: MailTransport,
        max_retries: int,
        send_timeout_seconds: float,
        business_timezone: str,
    ):
        self.db = db_session
        self.job_store = NotificationJobStore(db_session)
        self.transport = transport
        self.max_retries = max_retries
        self.send_timeout_seconds = send_timeout_seconds
        self.business_timezone = business_timezone

    async def dispatch_pending(self, batch_limit: int) -> DispatchResult:
        result = DispatchResult()
        jobs = await self.job_store.list_dispatchable(batch_limit)

        for job in jobs:
            job_id = job.id
            try:
                outcome = await self._dispatch(job)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.bind(job_id=job_id).error(
                    f"Persistence error while dispatching job {job_id}: {e}"
                )
                result.errors.append(f"job {job_id}: {e}")
                outcome = DispatchOutcome.SKIPPED
            result.record(outcome)

        if jobs:
            logger.info(
                f"Dispatched {len(jobs)} notification jobs: "
                f"sent={result.sent_count} retry={result.retry_count} "
                f"failed={result.failed_count} skipped={result.skipped_count}"
            )
        return result

    async def dispatch_job(self, job_id: int) -> DispatchOutcome:
        """Run a single job through claim, send and record, outside a batch"""
        job = await self.job_store.get_job(job_id)
        if not job:
            raise NotFoundError(
                f"Notification job {job_id} not found", error_code="JOB_NOT_FOUND"
            )

        if job.state not in DISPATCHABLE_JOB_STATES:
            logger.bind(job_id=job_id).info(
                f"Job {job_id} is {job.state.value}, nothing to dispatch"
            )
            return DispatchOutcome.SKIPPED

        return await self._dispatch(job)

    async def _dispatch(self, job: NotificationJob) -> DispatchOutcome:
        job_id = job.id
        expected_state = job.state
        recipients = _parse_recipients(job.recipient_snapshot)
        document_summary = _parse_document_summary(job)
        log = logger.bind(
            job_id=job_id,
            document_id=job.document_id,
            threshold_days=job.threshold_days,
        )

        if not await self.job_store.claim(job_id, expected_state, naive_utc_now()):
            log.info(f"Job {job_id} was claimed elsewhere, skipping")
            return DispatchOutcome.SKIPPED

        now = naive_utc_now()
        message = render_document_expiry_message(
            document_summary, business_date(now, self.business_timezone)
        )
        send_result = await self.send_message(recipients, message)
        finished_at = naive_utc_now()

        if send_result.success:
            await self.job_store.mark_sent(job_id, finished_at)
            log.info(f"Sent expiry notification for job {job_id}")
            return DispatchOutcome.SENT

        new_state = await self.job_store.mark_failure(
            job_id, send_result.error or "Unknown error", self.max_retries, finished_at
        )
        if new_state == NotificationJobState.FAILED:
            log.error(
                f"Job {job_id} failed permanently after max retries: {send_result.error}"
            )
            return DispatchOutcome.FAILED
        if new_state == NotificationJobState.RETRY_ELIGIBLE:
            log.warning(f"Job {job_id} failed, will retry: {send_result.error}")
            return DispatchOutcome.RETRY

        log.warning(f"Job {job_id} left in-flight state before its failure was recorded")
        return DispatchOutcome.SKIPPED

    async def send_message(
        self, recipients: List[str], message: RenderedMessage
    ) -> SendResult:
        """Send through the transport under the per-send timeout; never raises"""
        if not recipients:
            return SendResult(success=False, error="No recipients configured")

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.transport.send,
                    recipients,
                    message.subject,
                    message.body,
                    message.html_body,
                ),
                timeout=self.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return SendResult(
                success=False,
                error=f"Send timed out after {self.send_timeout_seconds} seconds",
            )
        except Exception as e:
            return SendResult(success=False, error=f"{type(e).__name__}: {e}")
