import asyncio
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from fastapi import Request
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import NotificationJob, NotificationJobState
from app.db.session import SessionLocal
from app.utils.context import request_id_scope
from app.utils.datetime_utils import naive_utc_now, utc_now
from app.utils.errors import BusinessLogicError, NotFoundError
from app.utils.logging import get_logger

from .dispatcher import (
    DispatchOutcome,
    DispatchResult,
    NotificationDispatcher,
    render_email_test_message,
)
from .job_store import NotificationJobStore
from .mail_transport import MailTransport, SmtpMailTransport
from .notification_defaults import (
    NotificationDefaults,
    NotificationDefaultsRepository,
    normalize_thresholds,
)
from .policy_resolver import NotificationPolicyResolver
from .scan_engine import DocumentScanEngine, ScanResult

logger = get_logger()


@dataclass
class TickReport:
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    scan: Optional[ScanResult] = None
    dispatch: Optional[DispatchResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scan": self.scan.to_dict() if self.scan else None,
            "dispatch": self.dispatch.to_dict() if self.dispatch else None,
            "error": self.error,
        }


class DocumentExpirySupervisor:
    """
    Owns the periodic scan-then-dispatch cycle for document expiry alerts.

    One instance per process. The periodic loop runs on a daemon thread and
    each tick opens its own database session; operator actions use separate
    sessions and rely on the job store's compare-and-set claims, so they can
    run while a tick is in progress.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        transport: MailTransport,
        defaults: NotificationDefaults,
        tick_interval_seconds: float,
        run_on_start: bool = True,
        max_retries: int = 3,
        send_timeout_seconds: float = 30.0,
        batch_size: int = 25,
        admin_emails: Sequence[str] = (),
        business_timezone: str = "Asia/Kolkata",
        clock: Callable[[], datetime] = utc_now,
    ):
        if tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be positive")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.session_factory = session_factory
        self.transport = transport
        self.defaults = defaults
        self.resolver = NotificationPolicyResolver(defaults)
        self.tick_interval_seconds = tick_interval_seconds
        self.run_on_start = run_on_start
        self.max_retries = max_retries
        self.send_timeout_seconds = send_timeout_seconds
        self.batch_size = batch_size
        self.admin_emails = list(admin_emails)
        self.business_timezone = business_timezone
        self.clock = clock

        self._lifecycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._tick_count = 0
        self._last_tick: Optional[TickReport] = None

    @classmethod
    def from_settings(
        cls,
        session_factory: Callable[[], Session] = SessionLocal,
        transport: Optional[MailTransport] = None,
    ) -> "DocumentExpirySupervisor":
        return cls(
            session_factory=session_factory,
            transport=transport or SmtpMailTransport.from_settings(),
            defaults=NotificationDefaults(settings.DEFAULT_NOTIFICATION_THRESHOLDS),
            tick_interval_seconds=settings.DOCUMENT_EXPIRY_TICK_INTERVAL_SECONDS,
            run_on_start=settings.DOCUMENT_EXPIRY_RUN_ON_START,
            max_retries=settings.NOTIFICATION_MAX_RETRIES,
            send_timeout_seconds=settings.NOTIFICATION_SEND_TIMEOUT_SECONDS,
            batch_size=settings.NOTIFICATION_DISPATCH_BATCH_SIZE,
            admin_emails=settings.ADMIN_EMAILS,
            business_timezone=settings.BUSINESS_TIMEZONE,
        )

    # Lifecycle

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return (
            thread is not None
            and thread.is_alive()
            and not self._stop_event.is_set()
        )

    def start(self) -> bool:
        """Start the periodic loop. Returns False if it was already running."""
        with self._lifecycle_lock:
            if self.is_running:
                return False

            previous = self._thread
            if previous is not None and previous.is_alive():
                # A stopped loop still finishing its tick; only one loop may run
                logger.info("Waiting for the previous supervisor loop to finish")
                previous.join()

            # Each loop owns its event so a restart can never revive an old loop
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="document-expiry-supervisor",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            f"Document expiry supervisor started (interval={self.tick_interval_seconds}s)"
        )
        return True

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop the periodic loop and wait for a tick in progress to finish.
        Returns False if it was not running.
        """
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None or self._stop_event.is_set():
                return False

            self._stop_event.set()
            thread.join(timeout)
            if thread.is_alive():
                # Kept so the next start() waits for this loop instead of racing it
                logger.warning(
                    "Document expiry supervisor is stopping; a tick is still in progress"
                )
                return True

            self._thread = None

        logger.info("Document expiry supervisor stopped")
        return True

    def _run_loop(self, stop_event: threading.Event) -> None:
        if self.run_on_start and not stop_event.is_set():
            self._run_scheduled_tick()

        while not stop_event.wait(self.tick_interval_seconds):
            self._run_scheduled_tick()

    def _run_scheduled_tick(self) -> None:
        with request_id_scope(f"tick-{uuid.uuid4().hex[:12]}"):
            try:
                asyncio.run(self.run_tick("scheduled"))
            except Exception as e:
                # run_tick records its own failures; this only guards the loop
                get_logger().error(f"Document expiry tick crashed: {e}")

    # Ticks

    def _build_dispatcher(self, db_session: Session) -> NotificationDispatcher:
        return NotificationDispatcher(
            db_session,
            transport=self.transport,
            max_retries=self.max_retries,
            send_timeout_seconds=self.send_timeout_seconds,
            business_timezone=self.business_timezone,
        )

    async def run_tick(self, trigger: str = "scheduled") -> TickReport:
        """Scan for due thresholds, then dispatch pending jobs"""
        log = get_logger().bind(trigger=trigger)
        now = self.clock()
        report = TickReport(trigger=trigger, started_at=now)
        db_session = self.session_factory()

        try:
            scan_engine = DocumentScanEngine(
                db_session,
                resolver=self.resolver,
                admin_emails=self.admin_emails,
                business_timezone=self.business_timezone,
            )
            report.scan = await scan_engine.scan(now)

            dispatcher = self._build_dispatcher(db_session)
            report.dispatch = await dispatcher.dispatch_pending(self.batch_size)
        except Exception as e:
            db_session.rollback()
            report.error = str(e)
            log.error(f"Document expiry tick failed: {e}")
        finally:
            db_session.close()

        report.finished_at = self.clock()
        with self._state_lock:
            self._tick_count += 1
            self._last_tick = report

        if not report.error:
            log.info(
                f"Document expiry tick completed: "
                f"created={report.scan.created_count} sent={report.dispatch.sent_count} "
                f"retry={report.dispatch.retry_count} failed={report.dispatch.failed_count}"
            )
        return report

    async def trigger_scan_now(self) -> TickReport:
        return await self.run_tick("manual")

    # Operator actions

    async def retry_job(self, job_id: int) -> Dict[str, Any]:
        """
        Put a failed job back in play and send it right away.

        The attempt count is kept, so the job's history shows every attempt
        including the manual one.
        """
        db_session = self.session_factory()
        try:
            job_store = NotificationJobStore(db_session)
            job = await job_store.get_job(job_id)
            if not job:
                raise NotFoundError(
                    f"Notification job {job_id} not found", error_code="JOB_NOT_FOUND"
                )
            if job.state != NotificationJobState.FAILED:
                raise BusinessLogicError(
                    f"Only failed jobs can be retried, job {job_id} is {job.state.value}",
                    error_code="JOB_NOT_FAILED",
                )

            if not await job_store.reset_for_retry(job_id, naive_utc_now()):
                raise BusinessLogicError(
                    f"Job {job_id} changed state before it could be retried",
                    error_code="JOB_STATE_CHANGED",
                )

            logger.bind(job_id=job_id).info(f"Manual retry requested for job {job_id}")
            outcome: DispatchOutcome = await self._build_dispatcher(
                db_session
            ).dispatch_job(job_id)
            job = await job_store.get_job(job_id)
        finally:
            db_session.close()

        return {"outcome": outcome, "job": job}

    async def get_job_stats(self) -> Dict[str, int]:
        db_session = self.session_factory()
        try:
            counts = await NotificationJobStore(db_session).count_by_state()
        finally:
            db_session.close()

        stats = {state.value: counts.get(state, 0) for state in NotificationJobState}
        stats["total"] = sum(counts.values())
        return stats

    async def get_recent_jobs(self, limit: int = 50) -> List[NotificationJob]:
        if limit < 1:
            raise ValueError("limit must be at least 1")

        db_session = self.session_factory()
        try:
            return await NotificationJobStore(db_session).list_recent(limit)
        finally:
            db_session.close()

    async def get_document_jobs(self, document_id: int) -> List[NotificationJob]:
        """Notification history for one document, largest lead time first"""
        db_session = self.session_factory()
        try:
            return await NotificationJobStore(db_session).list_for_document(
                document_id
            )
        finally:
            db_session.close()

    async def check_email_setup(self) -> Dict[str, Any]:
        """
        Verify the mail transport, then send a test message to the admin addresses.

        Problems are reported in the result rather than raised.
        """
        result: Dict[str, Any] = {
            "success": False,
            "connection_verified": False,
            "recipients": list(self.admin_emails),
            "error": None,
        }

        try:
            result["connection_verified"] = await asyncio.wait_for(
                asyncio.to_thread(self.transport.verify_connection),
                timeout=self.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            result["error"] = (
                f"Connection check timed out after {self.send_timeout_seconds} seconds"
            )
            return result

        if not result["connection_verified"]:
            result["error"] = "Mail transport connection check failed"
            return result

        message = render_email_test_message(
            self.admin_emails, self.transport.from_address, self.clock()
        )
        db_session = self.session_factory()
        try:
            send_result = await self._build_dispatcher(db_session).send_message(
                self.admin_emails, message
            )
        finally:
            db_session.close()

        result["success"] = send_result.success
        result["error"] = send_result.error
        logger.bind(success=send_result.success).info("Email setup check finished")
        return result

    # Defaults

    def get_notification_defaults(self) -> List[int]:
        return list(self.defaults.snapshot())

    async def set_notification_defaults(self, thresholds: Iterable[int]) -> List[int]:
        """
        Replace the default thresholds wholesale.

        Validation and persistence both happen before the in-memory set is
        swapped, so a rejected update leaves the previous defaults in force.
        Existing jobs are not touched.
        """
        normalized = normalize_thresholds(thresholds)

        db_session = self.session_factory()
        try:
            await NotificationDefaultsRepository(db_session).save(normalized)
        finally:
            db_session.close()

        self.defaults.replace(normalized)
        logger.info(f"Notification defaults replaced with {list(normalized)}")
        return list(normalized)

    async def load_persisted_defaults(self) -> List[int]:
        """Adopt the defaults saved by a previous run, if any"""
        db_session = self.session_factory()
        try:
            persisted = await NotificationDefaultsRepository(db_session).load()
        finally:
            db_session.close()

        if persisted:
            self.defaults.replace(persisted)
            logger.info(f"Loaded persisted notification defaults {list(persisted)}")
        return self.get_notification_defaults()

    def status(self) -> Dict[str, Any]:
        with self._state_lock:
            tick_count = self._tick_count
            last_tick = self._last_tick

        return {
            "running": self.is_running,
            "tick_interval_seconds": self.tick_interval_seconds,
            "run_on_start": self.run_on_start,
            "tick_count": tick_count,
            "last_tick": last_tick.to_dict() if last_tick else None,
            "notification_defaults": self.get_notification_defaults(),
        }


def get_document_expiry_supervisor(request: Request) -> DocumentExpirySupervisor:
    """FastAPI dependency returning the process-wide supervisor"""
    return request.app.state.document_expiry_supervisor
