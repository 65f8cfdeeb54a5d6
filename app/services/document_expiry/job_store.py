import json
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models import (
    DISPATCHABLE_JOB_STATES,
    NotificationJob,
    NotificationJobState,
)
from app.utils.logging import get_logger

from .document_registry import DocumentSnapshot

logger = get_logger()

# Keep stored errors bounded; SMTP servers can return very long transcripts
MAX_ERROR_LENGTH = 2000


class NotificationJobStore:
    """
    Durable record of notification jobs, one row per (document, threshold).

    Every state change that can race with another actor is a single
    conditional UPDATE (compare-and-set on the expected state) followed by a
    commit; callers learn whether they won from the affected row count.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    async def get_job(self, job_id: int) -> Optional[NotificationJob]:
        result = self.db.execute(
            select(NotificationJob)
            .where(NotificationJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_existing_thresholds(self, document_id: int) -> Set[int]:
        result = self.db.execute(
            select(NotificationJob.threshold_days).where(
                NotificationJob.document_id == document_id
            )
        )
        return set(result.scalars().all())

    async def insert_if_absent(
        self,
        document: DocumentSnapshot,
        threshold_days: int,
        recipients: Sequence[str],
        now: datetime,
    ) -> bool:
        """
        Create a pending job for (document, threshold) unless one already exists.

        Returns True when a row was inserted. A unique-key violation means some
        other scan got there first and is reported as False, not raised.
        """
        job = NotificationJob(
            document_id=document.id,
            threshold_days=threshold_days,
            state=NotificationJobState.PENDING,
            scheduled_for=self.scheduled_for(document.expiry_date, threshold_days),
            attempt_count=0,
            recipient_snapshot=", ".join(recipients),
            document_snapshot=json.dumps(document.summary()),
            created_at=now,
            updated_at=now,
        )
        self.db.add(job)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.bind(
                document_id=document.id, threshold_days=threshold_days
            ).debug("Notification job already exists, skipping insert")
            return False
        except Exception:
            self.db.rollback()
            raise

        return True

    async def list_dispatchable(self, limit: int) -> List[NotificationJob]:
        """Pending and retry-eligible jobs, oldest warning date first"""
        result = self.db.execute(
            select(NotificationJob)
            .where(NotificationJob.state.in_(DISPATCHABLE_JOB_STATES))
            .order_by(NotificationJob.scheduled_for, NotificationJob.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _compare_and_set(
        self,
        job_id: int,
        expected_state: NotificationJobState,
        values: Dict,
    ) -> bool:
        try:
            result = self.db.execute(
                update(NotificationJob)
                .where(
                    NotificationJob.id == job_id,
                    NotificationJob.state == expected_state,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return result.rowcount == 1

    async def claim(
        self,
        job_id: int,
        expected_state: NotificationJobState,
        now: datetime,
    ) -> bool:
        """Atomically move a job from expected_state to in_flight"""
        return await self._compare_and_set(
            job_id,
            expected_state,
            {
                "state": NotificationJobState.IN_FLIGHT,
                "last_attempt_at": now,
                "updated_at": now,
            },
        )

    async def mark_sent(self, job_id: int, now: datetime) -> bool:
        return await self._compare_and_set(
            job_id,
            NotificationJobState.IN_FLIGHT,
            {
                "state": NotificationJobState.SENT,
                "attempt_count": NotificationJob.attempt_count + 1,
                "last_attempt_at": now,
                "sent_at": now,
                "last_error": None,
                "updated_at": now,
            },
        )

    async def mark_failure(
        self,
        job_id: int,
        error: str,
        max_retries: int,
        now: datetime,
    ) -> Optional[NotificationJobState]:
        """
        Record a failed attempt on an in-flight job.

        The caller holds the in-flight claim, so nobody else can change the
        attempt count between the read and the conditional update below.

        Returns the new state, or None if the job was no longer in flight.
        """
        job = await self.get_job(job_id)
        if not job or job.state != NotificationJobState.IN_FLIGHT:
            return None

        attempt_count = job.attempt_count + 1
        new_state = (
            NotificationJobState.RETRY_ELIGIBLE
            if attempt_count < max_retries
            else NotificationJobState.FAILED
        )

        updated = await self._compare_and_set(
            job_id,
            NotificationJobState.IN_FLIGHT,
            {
                "state": new_state,
                "attempt_count": attempt_count,
                "last_attempt_at": now,
                "last_error": (error or "Unknown error")[:MAX_ERROR_LENGTH],
                "updated_at": now,
            },
        )
        return new_state if updated else None

    async def reset_for_retry(self, job_id: int, now: datetime) -> bool:
        """Operator retry: failed -> retry_eligible, attempt count untouched"""
        return await self._compare_and_set(
            job_id,
            NotificationJobState.FAILED,
            {"state": NotificationJobState.RETRY_ELIGIBLE, "updated_at": now},
        )

    async def count_by_state(self) -> Dict[NotificationJobState, int]:
        result = self.db.execute(
            select(NotificationJob.state, func.count(NotificationJob.id)).group_by(
                NotificationJob.state
            )
        )
        counts = {state: 0 for state in NotificationJobState}
        for state, count in result.all():
            counts[state] = count
        return counts

    async def list_recent(self, limit: int) -> List[NotificationJob]:
        """Most recently attempted jobs first; never-attempted jobs trail by creation time"""
        result = self.db.execute(
            select(NotificationJob)
            .order_by(
                NotificationJob.last_attempt_at.is_(None),
                NotificationJob.last_attempt_at.desc(),
                NotificationJob.created_at.desc(),
                NotificationJob.id.desc(),
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_for_document(self, document_id: int) -> List[NotificationJob]:
        result = self.db.execute(
            select(NotificationJob)
            .where(NotificationJob.document_id == document_id)
            .order_by(NotificationJob.threshold_days.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    def scheduled_for(expiry_date: date, threshold_days: int) -> date:
        return expiry_date - timedelta(days=threshold_days)
