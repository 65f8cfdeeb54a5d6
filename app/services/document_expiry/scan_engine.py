from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Sequence

from sqlalchemy.orm import Session

from app.utils.datetime_utils import business_date, to_naive_utc
from app.utils.logging import get_logger

from .document_registry import DocumentRegistry, DocumentSnapshot
from .job_store import NotificationJobStore
from .policy_resolver import NotificationPolicyResolver

logger = get_logger()


@dataclass
class ScanResult:
    created_count: int = 0
    skipped_count: int = 0
    failed_documents: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_count": self.created_count,
            "skipped_count": self.skipped_count,
            "failed_documents": self.failed_documents,
            "errors": list(self.errors),
        }


class DocumentScanEngine:
    """Turns due expiry thresholds into pending notification jobs"""

    def __init__(
        self,
        db_session: Session,
        resolver: NotificationPolicyResolver,
        admin_emails: Sequence[str],
        business_timezone: str,
    ):
        self.db = db_session
        self.registry = DocumentRegistry(db_session)
        self.job_store = NotificationJobStore(db_session)
        self.resolver = resolver
        self.admin_emails = list(admin_emails)
        self.business_timezone = business_timezone

    def recipients_for(self, document: DocumentSnapshot) -> List[str]:
        """The machine's contact if it has one, otherwise the office admins"""
        if document.contact_email and document.contact_email.strip():
            return [document.contact_email.strip()]
        return list(self.admin_emails)

    async def scan(self, now: datetime) -> ScanResult:
        """
        Create a pending job for every due (document, threshold) pair that has
        none yet. Existing jobs are left alone whatever their state.

        A failure on one document is rolled back and counted; the scan carries
        on with the next one.
        """
        result = ScanResult()
        today = business_date(now, self.business_timezone)
        created_at = to_naive_utc(now)

        documents = await self.registry.list_active_documents()

        for document in documents:
            try:
                await self._scan_document(document, today, created_at, result)
            except Exception as e:
                self.db.rollback()
                result.failed_documents += 1
                result.errors.append(f"document {document.id}: {e}")
                logger.bind(document_id=document.id).error(
                    f"Failed to scan document {document.id}: {e}"
                )

        logger.info(
            f"Scanned {len(documents)} documents for {today.isoformat()}: "
            f"created={result.created_count} skipped={result.skipped_count} "
            f"failed={result.failed_documents}"
        )
        return result

    async def _scan_document(
        self,
        document: DocumentSnapshot,
        today,
        created_at: datetime,
        result: ScanResult,
    ) -> None:
        # Counted per insert; commits made before a later failure stay counted
        due = self.resolver.due_thresholds(document, today)
        if not due:
            return

        existing = await self.job_store.get_existing_thresholds(document.id)
        recipients = self.recipients_for(document)
        for threshold_days in due:
            if threshold_days in existing:
                result.skipped_count += 1
                continue

            if await self.job_store.insert_if_absent(
                document, threshold_days, recipients, created_at
            ):
                result.created_count += 1
                logger.bind(
                    document_id=document.id, threshold_days=threshold_days
                ).info(
                    f"Created notification job for {document.machine_number} "
                    f"{document.document_type} at {threshold_days} days"
                )
            else:
                result.skipped_count += 1
