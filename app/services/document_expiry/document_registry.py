from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy import select, and_
from sqlalchemy.orm import Session, contains_eager, selectinload

from app.db.models import (
    DocumentNotificationSetting,
    Machine,
    MachineDocument,
)
from app.db.session import get_sync_session
from app.utils.errors import NotFoundError
from app.utils.logging import get_logger

from .notification_defaults import normalize_thresholds

logger = get_logger()


@dataclass(frozen=True)
class NotificationOverrides:
    enabled: bool = True
    thresholds: Tuple[int, ...] = ()


@dataclass(frozen=True)
class DocumentSnapshot:
    """Read-only view of a machine document as the scheduler sees it"""

    id: int
    machine_id: int
    machine_number: str
    machine_name: str
    document_type: str
    expiry_date: date
    overrides: NotificationOverrides = field(default_factory=NotificationOverrides)
    contact_email: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "document_id": self.id,
            "machine_id": self.machine_id,
            "machine_number": self.machine_number,
            "machine_name": self.machine_name,
            "document_type": self.document_type,
            "expiry_date": self.expiry_date.isoformat(),
        }


def _overrides_from_document(document: MachineDocument) -> NotificationOverrides:
    thresholds = sorted(
        {
            setting.days_before
            for setting in document.notification_settings
            if setting.is_active
        },
        reverse=True,
    )
    return NotificationOverrides(
        enabled=document.notifications_enabled, thresholds=tuple(thresholds)
    )


class DocumentRegistry:
    """Read access to machine compliance documents and their notification settings"""

    def __init__(self, db_session: Session):
        self.db = db_session

    async def list_active_documents(self) -> List[DocumentSnapshot]:
        """Active documents whose owning machine is active, soonest expiry first"""
        result = self.db.execute(
            select(MachineDocument)
            .join(Machine, MachineDocument.machine_id == Machine.id)
            .options(
                contains_eager(MachineDocument.machine),
                selectinload(MachineDocument.notification_settings),
            )
            .where(
                and_(
                    MachineDocument.is_active == True,
                    Machine.is_active == True,
                )
            )
            .order_by(MachineDocument.expiry_date, MachineDocument.id)
        )
        documents = result.scalars().unique().all()

        return [
            DocumentSnapshot(
                id=document.id,
                machine_id=document.machine_id,
                machine_number=document.machine.machine_number,
                machine_name=document.machine.name,
                document_type=document.document_type.value,
                expiry_date=document.expiry_date,
                overrides=_overrides_from_document(document),
                contact_email=document.machine.contact_email,
            )
            for document in documents
        ]

    async def get_document(self, document_id: int) -> MachineDocument:
        result = self.db.execute(
            select(MachineDocument)
            .options(selectinload(MachineDocument.notification_settings))
            .where(MachineDocument.id == document_id)
        )
        document = result.scalar_one_or_none()
        if not document:
            raise NotFoundError(
                f"Document {document_id} not found", error_code="DOCUMENT_NOT_FOUND"
            )
        return document

    async def get_notification_overrides(self, document_id: int) -> NotificationOverrides:
        document = await self.get_document(document_id)
        return _overrides_from_document(document)

    async def replace_notification_overrides(
        self,
        document_id: int,
        thresholds: List[int],
        enabled: bool = True,
    ) -> NotificationOverrides:
        """
        Replace a document's override thresholds wholesale.

        An empty list clears the overrides so the document falls back to the
        process-wide defaults. Jobs already created are not touched.

        Raises:
            ConfigurationError: if any threshold is not a non-negative integer
            NotFoundError: if the document does not exist
        """
        normalized = normalize_thresholds(thresholds) if thresholds else ()
        document = await self.get_document(document_id)

        try:
            # Flush the deletes before inserting so re-used day values don't
            # collide with the (document_id, days_before) unique key
            document.notification_settings.clear()
            self.db.flush()

            for days in normalized:
                document.notification_settings.append(
                    DocumentNotificationSetting(days_before=days, is_active=True)
                )
            document.notifications_enabled = enabled
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(document)
        logger.bind(document_id=document_id).info(
            f"Replaced notification overrides for document {document_id}"
        )
        return _overrides_from_document(document)


def get_document_registry(
    db: Session = Depends(get_sync_session),
) -> DocumentRegistry:
    """Dependency to provide DocumentRegistry instance"""
    return DocumentRegistry(db)
