from typing import List, Optional
from datetime import datetime, date
from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    func,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Date,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum


class Base(DeclarativeBase):
    pass


# Enums
class DocumentType(enum.Enum):
    REGISTRATION = "registration"
    INSURANCE = "insurance"
    FITNESS = "fitness"
    POLLUTION_CERTIFICATE = "pollution_certificate"
    OTHER = "other"


class NotificationJobState(enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRY_ELIGIBLE = "retry_eligible"
    SENT = "sent"
    FAILED = "failed"


DISPATCHABLE_JOB_STATES = (
    NotificationJobState.PENDING,
    NotificationJobState.RETRY_ELIGIBLE,
)


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# Models
class Machine(Base, AuditMixin):
    __tablename__ = "machines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    machine_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(String(100))
    contact_email: Mapped[Optional[str]] = mapped_column(String(320))

    # Relationships
    documents: Mapped[List["MachineDocument"]] = relationship(
        back_populates="machine", cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        Index("idx_machines_is_active", "is_active"),
        Index("idx_machines_name", "name"),
    )


class MachineDocument(Base, AuditMixin):
    __tablename__ = "machine_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    machine_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False
    )
    document_type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType), nullable=False
    )
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_renewed_date: Mapped[Optional[date]] = mapped_column(Date)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    machine: Mapped["Machine"] = relationship(back_populates="documents")
    notification_settings: Mapped[List["DocumentNotificationSetting"]] = relationship(
        back_populates="document", cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "machine_id", "document_type", name="uq_machine_documents_machine_type"
        ),
        Index("idx_machine_documents_expiry_date", "expiry_date"),
        Index("idx_machine_documents_is_active", "is_active"),
    )


class DocumentNotificationSetting(Base, AuditMixin):
    __tablename__ = "document_notification_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("machine_documents.id", ondelete="CASCADE"), nullable=False
    )
    days_before: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    document: Mapped["MachineDocument"] = relationship(
        back_populates="notification_settings"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "document_id", "days_before", name="uq_doc_notif_settings_doc_days"
        ),
        CheckConstraint("days_before >= 0", name="ck_doc_notif_settings_days_non_negative"),
        Index("idx_doc_notif_settings_document_id", "document_id"),
    )


class NotificationDefaultsRecord(Base, AuditMixin):
    __tablename__ = "notification_defaults"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # JSON list of day offsets stored as Text - serialize/deserialize in application
    thresholds: Mapped[str] = mapped_column(Text, nullable=False)


class NotificationJob(Base, AuditMixin):
    __tablename__ = "notification_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Not a foreign key: jobs outlive the document they were created for
    document_id: Mapped[int] = mapped_column(Integer, nullable=False)
    threshold_days: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[NotificationJobState] = mapped_column(
        Enum(NotificationJobState),
        default=NotificationJobState.PENDING,
        nullable=False,
    )
    scheduled_for: Mapped[date] = mapped_column(Date, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    recipient_snapshot: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # JSON stored as Text - serialize/deserialize in application
    document_snapshot: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "document_id", "threshold_days", name="uq_notif_jobs_document_threshold"
        ),
        CheckConstraint("threshold_days >= 0", name="ck_notif_jobs_threshold_non_negative"),
        CheckConstraint("attempt_count >= 0", name="ck_notif_jobs_attempts_non_negative"),
        Index("idx_notif_jobs_state_scheduled", "state", "scheduled_for"),
        Index("idx_notif_jobs_document_id", "document_id"),
        Index("idx_notif_jobs_last_attempt_at", "last_attempt_at"),
    )
