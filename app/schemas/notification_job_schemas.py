from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from app.db.models import NotificationJobState
from app.schemas.camel_base_model import CamelCaseBaseModel


class NotificationJobItem(CamelCaseBaseModel):
    """Response schema for a single notification job"""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Job ID")
    document_id: int = Field(..., description="Document the job was created for")
    threshold_days: int = Field(..., description="Days before expiry this warning covers")
    state: NotificationJobState = Field(..., description="Current delivery state")
    scheduled_for: date = Field(..., description="Date the warning became due")
    attempt_count: int = Field(..., description="Number of send attempts so far")
    last_attempt_at: Optional[datetime] = Field(None, description="Last send attempt")
    sent_at: Optional[datetime] = Field(None, description="Successful delivery time")
    last_error: Optional[str] = Field(None, description="Error from the last failure")
    recipient_snapshot: str = Field(..., description="Recipients captured at creation")
    created_at: Optional[datetime] = Field(None, description="Job creation time")


class NotificationJobStats(CamelCaseBaseModel):
    """Job counts by state"""

    pending: int = 0
    in_flight: int = 0
    retry_eligible: int = 0
    sent: int = 0
    failed: int = 0
    total: int = 0


class NotificationDefaultsRequest(CamelCaseBaseModel):
    """Request schema for replacing the default notification thresholds"""

    # Element checks happen in the service so bad values map to a config error
    thresholds: List[Any] = Field(
        ..., description="Day offsets before expiry, e.g. [30, 7, 1]"
    )


class DocumentNotificationSettingsRequest(CamelCaseBaseModel):
    """Request schema for replacing a document's override thresholds"""

    enabled: bool = Field(default=True, description="Whether alerts are sent at all")
    thresholds: List[Any] = Field(
        default_factory=list,
        description="Override day offsets; empty falls back to the defaults",
    )


class DocumentNotificationSettingsResponse(CamelCaseBaseModel):
    """Response schema for a document's override thresholds"""

    document_id: int = Field(..., description="Document ID")
    enabled: bool = Field(..., description="Whether alerts are sent at all")
    thresholds: List[int] = Field(..., description="Explicit override day offsets")
    uses_defaults: bool = Field(
        ..., description="True when no overrides are set and the defaults apply"
    )


def serialize_jobs(jobs) -> List[Dict[str, Any]]:
    return [
        NotificationJobItem.model_validate(job).model_dump(by_alias=True)
        for job in jobs
    ]
