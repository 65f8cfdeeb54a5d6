from fastapi import APIRouter, Depends, Path, Request, status

from app.schemas.notification_job_schemas import (
    DocumentNotificationSettingsRequest,
    DocumentNotificationSettingsResponse,
    serialize_jobs,
)
from app.services.document_expiry import (
    DocumentExpirySupervisor,
    DocumentRegistry,
    NotificationOverrides,
    get_document_expiry_supervisor,
    get_document_registry,
)
from app.utils.responses import ResponseBuilder

documents_router = APIRouter()


def _settings_response(
    document_id: int, overrides: NotificationOverrides
) -> DocumentNotificationSettingsResponse:
    return DocumentNotificationSettingsResponse(
        document_id=document_id,
        enabled=overrides.enabled,
        thresholds=list(overrides.thresholds),
        uses_defaults=overrides.enabled and not overrides.thresholds,
    )


@documents_router.get(
    "/{document_id}/notifications",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Get a document's notification settings",
)
async def get_document_notifications(
    request: Request,
    document_id: int = Path(..., ge=1, description="Document ID"),
    registry: DocumentRegistry = Depends(get_document_registry),
):
    overrides = await registry.get_notification_overrides(document_id)

    return ResponseBuilder.success(
        request=request,
        data=_settings_response(document_id, overrides).model_dump(by_alias=True),
        message="Document notification settings retrieved successfully",
    )


@documents_router.put(
    "/{document_id}/notifications",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Replace a document's notification settings",
    description="Replace the override thresholds wholesale. An empty list makes the "
    "document follow the defaults again. Existing jobs are not affected.",
)
async def set_document_notifications(
    request: Request,
    payload: DocumentNotificationSettingsRequest,
    document_id: int = Path(..., ge=1, description="Document ID"),
    registry: DocumentRegistry = Depends(get_document_registry),
):
    overrides = await registry.replace_notification_overrides(
        document_id, payload.thresholds, enabled=payload.enabled
    )

    return ResponseBuilder.success(
        request=request,
        data=_settings_response(document_id, overrides).model_dump(by_alias=True),
        message="Document notification settings updated successfully",
    )


@documents_router.get(
    "/{document_id}/notification-history",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Get a document's notification history",
)
async def get_document_notification_history(
    request: Request,
    document_id: int = Path(..., ge=1, description="Document ID"),
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    jobs = await supervisor.get_document_jobs(document_id)

    return ResponseBuilder.success(
        request=request,
        data=serialize_jobs(jobs),
        message=f"Retrieved {len(jobs)} notification jobs for document {document_id}",
    )
