from fastapi import APIRouter, Depends, Request

from app.config.settings import settings
from app.services.document_expiry import (
    DocumentExpirySupervisor,
    get_document_expiry_supervisor,
)
from app.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("")
async def health_check(
    request: Request,
    supervisor: DocumentExpirySupervisor = Depends(get_document_expiry_supervisor),
):
    """
    Basic health check endpoint

    Returns application status and whether the expiry scheduler loop is alive
    """
    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy",
            "service": settings.NAME,
            "version": settings.VERSION,
            "scheduler_running": supervisor.is_running,
        },
        message="Service is running",
    )
