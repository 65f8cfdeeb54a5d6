from fastapi import APIRouter

from .email import email_router
from .documents import documents_router

admin_router = APIRouter()

# Include sub-routers
admin_router.include_router(
    email_router, prefix="/email", tags=["Admin - Email Notifications"]
)
admin_router.include_router(
    documents_router, prefix="/documents", tags=["Admin - Document Notifications"]
)
