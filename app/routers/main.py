from fastapi import APIRouter

from app.routers.admin import admin_router
from app.routers.shared import health_router

main_router = APIRouter()

# Include domain-based routers
main_router.include_router(admin_router, prefix="/admin", tags=["Admin"])
main_router.include_router(health_router, prefix="/health", tags=["Health"])
