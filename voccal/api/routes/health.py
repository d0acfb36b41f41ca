"""
Health check endpoints.
"""

from fastapi import APIRouter

from voccal.audio.catalog import list_filters
from voccal.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    System health check endpoint.

    Returns service status and basic diagnostics.
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.env,
        "components": {
            "filter_catalog": len(list_filters(include_disabled=True)),
            "max_import_bytes": settings.max_import_bytes
        }
    }
