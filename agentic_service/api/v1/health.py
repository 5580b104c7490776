"""
Health check endpoint
"""

from fastapi import APIRouter, Depends

from agentic_service.api.deps import get_app_settings
from agentic_service.core.config import Settings

router = APIRouter()


@router.get("")
async def health(settings: Settings = Depends(get_app_settings)):
    """
    Health check endpoint.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "payment_service_configured": settings.masumi_configured(),
        "payment_required": settings.REQUIRE_PAYMENT,
        "seller_vkey_configured": bool(settings.SELLER_VKEY),
        "network": settings.NETWORK,
        "agent_identifier_configured": bool(settings.AGENT_IDENTIFIER),
        "execution_backend": settings.EXECUTION_BACKEND,
        "job_store": "database" if settings.DATABASE_URL else "memory",
    }
