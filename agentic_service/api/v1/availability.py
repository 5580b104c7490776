"""
Availability endpoint
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from agentic_service.api.deps import get_job_service
from agentic_service.services.job_service import JobService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def availability(job_service: JobService = Depends(get_job_service)):
    """
    Check if the service is available and ready to accept jobs (MIP-003 compliant).
    """
    try:
        response = await job_service.check_availability()
    except Exception as e:
        logger.error(f"Error checking availability: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    response["type"] = "masumi-agent"
    return response
