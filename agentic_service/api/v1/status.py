"""
Job status endpoint (MIP-003: /status)
"""

import logging
from fastapi import APIRouter, HTTPException, Depends, Query

from agentic_service.api.deps import get_job_service
from agentic_service.core.errors import JobNotFoundError
from agentic_service.schemas.job import StatusResponse
from agentic_service.services.job_service import JobService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=StatusResponse, response_model_exclude_none=True)
async def get_status(
    job_id: str = Query(..., description="Job identifier"),
    job_service: JobService = Depends(get_job_service),
):
    """
    Get the status of a job (MIP-003 compliant).
    """
    try:
        job = await job_service.get_status(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error reading status of job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
    return StatusResponse.from_record(job)
