"""
Start job endpoint (MIP-003: /start_job)
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from agentic_service.api.deps import get_job_service
from agentic_service.core.errors import InvalidInputError
from agentic_service.schemas.job import StartJobRequest, StartJobResponse, items_to_dict
from agentic_service.services.job_service import JobService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", status_code=201, response_model=StartJobResponse)
async def start_job(
    data: StartJobRequest,
    job_service: JobService = Depends(get_job_service),
):
    """ Initiates a job and creates a payment request """
    try:
        input_data = items_to_dict(data.input_data)
        logger.info(f"Received job request with input keys: {sorted(input_data)}")
        job = await job_service.create_job(input_data, data.identifier_from_purchaser)
    except InvalidInputError as e:
        logger.info(f"Rejected job request: {e.reason}")
        raise HTTPException(
            status_code=400,
            detail=f"Input_data or identifier_from_purchaser is missing, invalid, or does not adhere to the schema: {e.reason}"
        )
    except Exception as e:
        logger.error(f"Error in start_job: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return StartJobResponse.from_record(job)
