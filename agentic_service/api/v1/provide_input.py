"""
Provide input endpoint (MIP-003: /provide_input)
Supplies additional input to a job that is awaiting input.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from agentic_service.api.deps import get_job_service
from agentic_service.core.errors import InvalidInputError, InvalidStateError, JobNotFoundError
from agentic_service.schemas.job import ProvideInputRequest, ProvideInputResponse, items_to_dict
from agentic_service.services.job_service import JobService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=ProvideInputResponse)
async def provide_input(
    data: ProvideInputRequest,
    job_service: JobService = Depends(get_job_service),
):
    try:
        await job_service.provide_input(data.job_id, items_to_dict(data.input_data))
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=f"Invalid input_data: {e.reason}")
    except InvalidStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error in provide_input for job {data.job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
    return ProvideInputResponse()
