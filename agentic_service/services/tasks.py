"""
Built-in task for the local worker pool
"""

import logging
from typing import Any

from agentic_service.services.local_worker import WorkerContext

logger = logging.getLogger(__name__)


async def echo_task(ctx: WorkerContext) -> Any:
    """Return the job's text input unchanged; placeholder until a real backend is wired in"""
    logger.info(f"Running echo task for job {ctx.job_id}")
    text = ctx.input_data.get("text")
    if text is None:
        return ctx.input_data
    return text
