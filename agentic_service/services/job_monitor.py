"""
Background sweep over in-flight jobs: polls the execution backend for running
jobs, asks the payment watcher about jobs awaiting payment, enforces payment
deadlines, restarts payment-free jobs whose dispatch was lost and submits
running jobs whose submission was interrupted.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from agentic_service.schemas.job import JobRecord, JobStatus, PaymentStatus, TERMINAL_STATUSES
from agentic_service.services.job_service import JobService

logger = logging.getLogger(__name__)


class JobMonitor:
    """Interval-driven sweep, independent of request handling"""

    def __init__(self, job_service: JobService, interval_seconds: float = 5.0):
        self.job_service = job_service
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        if self._task is not None:
            return
        logger.info(f"Starting job monitor (every {self.interval_seconds}s)")
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="job-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        logger.info("Stopping job monitor")
        self._stop_event.set()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Job monitor sweep failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def sweep_once(self) -> int:
        """Run one pass over all in-flight jobs; returns how many were visited"""
        in_flight = [status for status in JobStatus if status not in TERMINAL_STATUSES]
        jobs = await self.job_service.store.list_by_status(in_flight)
        await asyncio.gather(*(self._visit(job) for job in jobs))
        return len(jobs)

    async def _visit(self, job: JobRecord) -> None:
        action = self._action_for(job)
        if action is None:
            return
        try:
            await action(job.job_id)
        except Exception as e:
            logger.error(f"Error sweeping job {job.job_id}: {e}", exc_info=True)

    def _action_for(self, job: JobRecord) -> Optional[Callable[[str], Awaitable[object]]]:
        if job.status == JobStatus.RUNNING:
            return self.job_service.poll_adapter
        if job.payment_status == PaymentStatus.AWAITING_PAYMENT:
            if job.status == JobStatus.AWAITING_PAYMENT:
                return self.job_service.watch_payment
            return self.job_service.enforce_deadline
        if job.status == JobStatus.PENDING and job.payment_status is None:
            return self.job_service.dispatch
        return None
