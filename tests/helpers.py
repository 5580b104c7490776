"""
Shared test doubles and helpers
"""

import asyncio
from typing import Any, Dict

from agentic_service.core.config import Settings
from agentic_service.schemas.execution import AdapterResult
from agentic_service.schemas.job import JobRecord, JobStatus
from agentic_service.schemas.payment import PaymentEvidence
from agentic_service.services.job_service import JobService
from agentic_service.services.local_worker import WorkerContext
from agentic_service.services.payment_service import FUNDS_LOCKED

START_TIME = 1_700_000_000

DEFAULT_INPUT_SCHEMA = Settings.model_fields["INPUT_SCHEMA"].default


class FakeClock:
    """Manually advanced stand-in for time.time"""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def echo(ctx: WorkerContext) -> Any:
    return ctx.input_data.get("text")


def funds_locked(job: JobRecord, **overrides: Any) -> PaymentEvidence:
    """Evidence the payment watcher reports once the purchaser's funds are locked"""
    values: Dict[str, Any] = {
        "blockchain_identifier": job.blockchain_identifier,
        "on_chain_state": FUNDS_LOCKED,
        "amounts": job.amounts,
    }
    values.update(overrides)
    return PaymentEvidence(**values)


async def poll_until(service: JobService, job_id: str, status: JobStatus, attempts: int = 200) -> JobRecord:
    """Poll the execution backend until the job reaches status"""
    job = await service.store.get(job_id)
    for _ in range(attempts):
        job = await service.poll_adapter(job_id)
        if job.status == status:
            return job
        await asyncio.sleep(0.01)
    raise AssertionError(f"Job {job_id} stuck in {job.status.value}, expected {status.value}")


class UnnamedInputAdapter:
    """Backend that asks for more input without saying which keys it wants"""

    def __init__(self):
        self.received = None

    async def submit(self, job_id: str, input_data: Dict[str, Any]) -> str:
        return f"task-{job_id}"

    async def poll_result(self, handle: str) -> AdapterResult:
        if self.received is None:
            return AdapterResult(needs_input=True)
        return AdapterResult(done=True, output=self.received)

    async def provide_input(self, handle: str, extra_input: Dict[str, Any]) -> bool:
        self.received = extra_input
        return True

    async def cancel(self, handle: str) -> None:
        pass

    async def health(self) -> None:
        pass

    async def close(self) -> None:
        pass
