"""
In-process execution backend: runs each job's task as an asyncio task,
bounded by a worker-pool semaphore.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from agentic_service.core.errors import AdapterFailure, UnavailableError
from agentic_service.schemas.execution import AdapterResult
from agentic_service.schemas.input_schema import SchemaField

logger = logging.getLogger(__name__)


class WorkerContext:
    """Handle a running task uses to talk back to the orchestrator"""

    def __init__(self, job_id: str, input_data: Dict[str, Any]):
        self.job_id = job_id
        self.input_data = input_data
        self.partial: Optional[Any] = None
        self.input_request: Optional[List[SchemaField]] = None
        self._input_ready = asyncio.Event()

    @property
    def waiting_for_input(self) -> bool:
        return self.input_request is not None and not self._input_ready.is_set()

    def report(self, partial: Any) -> None:
        """Publish a pre-result, surfaced verbatim on /status while running"""
        self.partial = partial

    async def request_input(self, fields: Sequence[Union[SchemaField, Dict[str, Any]]]) -> Dict[str, Any]:
        """Pause until the requested fields have been provided; returns the merged input"""
        self.input_request = [
            f if isinstance(f, SchemaField) else SchemaField.model_validate(f) for f in fields
        ]
        self._input_ready.clear()
        await self._input_ready.wait()
        self.input_request = None
        return dict(self.input_data)

    def supply(self, extra_input: Dict[str, Any]) -> bool:
        self.input_data.update(extra_input)
        if self.input_request is None:
            return True
        missing = [f.key for f in self.input_request if f.required and f.key not in self.input_data]
        if missing:
            logger.info(f"Job {self.job_id} still waiting for input keys: {missing}")
            return False
        self._input_ready.set()
        return True


TaskFunction = Callable[[WorkerContext], Awaitable[Any]]


class LocalWorkerAdapter:
    """Worker pool running task functions inside the service process"""

    def __init__(self, task: TaskFunction, concurrency: int = 4):
        self.task = task
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._contexts: Dict[str, WorkerContext] = {}
        self._closed = False

    async def submit(self, job_id: str, input_data: Dict[str, Any]) -> str:
        if self._closed:
            raise AdapterFailure("Worker pool is shut down")
        handle = job_id
        if handle in self._tasks:
            raise AdapterFailure(f"Job {job_id} was already submitted")
        ctx = WorkerContext(job_id, dict(input_data))
        self._contexts[handle] = ctx
        self._tasks[handle] = asyncio.create_task(self._run(ctx), name=f"job-{job_id}")
        logger.info(f"Submitted job {job_id} to local worker pool")
        return handle

    async def _run(self, ctx: WorkerContext) -> Any:
        async with self._semaphore:
            return await self.task(ctx)

    async def poll_result(self, handle: str) -> AdapterResult:
        task = self._tasks.get(handle)
        if task is None:
            return AdapterResult(done=True, error=f"Unknown execution handle {handle}")
        ctx = self._contexts[handle]

        if task.done():
            if task.cancelled():
                return AdapterResult(done=True, error="Task was cancelled")
            exc = task.exception()
            if exc is not None:
                return AdapterResult(done=True, error=f"{type(exc).__name__}: {exc}")
            return AdapterResult(done=True, output=task.result())

        if ctx.waiting_for_input:
            return AdapterResult(needs_input=True, input_request=ctx.input_request, output=ctx.partial)
        return AdapterResult(output=ctx.partial)

    async def provide_input(self, handle: str, extra_input: Dict[str, Any]) -> bool:
        ctx = self._contexts.get(handle)
        if ctx is None:
            raise AdapterFailure(f"Unknown execution handle {handle}")
        return ctx.supply(extra_input)

    async def cancel(self, handle: str) -> None:
        """Stop the task if still running and release its bookkeeping"""
        task = self._tasks.pop(handle, None)
        self._contexts.pop(handle, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def health(self) -> None:
        if self._closed:
            raise UnavailableError("Worker pool is shut down")

    async def close(self) -> None:
        self._closed = True
        for handle in list(self._tasks):
            await self.cancel(handle)
