"""
Execution adapter contract.

The orchestrator treats the task-performing backend as opaque: it submits a
job once, polls it, forwards additional input and may cancel it. Concrete
backends live in local_worker (in-process worker pool) and remote_worker
(HTTP task queue).
"""

from typing import Any, Dict, Protocol, runtime_checkable

from agentic_service.schemas.execution import AdapterResult


@runtime_checkable
class ExecutionAdapter(Protocol):
    async def submit(self, job_id: str, input_data: Dict[str, Any]) -> str:
        """Start work for a job and return an opaque handle."""
        ...

    async def poll_result(self, handle: str) -> AdapterResult:
        ...

    async def provide_input(self, handle: str, extra_input: Dict[str, Any]) -> bool:
        """Forward additional input; True once the task has what it needs to continue."""
        ...

    async def cancel(self, handle: str) -> None:
        ...

    async def health(self) -> None:
        """Raise if the backend cannot accept work."""
        ...

    async def close(self) -> None:
        ...
