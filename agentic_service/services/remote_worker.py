"""
Remote execution backend: drives a task queue service over HTTP.

Expected endpoints on the task service:
    POST   /tasks               {job_id, input_data}  -> {task_id}
    GET    /tasks/{task_id}     -> {done, output, error, needs_input, input_request}
    POST   /tasks/{task_id}/input {input_data}        -> {ready} or an empty body
    DELETE /tasks/{task_id}
    GET    /health
"""

import logging
from typing import Any, Dict, Optional

import httpx

from agentic_service.core.errors import AdapterFailure, UnavailableError
from agentic_service.schemas.execution import AdapterResult

logger = logging.getLogger(__name__)


class RemoteWorkerAdapter:
    """Execution adapter for a remote task queue"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"accept": "application/json"}
        if api_key:
            headers["token"] = api_key
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise AdapterFailure(
                f"Task service returned {e.response.status_code} for {method} {path}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise AdapterFailure(f"Task service unreachable ({method} {path}): {e}") from e

    async def submit(self, job_id: str, input_data: Dict[str, Any]) -> str:
        response = await self._request("POST", "/tasks", json={"job_id": job_id, "input_data": input_data})
        try:
            task_id = response.json()["task_id"]
        except (KeyError, ValueError) as e:
            raise AdapterFailure(f"Task service returned no task_id for job {job_id}") from e
        logger.info(f"Submitted job {job_id} to task service as {task_id}")
        return str(task_id)

    async def poll_result(self, handle: str) -> AdapterResult:
        response = await self._request("GET", f"/tasks/{handle}")
        return AdapterResult.model_validate(response.json())

    async def provide_input(self, handle: str, extra_input: Dict[str, Any]) -> bool:
        response = await self._request("POST", f"/tasks/{handle}/input", json={"input_data": extra_input})
        if not response.content:
            return True
        try:
            body = response.json()
        except ValueError:
            logger.warning(f"Task service acknowledged input for {handle} without a JSON body")
            return True
        if not isinstance(body, dict):
            return True
        return bool(body.get("ready", True))

    async def cancel(self, handle: str) -> None:
        try:
            response = await self.client.delete(f"/tasks/{handle}")
        except httpx.HTTPError as e:
            logger.warning(f"Failed to cancel task {handle}: {e}")
            return
        if response.status_code not in (200, 202, 204, 404):
            logger.warning(f"Task service refused to cancel {handle}: {response.status_code}")

    async def health(self) -> None:
        try:
            await self._request("GET", "/health")
        except AdapterFailure as e:
            raise UnavailableError(str(e)) from e

    async def close(self) -> None:
        await self.client.aclose()
