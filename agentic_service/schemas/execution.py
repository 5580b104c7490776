"""
Execution adapter result schema
"""

from typing import Optional, List, Any

from pydantic import BaseModel

from agentic_service.schemas.input_schema import SchemaField


class AdapterResult(BaseModel):
    """
    Snapshot of a submitted task as reported by an execution backend.

    done=True with error=None is a completed task, done=True with an error
    is a failed task. needs_input asks the orchestrator to collect the
    fields listed in input_request before the task can continue. output
    on an unfinished task is a pre-result.
    """
    done: bool = False
    output: Optional[Any] = None
    error: Optional[str] = None
    needs_input: bool = False
    input_request: Optional[List[SchemaField]] = None
