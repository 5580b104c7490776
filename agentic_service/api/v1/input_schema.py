"""
Input schema endpoint (MIP-003: /input_schema)
Returns the expected input schema for the /start_job endpoint.
"""

from fastapi import APIRouter, Depends

from agentic_service.api.deps import get_schema_registry
from agentic_service.services.schema_registry import SchemaRegistry

router = APIRouter()


@router.get("")
async def input_schema(schema_registry: SchemaRegistry = Depends(get_schema_registry)):
    """
    Returns the expected input schema for the /start_job endpoint.
    Fulfills MIP-003 /input_schema endpoint.
    """
    return schema_registry.to_wire()
