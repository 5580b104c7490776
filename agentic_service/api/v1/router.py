"""
Masumi MIP-003 compliant API router
"""

from fastapi import APIRouter
from agentic_service.api.v1 import start_job
from agentic_service.api.v1 import status
from agentic_service.api.v1 import provide_input
from agentic_service.api.v1 import availability
from agentic_service.api.v1 import input_schema
from agentic_service.api.v1 import health

api_router = APIRouter()

# Masumi MIP-003 standard endpoints
api_router.include_router(start_job.router, prefix="/start_job", tags=["jobs"])
api_router.include_router(status.router, prefix="/status", tags=["jobs"])
api_router.include_router(provide_input.router, prefix="/provide_input", tags=["jobs"])
api_router.include_router(availability.router, prefix="/availability", tags=["service"])
api_router.include_router(input_schema.router, prefix="/input_schema", tags=["service"])
api_router.include_router(health.router, prefix="/health", tags=["service"])
