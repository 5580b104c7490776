"""
Shared FastAPI dependencies
"""

from fastapi import Request

from agentic_service.core.config import Settings
from agentic_service.services.job_service import JobService
from agentic_service.services.schema_registry import SchemaRegistry


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with"""
    return request.app.state.settings


def get_job_service(request: Request) -> JobService:
    """Dependency to get the job service built at startup"""
    return request.app.state.job_service


def get_schema_registry(request: Request) -> SchemaRegistry:
    return request.app.state.job_service.schema_registry
