"""
Main FastAPI application
"""

import logging
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from agentic_service.api.v1.router import api_router
from agentic_service.core.config import Settings, get_settings
from agentic_service.db.base import create_engine, create_session_factory
from agentic_service.services.execution_adapter import ExecutionAdapter
from agentic_service.services.job_monitor import JobMonitor
from agentic_service.services.job_service import JobService
from agentic_service.services.job_store import InMemoryJobStore, JobStore, SqlJobStore
from agentic_service.services.local_worker import LocalWorkerAdapter
from agentic_service.services.payment_service import build_payment_issuer
from agentic_service.services.remote_worker import RemoteWorkerAdapter
from agentic_service.services.schema_registry import SchemaRegistry
from agentic_service.services.tasks import echo_task

logger = logging.getLogger(__name__)


def build_execution_adapter(settings: Settings) -> ExecutionAdapter:
    if settings.EXECUTION_BACKEND == "local":
        return LocalWorkerAdapter(echo_task, concurrency=settings.EXECUTION_CONCURRENCY)
    if settings.EXECUTION_BACKEND == "remote":
        if not settings.EXECUTION_SERVICE_URL:
            raise ValueError("EXECUTION_SERVICE_URL is required for the remote execution backend")
        return RemoteWorkerAdapter(settings.EXECUTION_SERVICE_URL, api_key=settings.EXECUTION_API_KEY)
    raise ValueError(f"Unknown EXECUTION_BACKEND '{settings.EXECUTION_BACKEND}'")


def build_job_store(settings: Settings) -> Tuple[JobStore, Optional[AsyncEngine]]:
    if not settings.DATABASE_URL:
        logger.warning("DATABASE_URL not configured; jobs are kept in memory")
        return InMemoryJobStore(), None
    engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    return SqlJobStore(create_session_factory(engine)), engine


def build_job_service(settings: Settings) -> Tuple[JobService, Optional[AsyncEngine]]:
    store, engine = build_job_store(settings)
    job_service = JobService(
        settings=settings,
        schema_registry=SchemaRegistry(settings.INPUT_SCHEMA, allow_extra_keys=settings.ALLOW_EXTRA_INPUT_KEYS),
        payment_issuer=build_payment_issuer(settings),
        adapter=build_execution_adapter(settings),
        store=store,
    )
    return job_service, engine


def create_app(settings: Optional[Settings] = None, job_service: Optional[JobService] = None) -> FastAPI:
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    engine = None
    if job_service is None:
        job_service, engine = build_job_service(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="A Masumi-compliant agentic service",
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.job_service = job_service
    app.state.job_monitor = JobMonitor(job_service, interval_seconds=settings.SWEEP_INTERVAL_SECONDS)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # MIP-003 reports malformed or missing fields as 400
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    # Include API routes (Masumi standard - no prefix)
    app.include_router(api_router)

    @app.on_event("startup")
    async def startup_event():
        """Startup event handler"""
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Payment service configured: {settings.masumi_configured()}")
        await app.state.job_monitor.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Shutdown event handler"""
        logger.info(f"Shutting down {settings.APP_NAME}")
        await app.state.job_monitor.stop()
        await app.state.job_service.aclose()
        if engine is not None:
            await engine.dispose()

    return app


app = create_app()
