from typing import Any, Dict, Optional

import pytest
import pytest_asyncio

from agentic_service.core.config import Settings
from agentic_service.services.job_service import JobService
from agentic_service.services.job_store import InMemoryJobStore
from agentic_service.services.local_worker import LocalWorkerAdapter
from agentic_service.services.payment_service import LocalPaymentIssuer
from agentic_service.services.schema_registry import SchemaRegistry

from helpers import FakeClock, echo


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_settings():
    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "INPUT_SCHEMA": [
                {"key": "text", "value_type": "string"},
                {"key": "option", "value_type": "string", "required": False},
            ],
            "SUBMIT_RESULT_WINDOW_SECONDS": 3600,
            "SWEEP_INTERVAL_SECONDS": 0.01,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


@pytest.fixture
def make_service(make_settings, clock):
    """Factory for job services wired to in-process collaborators"""
    def _make(task=echo, settings: Optional[Settings] = None, store=None, **overrides: Any) -> JobService:
        settings = settings or make_settings(**overrides)
        return JobService(
            settings=settings,
            schema_registry=SchemaRegistry(settings.INPUT_SCHEMA, allow_extra_keys=settings.ALLOW_EXTRA_INPUT_KEYS),
            payment_issuer=LocalPaymentIssuer(settings, clock=clock),
            adapter=LocalWorkerAdapter(task, concurrency=settings.EXECUTION_CONCURRENCY),
            store=store or InMemoryJobStore(),
            clock=clock,
        )
    return _make


@pytest_asyncio.fixture
async def paid_service(make_service):
    service = make_service(REQUIRE_PAYMENT=True)
    yield service
    await service.aclose()


@pytest_asyncio.fixture
async def free_service(make_service):
    service = make_service(REQUIRE_PAYMENT=False)
    yield service
    await service.aclose()
