"""
Job store: durable mapping from job_id to JobRecord.

compare_and_swap is the only mutation primitive after create. A write is
applied only if the stored status still equals the status the writer read,
so concurrent transitions on one job can never overwrite each other.
"""

import asyncio
import logging
from typing import Dict, List, Iterable, Protocol, Set, runtime_checkable

from sqlalchemy import select, update, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from agentic_service.core.errors import ConflictError, JobNotFoundError, StaleStateError, UnavailableError
from agentic_service.db.models.job import Job, IMMUTABLE_COLUMNS, record_to_row
from agentic_service.schemas.job import JobRecord, JobStatus

logger = logging.getLogger(__name__)


@runtime_checkable
class JobStore(Protocol):
    """Persistence contract used by the job orchestrator"""

    async def create(self, record: JobRecord) -> None:
        """Persist a new record; ConflictError if job_id or blockchain identifier exists."""
        ...

    async def get(self, job_id: str) -> JobRecord:
        """Return a committed snapshot; JobNotFoundError if unknown."""
        ...

    async def compare_and_swap(self, job_id: str, expected_status: JobStatus, new_record: JobRecord) -> JobRecord:
        """Replace the record if its status is still expected_status; StaleStateError otherwise."""
        ...

    async def list_by_status(self, statuses: Iterable[JobStatus]) -> List[JobRecord]:
        ...

    async def ping(self) -> None:
        """Raise if the store is unreachable."""
        ...


def _check_identity(current: JobRecord, new_record: JobRecord) -> None:
    for name in IMMUTABLE_COLUMNS:
        if getattr(current, name) != getattr(new_record, name):
            raise ValueError(f"Job field '{name}' is immutable")


class InMemoryJobStore:
    """Process-local job store for development and tests"""

    def __init__(self):
        self._records: Dict[str, JobRecord] = {}
        self._blockchain_ids: Set[str] = set()
        self._lock = asyncio.Lock()

    async def create(self, record: JobRecord) -> None:
        async with self._lock:
            if record.job_id in self._records:
                raise ConflictError(f"Job {record.job_id} already exists")
            if record.blockchain_identifier in self._blockchain_ids:
                raise ConflictError("Blockchain identifier already bound to another job")
            self._records[record.job_id] = record.model_copy(deep=True)
            self._blockchain_ids.add(record.blockchain_identifier)

    async def get(self, job_id: str) -> JobRecord:
        record = self._records.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record.model_copy(deep=True)

    async def compare_and_swap(self, job_id: str, expected_status: JobStatus, new_record: JobRecord) -> JobRecord:
        async with self._lock:
            current = self._records.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)
            if current.status != expected_status:
                raise StaleStateError(
                    f"Job {job_id} is {current.status.value}, expected {JobStatus(expected_status).value}"
                )
            _check_identity(current, new_record)
            self._records[job_id] = new_record.model_copy(deep=True)
            return new_record.model_copy(deep=True)

    async def list_by_status(self, statuses: Iterable[JobStatus]) -> List[JobRecord]:
        wanted = set(statuses)
        return [r.model_copy(deep=True) for r in list(self._records.values()) if r.status in wanted]

    async def ping(self) -> None:
        return None


class SqlJobStore:
    """Job store backed by SQLAlchemy (PostgreSQL in production)"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create(self, record: JobRecord) -> None:
        async with self.session_factory() as session:
            session.add(Job(**record_to_row(record)))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(f"Job {record.job_id} conflicts with an existing record") from e

    async def get(self, job_id: str) -> JobRecord:
        async with self.session_factory() as session:
            result = await session.execute(select(Job).where(Job.job_id == job_id))
            job = result.scalar_one_or_none()
            if job is None:
                raise JobNotFoundError(job_id)
            return job.to_record()

    async def compare_and_swap(self, job_id: str, expected_status: JobStatus, new_record: JobRecord) -> JobRecord:
        values = {k: v for k, v in record_to_row(new_record).items() if k not in IMMUTABLE_COLUMNS}
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.status == JobStatus(expected_status).value)
                .values(**values)
            )
            if result.rowcount == 0:
                await session.rollback()
                exists = await session.execute(select(Job.status).where(Job.job_id == job_id))
                current = exists.scalar_one_or_none()
                if current is None:
                    raise JobNotFoundError(job_id)
                raise StaleStateError(
                    f"Job {job_id} is {current}, expected {JobStatus(expected_status).value}"
                )
            await session.commit()
        return new_record

    async def list_by_status(self, statuses: Iterable[JobStatus]) -> List[JobRecord]:
        wanted = [JobStatus(s).value for s in statuses]
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job).where(Job.status.in_(wanted)).order_by(Job.created_at)
            )
            return [job.to_record() for job in result.scalars().all()]

    async def ping(self) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise UnavailableError(f"Database unreachable: {e}") from e
