"""
Job service: the job lifecycle orchestrator.

Drives each job from creation through payment-gated execution to completed
or failed. All writes go through the job store's compare-and-swap; in this
process, writes to one job are additionally serialized by a per-job lock so
that provide_input, reconcile_payment and poll_adapter never interleave.
Reads never take the lock.
"""

import asyncio
import logging
import secrets
import time
from typing import Any, Callable, Coroutine, Dict, Optional, Set
from uuid import uuid4

from agentic_service.core.config import Settings
from agentic_service.core.errors import (
    ConcurrencyError,
    ConflictError,
    InvalidStateError,
    StaleStateError,
)
from agentic_service.schemas.job import (
    Amount,
    JobRecord,
    JobStatus,
    PaymentStatus,
    to_wire_status,
)
from agentic_service.schemas.payment import PaymentEvidence, Verification
from agentic_service.services.execution_adapter import ExecutionAdapter
from agentic_service.services.job_store import JobStore
from agentic_service.services.payment_service import PaymentIssuer
from agentic_service.services.schema_registry import SchemaRegistry
from agentic_service.services.state_machine import (
    deadline_expired,
    payment_timeout,
    transition,
)
from agentic_service.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

Change = Callable[[JobRecord], Optional[JobRecord]]


class JobService:
    """Orchestrates job lifecycle across schema, payment, execution and storage"""

    def __init__(
        self,
        settings: Settings,
        schema_registry: SchemaRegistry,
        payment_issuer: PaymentIssuer,
        adapter: ExecutionAdapter,
        store: JobStore,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.schema_registry = schema_registry
        self.payment_issuer = payment_issuer
        self.adapter = adapter
        self.store = store
        self.clock = clock

        self.require_payment = settings.REQUIRE_PAYMENT
        self.max_attempts = max(1, settings.CAS_MAX_ATTEMPTS)
        self.agent_identifier = settings.AGENT_IDENTIFIER
        self.seller_vkey = settings.SELLER_VKEY
        self.amounts = [Amount(amount=str(settings.PAYMENT_AMOUNT), unit=settings.PAYMENT_UNIT)]

        self._locks = KeyedLock()
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create_job(
        self,
        input_data: Dict[str, Any],
        identifier_from_purchaser: Optional[str] = None,
    ) -> JobRecord:
        """
        Validate input, bind a payment identifier and persist a new job.

        Args:
            input_data: Input document; must adhere to the input schema
            identifier_from_purchaser: Purchaser-chosen identifier, generated if missing

        Returns:
            Snapshot of the created job

        Raises:
            InvalidInputError: If input_data does not adhere to the schema (nothing is stored)
            ConcurrencyError: If no unique identifiers could be allocated
        """
        validated = self.schema_registry.validate(input_data)
        identifier_from_purchaser = identifier_from_purchaser or secrets.token_hex(12)

        if self.require_payment:
            initial_status = JobStatus.AWAITING_PAYMENT
            payment_status = PaymentStatus.AWAITING_PAYMENT
        else:
            initial_status = JobStatus.PENDING
            payment_status = None

        for attempt in range(1, self.max_attempts + 1):
            job_id = str(uuid4())
            binding = await self.payment_issuer.bind(job_id, self.amounts, validated, identifier_from_purchaser)
            job = JobRecord(
                job_id=job_id,
                blockchain_identifier=binding.blockchain_identifier,
                status=initial_status,
                input_data=validated,
                submit_result_time=binding.submit_result_time,
                unlock_time=binding.unlock_time,
                external_dispute_unlock_time=binding.external_dispute_unlock_time,
                pay_by_time=binding.pay_by_time,
                amounts=self.amounts,
                agent_identifier=self.agent_identifier,
                seller_vkey=self.seller_vkey,
                identifier_from_purchaser=identifier_from_purchaser,
                input_hash=binding.input_hash,
                payment_status=payment_status,
            )
            try:
                await self.store.create(job)
                break
            except ConflictError as e:
                logger.warning(f"Identifier collision creating job (attempt {attempt}): {e}")
        else:
            raise ConcurrencyError("Could not allocate unique job identifiers")

        logger.info(
            f"Created job {job.job_id} ({initial_status.value}) "
            f"with blockchain_identifier {job.blockchain_identifier[:16]}..."
        )

        if not self.require_payment:
            self._spawn(self.dispatch(job.job_id))
        return job

    async def get_status(self, job_id: str) -> JobRecord:
        """
        Current snapshot of a job.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = await self.store.get(job_id)
        if deadline_expired(job, self.clock()):
            job = await self.enforce_deadline(job_id)
        return job

    async def provide_input(self, job_id: str, extra_input: Dict[str, Any]) -> JobRecord:
        """
        Merge additional input into a job that is awaiting input.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateError: If the job is not awaiting input
            PaymentTimeout: If payment is still outstanding after the deadline (the job is failed)
            InvalidInputError: If the input does not match the requested fields
        """
        async with self._locks.hold(job_id):
            job = await self.store.get(job_id)
            if job.status != JobStatus.AWAITING_INPUT:
                raise InvalidStateError(f"Job {job_id} is {to_wire_status(job.status)}, not awaiting input")
            if deadline_expired(job, self.clock()):
                timeout = payment_timeout(job)
                await self._fail(job_id, str(timeout))
                raise timeout

            if job.input_request:
                validated = self.schema_registry.validate(extra_input, partial=True, fields=job.input_request)
            else:
                # The backend asked for input without naming fields: declared keys keep their types
                validated = self.schema_registry.validate(extra_input, partial=True, allow_extra=True)

            ready = True
            if job.execution_handle:
                try:
                    ready = await self.adapter.provide_input(job.execution_handle, validated)
                except Exception as e:
                    logger.error(f"Execution backend rejected input for job {job_id}: {e}", exc_info=True)
                    return await self._fail(job_id, f"Execution backend rejected input: {e}")

            def change(current: JobRecord) -> JobRecord:
                if current.status != JobStatus.AWAITING_INPUT:
                    raise InvalidStateError(f"Job {job_id} is no longer awaiting input")
                merged = {**current.input_data, **validated}
                if not ready:
                    return current.evolve(input_data=merged)
                if current.payment_status is None or current.is_paid:
                    next_status = JobStatus.RUNNING
                else:
                    next_status = JobStatus.AWAITING_PAYMENT
                return transition(current, next_status, input_data=merged, input_request=None)

            job = await self._mutate(job_id, change)
            logger.info(f"Job {job_id} received input for {sorted(validated)}; now {job.status.value}")
            return job

    async def reconcile_payment(self, job_id: str, evidence: PaymentEvidence) -> JobRecord:
        """
        Apply on-chain payment evidence to a job.

        Deadline first: evidence arriving after submit_result_time fails the
        job whatever it says. Repeated identical evidence is a no-op.
        """
        async with self._locks.hold(job_id):
            job = await self.store.get(job_id)
            if job.is_terminal or job.payment_status != PaymentStatus.AWAITING_PAYMENT:
                return job

            if deadline_expired(job, self.clock()):
                logger.warning(f"Payment evidence for job {job_id} arrived after the deadline")
                return await self._fail(job_id, str(payment_timeout(job)))

            verdict = await self.payment_issuer.verify(job.blockchain_identifier, evidence)
            if verdict != Verification.MATCHED:
                logger.warning(f"Payment evidence for job {job_id} does not match: {evidence.on_chain_state}")
                return job
            if not self._amounts_cover_quote(job, evidence):
                logger.warning(f"Payment for job {job_id} does not cover the quoted amounts")
                return job

            def change(current: JobRecord) -> Optional[JobRecord]:
                if current.is_terminal or current.is_paid:
                    return None
                if current.status == JobStatus.AWAITING_PAYMENT:
                    return transition(current, JobStatus.RUNNING, payment_status=PaymentStatus.PAID)
                return current.evolve(payment_status=PaymentStatus.PAID)

            job = await self._mutate(job_id, change)
            logger.info(f"Payment confirmed for job {job_id}; now {job.status.value}")

            if job.status == JobStatus.RUNNING and not job.execution_handle:
                job = await self._submit(job)
            return job

    async def poll_adapter(self, job_id: str) -> JobRecord:
        """Fold the execution backend's view of a running job into its record"""
        async with self._locks.hold(job_id):
            job = await self.store.get(job_id)
            if job.status != JobStatus.RUNNING:
                return job
            if not job.execution_handle:
                # Interrupted between committing running and storing the handle
                logger.warning(f"Job {job_id} is running without an execution handle; submitting it")
                return await self._submit(job)

            try:
                result = await self.adapter.poll_result(job.execution_handle)
            except Exception as e:
                # Transient; the next sweep polls again
                logger.warning(f"Polling execution backend for job {job_id} failed: {e}")
                return job

            if result.done and result.error is None:
                job = await self._mutate(job_id, self._when_running(
                    lambda current: transition(current, JobStatus.COMPLETED, result=result.output)
                ))
                logger.info(f"Job {job_id} completed successfully")
                if job.status == JobStatus.COMPLETED and job.is_paid:
                    job = await self._submit_result(job)
                await self._release(job)
            elif result.done:
                logger.error(f"Job {job_id} failed in execution backend: {result.error}")
                job = await self._mutate(job_id, self._when_running(
                    lambda current: transition(current, JobStatus.FAILED, error=result.error)
                ))
                await self._release(job)
            elif result.needs_input:
                job = await self._mutate(job_id, self._when_running(
                    lambda current: transition(
                        current, JobStatus.AWAITING_INPUT, input_request=result.input_request
                    )
                ))
                logger.info(f"Job {job_id} is awaiting input")
            elif result.output is not None and result.output != job.result:
                job = await self._mutate(job_id, self._when_running(
                    lambda current: current.evolve(result=result.output)
                ))
            return job

    async def watch_payment(self, job_id: str) -> JobRecord:
        """Ask the payment watcher for evidence and reconcile it"""
        job = await self.store.get(job_id)
        if job.payment_status != PaymentStatus.AWAITING_PAYMENT or job.is_terminal:
            return job
        if deadline_expired(job, self.clock()):
            return await self.enforce_deadline(job_id)
        evidence = await self.payment_issuer.fetch_evidence(job)
        if evidence is None:
            return job
        return await self.reconcile_payment(job_id, evidence)

    async def enforce_deadline(self, job_id: str) -> JobRecord:
        """Fail the job if its payment deadline has passed unpaid"""
        async with self._locks.hold(job_id):
            job = await self.store.get(job_id)
            if not deadline_expired(job, self.clock()):
                return job
            logger.warning(f"Job {job_id} payment deadline expired")
            return await self._fail(job_id, str(payment_timeout(job)))

    async def check_availability(self) -> Dict[str, str]:
        """available/unavailable from backend health and store reachability; never raises"""
        try:
            await self.adapter.health()
        except Exception as e:
            logger.warning(f"Execution backend unavailable: {e}")
            return {"status": "unavailable", "message": f"Execution backend unavailable: {e}"}
        try:
            await self.store.ping()
        except Exception as e:
            logger.warning(f"Job store unavailable: {e}")
            return {"status": "unavailable", "message": f"Job store unavailable: {e}"}
        return {"status": "available", "message": "The server is running smoothly."}

    async def drain(self) -> None:
        """Wait for scheduled dispatches to finish"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.adapter.close()

    # ------------------------------------------------------------------
    # Internals (callers hold the job's lock)
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def dispatch(self, job_id: str) -> None:
        """Start execution of a payment-free job"""
        try:
            async with self._locks.hold(job_id):
                job = await self._mutate(job_id, lambda current: (
                    transition(current, JobStatus.RUNNING) if current.status == JobStatus.PENDING else None
                ))
                if job.status == JobStatus.RUNNING and not job.execution_handle:
                    await self._submit(job)
        except Exception as e:
            logger.error(f"Error dispatching job {job_id}: {e}", exc_info=True)

    async def _submit(self, job: JobRecord) -> JobRecord:
        """Hand a running job to the execution backend; exactly once per job"""
        try:
            handle = await self.adapter.submit(job.job_id, job.input_data)
        except Exception as e:
            logger.error(f"Execution backend rejected job {job.job_id}: {e}", exc_info=True)
            return await self._fail(job.job_id, f"Execution backend rejected job: {e}")

        def change(current: JobRecord) -> Optional[JobRecord]:
            if current.is_terminal or current.execution_handle:
                return None
            return current.evolve(execution_handle=handle)

        updated = await self._mutate(job.job_id, change)
        if updated.execution_handle != handle:
            await self.adapter.cancel(handle)
        return updated

    async def _submit_result(self, job: JobRecord) -> JobRecord:
        """Submit a completed job's result to the payment network"""
        try:
            await self.payment_issuer.submit_result(job, job.result)
        except Exception as e:
            logger.error(f"Failed to submit result for job {job.job_id}: {e}")
            return job
        return await self._mutate(job.job_id, lambda current: (
            current.evolve(payment_status=PaymentStatus.RESULT_SUBMITTED)
            if current.status == JobStatus.COMPLETED else None
        ))

    async def _fail(self, job_id: str, message: str) -> JobRecord:
        job = await self._mutate(job_id, lambda current: (
            None if current.is_terminal else transition(current, JobStatus.FAILED, error=message)
        ))
        await self._release(job)
        return job

    async def _release(self, job: JobRecord) -> None:
        """Drop what the backend and the payment issuer hold for a finished job"""
        if not job.is_terminal:
            return
        if job.execution_handle:
            try:
                await self.adapter.cancel(job.execution_handle)
            except Exception as e:
                logger.warning(f"Failed to release execution handle for job {job.job_id}: {e}")
        try:
            await self.payment_issuer.release(job)
        except Exception as e:
            logger.warning(f"Failed to release payment binding for job {job.job_id}: {e}")

    @staticmethod
    def _when_running(change: Change) -> Change:
        def guarded(current: JobRecord) -> Optional[JobRecord]:
            if current.status != JobStatus.RUNNING:
                return None
            return change(current)
        return guarded

    def _amounts_cover_quote(self, job: JobRecord, evidence: PaymentEvidence) -> bool:
        if evidence.amounts is None:
            return True
        paid: Dict[str, int] = {}
        try:
            for amount in evidence.amounts:
                paid[amount.unit] = paid.get(amount.unit, 0) + int(amount.amount)
        except ValueError:
            return False
        return all(paid.get(quote.unit, 0) >= int(quote.amount) for quote in job.amounts)

    async def _mutate(self, job_id: str, change: Change) -> JobRecord:
        """
        Read, apply change, compare-and-swap; retry on a lost race.

        change returns None to leave the record as it is.
        """
        for attempt in range(1, self.max_attempts + 1):
            current = await self.store.get(job_id)
            updated = change(current)
            if updated is None:
                return current
            try:
                return await self.store.compare_and_swap(job_id, current.status, updated)
            except StaleStateError as e:
                logger.debug(f"Lost update race on job {job_id} (attempt {attempt}): {e}")
        raise ConcurrencyError(f"Job {job_id} changed concurrently {self.max_attempts} times")
