"""Tests for the job lifecycle orchestrator."""

import asyncio

import pytest

from agentic_service.core.errors import (
    ConcurrencyError,
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    JobNotFoundError,
)
from agentic_service.schemas.job import JobStatus, PaymentStatus
from agentic_service.schemas.payment import PaymentBinding
from agentic_service.services.job_store import InMemoryJobStore
from agentic_service.services.state_machine import transition

from helpers import DEFAULT_INPUT_SCHEMA, UnnamedInputAdapter, funds_locked, poll_until

pytestmark = pytest.mark.asyncio


async def ask_for_option(ctx):
    """Task that needs an 'option' value before it can finish"""
    ctx.report({"stage": "waiting"})
    merged = await ctx.request_input([{"key": "option", "value_type": "string"}])
    return f"{merged['text']}:{merged['option']}"


async def answer(ctx):
    return "42"


async def explode(ctx):
    raise RuntimeError("model crashed")


class TestCreateJob:

    async def test_payment_free_job_starts_pending(self, free_service):
        """A payment-free job is created pending and dispatched to the backend."""
        job = await free_service.create_job({"text": "hello"})

        assert job.status == JobStatus.PENDING
        assert job.payment_status is None
        assert job.job_id
        assert job.blockchain_identifier

        await free_service.drain()
        stored = await free_service.get_status(job.job_id)
        assert stored.status == JobStatus.RUNNING
        assert stored.execution_handle == job.job_id

        done = await poll_until(free_service, job.job_id, JobStatus.COMPLETED)
        assert done.result == "hello"

    async def test_paid_job_awaits_payment(self, paid_service, clock):
        job = await paid_service.create_job({"text": "hello"}, identifier_from_purchaser="buyer-7")

        assert job.status == JobStatus.AWAITING_PAYMENT
        assert job.payment_status == PaymentStatus.AWAITING_PAYMENT
        assert job.identifier_from_purchaser == "buyer-7"
        assert job.submit_result_time == int(clock()) + 3600
        assert job.unlock_time > job.submit_result_time
        assert job.external_dispute_unlock_time > job.unlock_time
        assert job.input_hash
        assert job.execution_handle is None
        assert job.amounts[0].amount == "10000000"

    async def test_identifiers_are_unique(self, paid_service):
        jobs = await asyncio.gather(*(paid_service.create_job({"text": str(i)}) for i in range(20)))
        assert len({job.job_id for job in jobs}) == 20
        assert len({job.blockchain_identifier for job in jobs}) == 20

    async def test_purchaser_identifier_generated(self, paid_service):
        job = await paid_service.create_job({"text": "hello"})
        assert job.identifier_from_purchaser

    async def test_invalid_input_stores_nothing(self, paid_service):
        with pytest.raises(InvalidInputError):
            await paid_service.create_job({"prompt": "hello"})
        assert await paid_service.store.list_by_status(list(JobStatus)) == []

    async def test_identifier_collision_is_retried(self, make_service):
        class CollidingIssuer:
            """Hands out the same identifier twice before a fresh one"""

            def __init__(self):
                self.issued = ["bc-dup", "bc-dup", "bc-fresh"]

            async def bind(self, job_id, amounts, input_data, identifier_from_purchaser):
                return PaymentBinding(
                    blockchain_identifier=self.issued.pop(0),
                    submit_result_time=2_000_000_000,
                    unlock_time=2_000_000_001,
                    external_dispute_unlock_time=2_000_000_002,
                )

            async def release(self, job):
                pass

        service = make_service()
        service.payment_issuer = CollidingIssuer()
        first = await service.create_job({"text": "a"})
        second = await service.create_job({"text": "b"})
        assert first.blockchain_identifier == "bc-dup"
        assert second.blockchain_identifier == "bc-fresh"
        await service.aclose()

    async def test_identifier_collisions_exhaust_retries(self, make_service):
        class FailingStore(InMemoryJobStore):
            async def create(self, record):
                raise ConflictError("taken")

        service = make_service(store=FailingStore(), CAS_MAX_ATTEMPTS=3)
        with pytest.raises(ConcurrencyError):
            await service.create_job({"text": "hello"})
        await service.aclose()


class TestGetStatus:

    async def test_unknown_job(self, paid_service):
        with pytest.raises(JobNotFoundError):
            await paid_service.get_status("unknown-id")

    async def test_expired_payment_fails_on_read(self, paid_service, clock):
        job = await paid_service.create_job({"text": "hello"})
        clock.advance(3601)

        status = await paid_service.get_status(job.job_id)
        assert status.status == JobStatus.FAILED
        assert "deadline" in status.error.lower()


class TestPayment:

    async def test_confirmed_payment_starts_execution(self, make_service):
        service = make_service(task=answer)
        job = await service.create_job({"text": "hello"})

        running = await service.reconcile_payment(job.job_id, funds_locked(job))
        assert running.status == JobStatus.RUNNING
        assert running.payment_status == PaymentStatus.PAID
        assert running.execution_handle

        done = await poll_until(service, job.job_id, JobStatus.COMPLETED)
        assert done.result == "42"
        assert done.payment_status == PaymentStatus.RESULT_SUBMITTED
        assert service.payment_issuer.submitted_results[job.blockchain_identifier] == "42"
        await service.aclose()

    async def test_repeated_evidence_is_noop(self, paid_service):
        job = await paid_service.create_job({"text": "hello"})
        first = await paid_service.reconcile_payment(job.job_id, funds_locked(job))
        second = await paid_service.reconcile_payment(job.job_id, funds_locked(job))
        assert second.execution_handle == first.execution_handle
        assert second.status == first.status

    async def test_mismatched_evidence_ignored(self, paid_service):
        job = await paid_service.create_job({"text": "hello"})
        other = await paid_service.reconcile_payment(
            job.job_id, funds_locked(job, blockchain_identifier="someone-else")
        )
        assert other.status == JobStatus.AWAITING_PAYMENT

        pending = await paid_service.reconcile_payment(job.job_id, funds_locked(job, on_chain_state="FundsOrDatumInvalid"))
        assert pending.status == JobStatus.AWAITING_PAYMENT

    async def test_underpayment_ignored(self, paid_service):
        job = await paid_service.create_job({"text": "hello"})
        evidence = funds_locked(job, amounts=[{"amount": "1", "unit": "lovelace"}])
        assert (await paid_service.reconcile_payment(job.job_id, evidence)).status == JobStatus.AWAITING_PAYMENT

    async def test_late_payment_fails_job(self, paid_service, clock):
        """Evidence after submitResultTime fails the job even when it is valid."""
        job = await paid_service.create_job({"text": "hello"})
        clock.advance(3601)

        failed = await paid_service.reconcile_payment(job.job_id, funds_locked(job))
        assert failed.status == JobStatus.FAILED
        assert "deadline" in failed.error.lower()
        assert failed.execution_handle is None

    async def test_watch_payment_uses_delivered_evidence(self, paid_service):
        job = await paid_service.create_job({"text": "hello"})
        assert (await paid_service.watch_payment(job.job_id)).status == JobStatus.AWAITING_PAYMENT

        paid_service.payment_issuer.deliver(funds_locked(job))
        assert (await paid_service.watch_payment(job.job_id)).status == JobStatus.RUNNING

    async def test_enforce_deadline(self, paid_service, clock):
        job = await paid_service.create_job({"text": "hello"})
        assert (await paid_service.enforce_deadline(job.job_id)).status == JobStatus.AWAITING_PAYMENT
        clock.advance(3601)
        assert (await paid_service.enforce_deadline(job.job_id)).status == JobStatus.FAILED

    async def test_failed_job_releases_payment_state(self, paid_service, clock):
        job = await paid_service.create_job({"text": "hello"})
        paid_service.payment_issuer.deliver(funds_locked(job))
        clock.advance(3601)

        assert (await paid_service.enforce_deadline(job.job_id)).status == JobStatus.FAILED
        assert await paid_service.payment_issuer.fetch_evidence(job) is None

    async def test_payment_and_deadline_race_single_terminal(self, paid_service, clock):
        job = await paid_service.create_job({"text": "hello"})
        clock.advance(3601)

        await asyncio.gather(
            paid_service.reconcile_payment(job.job_id, funds_locked(job)),
            paid_service.enforce_deadline(job.job_id),
            paid_service.get_status(job.job_id),
        )
        final = await paid_service.get_status(job.job_id)
        assert final.status == JobStatus.FAILED
        assert final.payment_status == PaymentStatus.AWAITING_PAYMENT


class TestExecution:

    async def test_completed_job_never_changes(self, free_service, clock):
        job = await free_service.create_job({"text": "hello"})
        await free_service.drain()
        done = await poll_until(free_service, job.job_id, JobStatus.COMPLETED)

        clock.advance(10 ** 6)
        again = await free_service.poll_adapter(job.job_id)
        assert again.status == JobStatus.COMPLETED
        assert again.result == done.result
        with pytest.raises(InvalidStateError):
            await free_service.provide_input(job.job_id, {"option": "fast"})

    async def test_backend_failure_fails_job(self, make_service):
        service = make_service(task=explode, REQUIRE_PAYMENT=False)
        job = await service.create_job({"text": "hello"})
        await service.drain()

        failed = await poll_until(service, job.job_id, JobStatus.FAILED)
        assert "model crashed" in failed.error
        assert failed.result is None
        await service.aclose()

    async def test_rejected_submission_fails_job(self, make_service):
        service = make_service(REQUIRE_PAYMENT=False)
        await service.adapter.close()
        job = await service.create_job({"text": "hello"})
        await service.drain()

        failed = await service.get_status(job.job_id)
        assert failed.status == JobStatus.FAILED
        assert "rejected" in failed.error
        await service.aclose()

    async def test_running_job_without_handle_is_submitted(self, paid_service):
        """A job committed as running whose submission never happened is submitted on the next poll."""
        job = await paid_service.create_job({"text": "hello"})
        stranded = transition(job, JobStatus.RUNNING, payment_status=PaymentStatus.PAID)
        await paid_service.store.compare_and_swap(job.job_id, JobStatus.AWAITING_PAYMENT, stranded)

        submitted = await paid_service.poll_adapter(job.job_id)
        assert submitted.status == JobStatus.RUNNING
        assert submitted.execution_handle == job.job_id

        done = await poll_until(paid_service, job.job_id, JobStatus.COMPLETED)
        assert done.result == "hello"
        assert done.payment_status == PaymentStatus.RESULT_SUBMITTED

    async def test_running_job_without_handle_fails_when_backend_refuses(self, paid_service):
        job = await paid_service.create_job({"text": "hello"})
        stranded = transition(job, JobStatus.RUNNING, payment_status=PaymentStatus.PAID)
        await paid_service.store.compare_and_swap(job.job_id, JobStatus.AWAITING_PAYMENT, stranded)
        await paid_service.adapter.close()

        failed = await paid_service.poll_adapter(job.job_id)
        assert failed.status == JobStatus.FAILED
        assert "rejected" in failed.error

    async def test_pre_result_visible_while_running(self, make_service):
        release = asyncio.Event()

        async def slow(ctx):
            ctx.report({"progress": 0.5})
            await release.wait()
            return "done"

        service = make_service(task=slow, REQUIRE_PAYMENT=False)
        job = await service.create_job({"text": "hello"})
        await service.drain()
        await asyncio.sleep(0.01)

        running = await service.poll_adapter(job.job_id)
        assert running.status == JobStatus.RUNNING
        assert running.result == {"progress": 0.5}

        release.set()
        done = await poll_until(service, job.job_id, JobStatus.COMPLETED)
        assert done.result == "done"
        await service.aclose()

    async def test_concurrent_polls_single_completion(self, make_service):
        service = make_service(task=answer)
        job = await service.create_job({"text": "hello"})
        await service.reconcile_payment(job.job_id, funds_locked(job))
        await asyncio.sleep(0.01)

        await asyncio.gather(*(service.poll_adapter(job.job_id) for _ in range(5)))
        final = await service.get_status(job.job_id)
        assert final.status == JobStatus.COMPLETED
        assert final.payment_status == PaymentStatus.RESULT_SUBMITTED
        assert list(service.payment_issuer.submitted_results) == [job.blockchain_identifier]
        await service.aclose()


class TestProvideInput:

    async def _awaiting_input(self, service):
        job = await service.create_job({"text": "hello"})
        await service.reconcile_payment(job.job_id, funds_locked(job))
        return await poll_until(service, job.job_id, JobStatus.AWAITING_INPUT)

    async def test_input_resumes_job(self, make_service):
        service = make_service(task=ask_for_option)
        waiting = await self._awaiting_input(service)
        assert [f.key for f in waiting.input_request] == ["option"]

        resumed = await service.provide_input(waiting.job_id, {"option": "fast"})
        assert resumed.status == JobStatus.RUNNING
        assert resumed.input_data == {"text": "hello", "option": "fast"}
        assert resumed.input_request is None

        done = await poll_until(service, waiting.job_id, JobStatus.COMPLETED)
        assert done.result == "hello:fast"
        await service.aclose()

    async def test_input_must_match_request(self, make_service):
        service = make_service(task=ask_for_option)
        waiting = await self._awaiting_input(service)

        with pytest.raises(InvalidInputError):
            await service.provide_input(waiting.job_id, {"option": 3})
        with pytest.raises(InvalidInputError):
            await service.provide_input(waiting.job_id, {"colour": "red"})
        assert (await service.get_status(waiting.job_id)).status == JobStatus.AWAITING_INPUT
        await service.aclose()

    async def test_unnamed_input_request_accepts_new_keys(self, make_service):
        """With only 'text' declared, a backend that names no fields still gets the extra option."""
        service = make_service(INPUT_SCHEMA=DEFAULT_INPUT_SCHEMA)
        service.adapter = UnnamedInputAdapter()
        waiting = await self._awaiting_input(service)
        assert waiting.input_request is None

        with pytest.raises(InvalidInputError):
            await service.provide_input(waiting.job_id, {"text": 3})

        resumed = await service.provide_input(waiting.job_id, {"option": "fast"})
        assert resumed.status == JobStatus.RUNNING
        assert resumed.input_data == {"text": "hello", "option": "fast"}

        done = await poll_until(service, waiting.job_id, JobStatus.COMPLETED)
        assert done.result == {"option": "fast"}
        await service.aclose()

    async def test_wrong_state_leaves_job_unchanged(self, paid_service):
        job = await paid_service.create_job({"text": "hello"})
        with pytest.raises(InvalidStateError):
            await paid_service.provide_input(job.job_id, {"option": "fast"})

        unchanged = await paid_service.get_status(job.job_id)
        assert unchanged.status == JobStatus.AWAITING_PAYMENT
        assert unchanged.input_data == {"text": "hello"}

    async def test_unknown_job(self, paid_service):
        with pytest.raises(JobNotFoundError):
            await paid_service.provide_input("unknown-id", {"option": "fast"})

    async def test_concurrent_input_serialized(self, make_service):
        async def ask_for_two(ctx):
            merged = await ctx.request_input([
                {"key": "option", "value_type": "string"},
                {"key": "mode", "value_type": "string"},
            ])
            return f"{merged['option']}/{merged['mode']}"

        settings_schema = [
            {"key": "text", "value_type": "string"},
            {"key": "option", "value_type": "string", "required": False},
            {"key": "mode", "value_type": "string", "required": False},
        ]
        service = make_service(task=ask_for_two, INPUT_SCHEMA=settings_schema)
        waiting = await self._awaiting_input(service)

        outcomes = await asyncio.gather(
            service.provide_input(waiting.job_id, {"option": "fast"}),
            service.provide_input(waiting.job_id, {"mode": "cheap"}),
            return_exceptions=True,
        )
        assert not any(isinstance(o, Exception) for o in outcomes)

        job = await service.get_status(waiting.job_id)
        assert job.status == JobStatus.RUNNING
        assert job.input_data == {"text": "hello", "option": "fast", "mode": "cheap"}

        done = await poll_until(service, waiting.job_id, JobStatus.COMPLETED)
        assert done.result == "fast/cheap"
        await service.aclose()


class TestAvailability:

    async def test_available(self, paid_service):
        assert (await paid_service.check_availability())["status"] == "available"

    async def test_backend_down(self, paid_service):
        await paid_service.adapter.close()
        availability = await paid_service.check_availability()
        assert availability["status"] == "unavailable"
        assert availability["message"]

    async def test_store_down(self, paid_service):
        async def broken_ping():
            raise ConnectionError("database gone")

        paid_service.store.ping = broken_ping
        availability = await paid_service.check_availability()
        assert availability["status"] == "unavailable"
        assert "database gone" in availability["message"]
