"""
Job lifecycle state machine and the payment deadline rule.
"""

import time
from typing import Any, Optional

from agentic_service.core.errors import InvalidStateError, PaymentTimeout
from agentic_service.schemas.job import JobRecord, JobStatus, PaymentStatus

VALID_TRANSITIONS = {
    JobStatus.PENDING: {
        JobStatus.AWAITING_PAYMENT,
        JobStatus.AWAITING_INPUT,
        JobStatus.RUNNING,
        JobStatus.FAILED,
    },
    JobStatus.AWAITING_PAYMENT: {
        JobStatus.AWAITING_INPUT,
        JobStatus.RUNNING,
        JobStatus.FAILED,
    },
    JobStatus.AWAITING_INPUT: {
        JobStatus.AWAITING_PAYMENT,
        JobStatus.RUNNING,
        JobStatus.FAILED,
    },
    JobStatus.RUNNING: {
        JobStatus.AWAITING_INPUT,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    },
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def can_transition(current: JobStatus, new_status: JobStatus) -> bool:
    return JobStatus(new_status) in VALID_TRANSITIONS[JobStatus(current)]


def transition(job: JobRecord, new_status: JobStatus, **changes: Any) -> JobRecord:
    """
    Validate a status change and return the updated record.

    error is only ever written on the way into failed, and a final result
    only on the way into completed (running may carry a pre-result).
    """
    new_status = JobStatus(new_status)
    if not can_transition(job.status, new_status):
        raise InvalidStateError(
            f"Invalid transition for job {job.job_id}: {job.status.value} -> {new_status.value}"
        )
    if "error" in changes and new_status != JobStatus.FAILED:
        raise InvalidStateError("error can only be set when a job fails")
    if "result" in changes and new_status not in (JobStatus.RUNNING, JobStatus.COMPLETED):
        raise InvalidStateError("result can only be set on a running or completed job")
    return job.evolve(status=new_status, **changes)


def timestamp_seconds(value: int) -> float:
    """Unix time in seconds; the Masumi payment service issues milliseconds"""
    if value > 10 ** 11:
        return value / 1000
    return float(value)


def deadline_expired(job: JobRecord, now: Optional[float] = None) -> bool:
    """
    True if payment is still outstanding after submit_result_time.

    Pure function of (now, record); evaluated by every write path and by the
    background sweep instead of per-job timers. Payment-free jobs never expire.
    """
    if job.is_terminal or job.payment_status != PaymentStatus.AWAITING_PAYMENT:
        return False
    if now is None:
        now = time.time()
    return now > timestamp_seconds(job.submit_result_time)


def payment_timeout(job: JobRecord) -> PaymentTimeout:
    return PaymentTimeout(
        f"Payment deadline expired: submitResultTime {job.submit_result_time} "
        f"elapsed before payment for {job.blockchain_identifier[:16]}... was confirmed"
    )
