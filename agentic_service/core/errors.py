"""
Error classes for the job orchestrator.

Validation and lookup errors surface immediately to the caller. State races
(ConflictError, StaleStateError) are retried inside the orchestrator and only
reach the API as ConcurrencyError once the retry budget is spent. Adapter and
payment failures are recorded into the job's terminal state instead of being
raised to the request that triggered them.
"""


class AgenticServiceError(Exception):
    """Base exception for the agentic service."""
    pass


class InvalidInputError(AgenticServiceError):
    """Input document does not match the input schema. Permanent, never retried."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class JobNotFoundError(AgenticServiceError):
    """No job record exists for the given job_id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidStateError(AgenticServiceError):
    """Operation is not legal for the job's current status."""
    pass


class ConflictError(AgenticServiceError):
    """A record with the same job_id or blockchain identifier already exists."""
    pass


class StaleStateError(AgenticServiceError):
    """The stored status no longer matches the status a write was based on."""
    pass


class ConcurrencyError(AgenticServiceError):
    """Compare-and-swap retries exhausted."""
    pass


class AdapterFailure(AgenticServiceError):
    """The execution backend rejected or failed a job."""
    pass


class PaymentTimeout(InvalidStateError):
    """submitResultTime elapsed before payment was confirmed."""
    pass


class PaymentServiceError(AgenticServiceError):
    """The payment network could not issue or check a payment binding."""
    pass


class UnavailableError(AgenticServiceError):
    """A dependency (execution backend, job store) is unreachable."""
    pass
