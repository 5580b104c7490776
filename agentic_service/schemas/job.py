"""
Job-related Pydantic schemas
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Union

from pydantic import BaseModel, Field

from agentic_service.core.errors import InvalidInputError
from agentic_service.schemas.input_schema import SchemaField


class JobStatus(str, Enum):
    """Internal job states"""
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_INPUT = "awaiting_input"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# MIP-003 uses two-word status names on the wire
WIRE_STATUS = {
    JobStatus.PENDING: "pending",
    JobStatus.AWAITING_PAYMENT: "awaiting payment",
    JobStatus.AWAITING_INPUT: "awaiting input",
    JobStatus.RUNNING: "running",
    JobStatus.COMPLETED: "completed",
    JobStatus.FAILED: "failed",
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def to_wire_status(status: JobStatus) -> str:
    return WIRE_STATUS[JobStatus(status)]


class PaymentStatus(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    RESULT_SUBMITTED = "result_submitted"


class Amount(BaseModel):
    """Price component; amount is in the smallest unit (1 unit = 10^-6 of the currency)"""
    amount: str = Field(..., description="Integer amount as string, e.g. '10000000'")
    unit: str = Field(default="lovelace", description="Currency unit")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRecord(BaseModel):
    """
    One job and its payment binding.

    Identity, price quote and payment windows are fixed at creation. Only
    status, input_data (while awaiting input), result, error and the
    bookkeeping fields change afterwards, always through the job store's
    compare-and-swap.
    """
    job_id: str
    blockchain_identifier: str
    status: JobStatus
    input_data: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    error: Optional[str] = None

    submit_result_time: int
    unlock_time: int
    external_dispute_unlock_time: int
    pay_by_time: Optional[int] = None

    amounts: List[Amount] = Field(default_factory=list)
    agent_identifier: Optional[str] = None
    seller_vkey: Optional[str] = None
    identifier_from_purchaser: Optional[str] = None
    input_hash: Optional[str] = None

    payment_status: Optional[PaymentStatus] = None
    execution_handle: Optional[str] = None
    input_request: Optional[List[SchemaField]] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_paid(self) -> bool:
        return self.payment_status in (PaymentStatus.PAID, PaymentStatus.RESULT_SUBMITTED)

    def evolve(self, **changes: Any) -> "JobRecord":
        """Copy of this record with changes applied and updated_at refreshed"""
        changes.setdefault("updated_at", _utcnow())
        return self.model_copy(update=changes, deep=True)


class InputDataItem(BaseModel):
    """Key-value pair for input data (MIP-003 format)"""
    key: str = Field(..., description="Input key as declared by /input_schema")
    value: Any = Field(..., description="Input value (string, number, boolean or object)")


def items_to_dict(input_data: Union[List[InputDataItem], Dict[str, Any]]) -> Dict[str, Any]:
    """Normalize MIP-003 key/value items (or a plain object) into a dict"""
    if isinstance(input_data, dict):
        return dict(input_data)

    merged: Dict[str, Any] = {}
    for item in input_data:
        if item.key in merged:
            raise InvalidInputError(f"Duplicate input key '{item.key}'")
        merged[item.key] = item.value
    return merged


class StartJobRequest(BaseModel):
    """Request model for starting a job (MIP-003 compliant)"""
    identifier_from_purchaser: Optional[str] = Field(None, description="Optional identifier from purchaser")
    input_data: Union[List[InputDataItem], Dict[str, Any]] = Field(..., description="Array of key-value pairs or an object")


class StartJobResponse(BaseModel):
    """Response model for job creation (MIP-003 compliant)"""
    status: str = Field(..., description="Status of the new job")
    job_id: str = Field(..., description="Unique job identifier")
    blockchainIdentifier: str = Field(..., description="Blockchain payment identifier")
    submitResultTime: int = Field(..., description="Time by which the result must be submitted")
    unlockTime: int = Field(..., description="Time when payment unlocks")
    externalDisputeUnlockTime: int = Field(..., description="External dispute unlock time")
    agentIdentifier: Optional[str] = Field(None, description="Agent identifier")
    sellerVKey: Optional[str] = Field(None, description="Seller verification key")
    identifierFromPurchaser: Optional[str] = Field(None, description="Identifier from purchaser")
    amounts: List[Amount] = Field(default_factory=list, description="Payment amounts")
    input_hash: Optional[str] = Field(None, description="Hash of input data")
    payByTime: Optional[int] = Field(None, description="Time by which payment must be made")

    @classmethod
    def from_record(cls, job: JobRecord) -> "StartJobResponse":
        return cls(
            status=to_wire_status(job.status),
            job_id=job.job_id,
            blockchainIdentifier=job.blockchain_identifier,
            submitResultTime=job.submit_result_time,
            unlockTime=job.unlock_time,
            externalDisputeUnlockTime=job.external_dispute_unlock_time,
            agentIdentifier=job.agent_identifier,
            sellerVKey=job.seller_vkey,
            identifierFromPurchaser=job.identifier_from_purchaser,
            amounts=job.amounts,
            input_hash=job.input_hash,
            payByTime=job.pay_by_time,
        )


class StatusResponse(BaseModel):
    """Job status response (MIP-003 compliant)"""
    job_id: str = Field(..., description="Unique job identifier")
    status: str = Field(..., description="Current job status")
    result: Optional[Any] = Field(None, description="Job result, or pre-result while running")
    error: Optional[str] = Field(None, description="Error message if failed")
    input_schema: Optional[List[Dict[str, Any]]] = Field(None, description="Additional input requested while awaiting input")

    @classmethod
    def from_record(cls, job: JobRecord) -> "StatusResponse":
        input_schema = None
        if job.status == JobStatus.AWAITING_INPUT and job.input_request:
            input_schema = [field.to_wire() for field in job.input_request]
        return cls(
            job_id=job.job_id,
            status=to_wire_status(job.status),
            result=job.result,
            error=job.error,
            input_schema=input_schema,
        )


class ProvideInputRequest(BaseModel):
    """Request model for supplying additional input to a job awaiting input"""
    job_id: str = Field(..., description="Job identifier")
    input_data: Union[List[InputDataItem], Dict[str, Any]] = Field(..., description="Array of key-value pairs")


class ProvideInputResponse(BaseModel):
    status: str = "success"
