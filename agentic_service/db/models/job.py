"""
Job database model
Stores job records, their payment binding and lifecycle status
"""

from typing import Dict, Any

from sqlalchemy import Column, String, Text, DateTime, BigInteger, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from agentic_service.db.base import Base
from agentic_service.schemas.job import JobRecord

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")

# Columns a compare-and-swap never rewrites
IMMUTABLE_COLUMNS = frozenset({
    "job_id",
    "blockchain_identifier",
    "submit_result_time",
    "unlock_time",
    "external_dispute_unlock_time",
    "pay_by_time",
    "amounts",
    "agent_identifier",
    "seller_vkey",
    "identifier_from_purchaser",
    "input_hash",
    "created_at",
})


class Job(Base):
    """
    Model for storing job records.

    status is the compare-and-swap column: every update is conditioned on
    the status the writer last read.
    """
    __tablename__ = "jobs"

    # Primary key
    job_id = Column(String(36), primary_key=True)  # UUID

    # Payment binding (Masumi blockchain identifiers can be very long)
    blockchain_identifier = Column(Text, nullable=False)
    pay_by_time = Column(BigInteger, nullable=True)
    submit_result_time = Column(BigInteger, nullable=False)
    unlock_time = Column(BigInteger, nullable=False)
    external_dispute_unlock_time = Column(BigInteger, nullable=False)
    amounts = Column(JSONType, nullable=False)
    agent_identifier = Column(Text, nullable=True)
    seller_vkey = Column(Text, nullable=True)
    identifier_from_purchaser = Column(String(255), nullable=True)
    input_hash = Column(String(64), nullable=True)
    payment_status = Column(String(20), nullable=True)

    # Job data
    status = Column(String(20), nullable=False)
    input_data = Column(JSONType, nullable=False)
    input_request = Column(JSONType, nullable=True)
    execution_handle = Column(Text, nullable=True)

    # Results
    result = Column(JSONType, nullable=True)
    error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_jobs_blockchain_id", "blockchain_identifier", unique=True),
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_payment_status", "payment_status"),
        Index("idx_jobs_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<Job(job_id='{self.job_id}', status='{self.status}')>"

    def to_record(self) -> JobRecord:
        return JobRecord.model_validate({
            column.name: getattr(self, column.name) for column in self.__table__.columns
        })


def record_to_row(record: JobRecord) -> Dict[str, Any]:
    """Column values for a JobRecord"""
    return record.model_dump(mode="json") | {
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }
