"""
Payment binding and on-chain evidence schemas
"""

from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from agentic_service.schemas.job import Amount


class PaymentBinding(BaseModel):
    """Identifier and time windows issued for a new job"""
    blockchain_identifier: str
    pay_by_time: Optional[int] = None
    submit_result_time: int
    unlock_time: int
    external_dispute_unlock_time: int
    input_hash: Optional[str] = None


class PaymentEvidence(BaseModel):
    """What the payment watcher observed on chain for one blockchain identifier"""
    blockchain_identifier: str
    on_chain_state: str = Field(..., description="e.g. FundsLocked")
    amounts: Optional[List[Amount]] = None
    tx_hash: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class Verification(str, Enum):
    MATCHED = "matched"
    MISMATCHED = "mismatched"
