"""
Payment binding issuers.

An issuer hands out the blockchain identifier and payment windows for a new
job, reports what the payment watcher has seen on chain, verifies that
evidence, and submits the result once a paid job completes.
"""

import logging
import secrets
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from masumi.config import Config
from masumi.payment import Payment

from agentic_service.core.config import Settings
from agentic_service.core.errors import PaymentServiceError
from agentic_service.schemas.job import Amount, JobRecord
from agentic_service.schemas.payment import PaymentBinding, PaymentEvidence, Verification
from agentic_service.utils.checksum import calculate_input_hash, result_to_string

logger = logging.getLogger(__name__)

# On-chain state reported once the purchaser's funds are locked in the contract
FUNDS_LOCKED = "FundsLocked"


@runtime_checkable
class PaymentIssuer(Protocol):
    async def bind(
        self,
        job_id: str,
        amounts: List[Amount],
        input_data: Dict[str, Any],
        identifier_from_purchaser: str,
    ) -> PaymentBinding:
        ...

    async def verify(self, blockchain_identifier: str, evidence: PaymentEvidence) -> Verification:
        """Must be idempotent: identical evidence always yields the same verdict."""
        ...

    async def fetch_evidence(self, job: JobRecord) -> Optional[PaymentEvidence]:
        ...

    async def submit_result(self, job: JobRecord, result: Any) -> None:
        ...

    async def release(self, job: JobRecord) -> None:
        """Forget per-job state once the job is completed or failed"""
        ...


class LocalPaymentIssuer:
    """
    Issues identifiers and windows locally from configured offsets.

    Evidence arrives through deliver(), called by whatever bridges the
    on-chain watcher into this process (a webhook, a queue consumer, tests).
    """

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.pay_by_window = settings.PAY_BY_WINDOW_SECONDS
        self.submit_result_window = settings.SUBMIT_RESULT_WINDOW_SECONDS
        self.unlock_delay = settings.UNLOCK_DELAY_SECONDS
        self.dispute_window = settings.DISPUTE_WINDOW_SECONDS
        self.clock = clock
        self._issued = set()
        self._inbox: Dict[str, PaymentEvidence] = {}
        self.submitted_results: Dict[str, str] = {}

    async def bind(
        self,
        job_id: str,
        amounts: List[Amount],
        input_data: Dict[str, Any],
        identifier_from_purchaser: str,
    ) -> PaymentBinding:
        blockchain_identifier = secrets.token_hex(32)
        while blockchain_identifier in self._issued:
            blockchain_identifier = secrets.token_hex(32)
        self._issued.add(blockchain_identifier)

        now = int(self.clock())
        submit_result_time = now + self.submit_result_window
        unlock_time = submit_result_time + self.unlock_delay
        binding = PaymentBinding(
            blockchain_identifier=blockchain_identifier,
            pay_by_time=now + self.pay_by_window,
            submit_result_time=submit_result_time,
            unlock_time=unlock_time,
            external_dispute_unlock_time=unlock_time + self.dispute_window,
            input_hash=calculate_input_hash(input_data),
        )
        logger.info(f"Issued payment binding {blockchain_identifier[:16]}... for job {job_id}")
        return binding

    async def verify(self, blockchain_identifier: str, evidence: PaymentEvidence) -> Verification:
        if evidence.blockchain_identifier == blockchain_identifier and evidence.on_chain_state == FUNDS_LOCKED:
            return Verification.MATCHED
        return Verification.MISMATCHED

    def deliver(self, evidence: PaymentEvidence) -> None:
        """Record evidence observed by the on-chain watcher"""
        self._inbox[evidence.blockchain_identifier] = evidence

    async def fetch_evidence(self, job: JobRecord) -> Optional[PaymentEvidence]:
        return self._inbox.get(job.blockchain_identifier)

    async def submit_result(self, job: JobRecord, result: Any) -> None:
        self.submitted_results[job.blockchain_identifier] = result_to_string(result)

    async def release(self, job: JobRecord) -> None:
        self._issued.discard(job.blockchain_identifier)
        self._inbox.pop(job.blockchain_identifier, None)


class MasumiPaymentIssuer:
    """Service for handling Masumi payment operations using Masumi SDK"""

    def __init__(self, settings: Settings):
        if not settings.masumi_configured():
            raise PaymentServiceError("Payment service not fully configured (missing required settings)")
        self.agent_identifier = settings.AGENT_IDENTIFIER
        self.network = settings.NETWORK
        self.config = Config(
            payment_service_url=settings.PAYMENT_SERVICE_URL,
            payment_api_key=settings.PAYMENT_API_KEY
        )
        # Payment instances keyed by blockchain identifier (Masumi pattern)
        self.payment_instances: Dict[str, Payment] = {}

    def _new_payment(self, identifier_from_purchaser: str, input_data: Dict[str, Any]) -> Payment:
        return Payment(
            agent_identifier=self.agent_identifier,
            config=self.config,
            identifier_from_purchaser=identifier_from_purchaser,
            input_data=input_data,
            network=self.network
        )

    def _payment_for(self, job: JobRecord) -> Payment:
        """Get the payment instance for a job, recreating it after a restart"""
        payment = self.payment_instances.get(job.blockchain_identifier)
        if payment is None:
            payment = self._new_payment(job.identifier_from_purchaser or job.job_id, job.input_data)
            payment.payment_ids.add(job.blockchain_identifier)
            self.payment_instances[job.blockchain_identifier] = payment
        return payment

    async def bind(
        self,
        job_id: str,
        amounts: List[Amount],
        input_data: Dict[str, Any],
        identifier_from_purchaser: str,
    ) -> PaymentBinding:
        payment = self._new_payment(identifier_from_purchaser, input_data)
        logger.info("Creating payment request...")
        try:
            payment_request = await payment.create_payment_request()
            data = payment_request["data"]
            blockchain_identifier = data["blockchainIdentifier"]
            binding = PaymentBinding(
                blockchain_identifier=blockchain_identifier,
                pay_by_time=data.get("payByTime"),
                submit_result_time=data["submitResultTime"],
                unlock_time=data["unlockTime"],
                external_dispute_unlock_time=data["externalDisputeUnlockTime"],
                input_hash=payment.input_hash,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentServiceError(f"Unexpected payment request response: {e}") from e
        except Exception as e:
            logger.error(f"Error creating payment request: {e}")
            raise PaymentServiceError(str(e)) from e

        payment.payment_ids.add(blockchain_identifier)
        self.payment_instances[blockchain_identifier] = payment
        logger.info(f"Created payment request with ID: {blockchain_identifier}")
        return binding

    async def fetch_evidence(self, job: JobRecord) -> Optional[PaymentEvidence]:
        payment = self._payment_for(job)
        status = await payment.check_payment_status()
        for entry in (status or {}).get("data", {}).get("Payments", []):
            if entry.get("blockchainIdentifier") != job.blockchain_identifier:
                continue
            state = entry.get("onChainState")
            if not state:
                return None
            funds = entry.get("RequestedFunds") or []
            amounts = [
                Amount(amount=str(f.get("amount")), unit=f.get("unit") or "lovelace")
                for f in funds
            ]
            return PaymentEvidence(
                blockchain_identifier=job.blockchain_identifier,
                on_chain_state=state,
                amounts=amounts or None,
                tx_hash=(entry.get("CurrentTransaction") or {}).get("txHash"),
                raw=entry,
            )
        return None

    async def verify(self, blockchain_identifier: str, evidence: PaymentEvidence) -> Verification:
        """Evidence only counts if it names this identifier with funds locked"""
        if evidence.blockchain_identifier != blockchain_identifier:
            return Verification.MISMATCHED
        if evidence.on_chain_state != FUNDS_LOCKED:
            return Verification.MISMATCHED
        return Verification.MATCHED

    async def submit_result(self, job: JobRecord, result: Any) -> None:
        payment = self._payment_for(job)
        try:
            await payment.complete_payment(job.blockchain_identifier, result_to_string(result))
            logger.info(f"Payment {job.blockchain_identifier[:16]}... completed successfully")
        except Exception as e:
            logger.error(f"Error completing payment: {e}")
            raise PaymentServiceError(str(e)) from e

    async def release(self, job: JobRecord) -> None:
        self.payment_instances.pop(job.blockchain_identifier, None)


def build_payment_issuer(settings: Settings) -> PaymentIssuer:
    """Masumi when configured, otherwise locally issued bindings"""
    if settings.masumi_configured():
        logger.info(f"Using Masumi payment service on {settings.NETWORK}")
        return MasumiPaymentIssuer(settings)
    logger.warning("Masumi payment service not configured; issuing payment bindings locally")
    return LocalPaymentIssuer(settings)
