"""
Records privacy-preserving attestations for settled claims.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional

from .. import events
from ..commitment import (
    AttestationData, commitment_hex, compute_commitment, generate_nonce, verify_commitment
)
from ..events import PaymentEventLog
from ..exceptions import SettlementError
from ..lock import NOT_ACQUIRED, DistributedLock
from ..models import Claim, ClaimStatus, SessionStatus, VerificationResult
from ..reconcile import ReconciliationJob
from ..store import Store
from .ledger import AttestationLedger

logger = logging.getLogger(__name__)


class AttestationRecorder:
    """
    Builds a claim's commitment and submits it to the ledger at most once.

    ``attest`` is idempotent: the nonce is stored before submission and the
    transaction reference is written with a set-if-absent.
    """

    def __init__(
        self,
        store: Store,
        ledger: Optional[AttestationLedger],
        event_log: PaymentEventLog,
        lock: Optional[DistributedLock] = None,
        lock_ttl: int = 120,
        max_workers: int = 2
    ):
        self.store = store
        self.ledger = ledger
        self.event_log = event_log
        self.lock = lock
        self.lock_ttl = lock_ttl
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="attest")
        self.sweep = ReconciliationJob(
            "attestation-retry", self._missing_attestations, self.attest
        )

    @property
    def configured(self) -> bool:
        return self.ledger is not None

    def execution_ref(self, claim: Claim) -> str:
        """Live intent's quote id, else its deposit address, else the companion transfer, else the claim id"""
        intent = self.store.latest_intent(claim.id, active_only=True)
        if intent is not None:
            if intent.quote_id:
                return intent.quote_id
            if intent.deposit_address:
                return intent.deposit_address
        for session in reversed(self.store.list_sessions(claim.id)):
            if session.status == SessionStatus.COMPLETED and session.transfer_tx_hash:
                return session.transfer_tx_hash
        return claim.id

    def attestation_data(self, claim: Claim) -> AttestationData:
        return AttestationData(
            claim_id=claim.id,
            execution_ref=self.execution_ref(claim),
            amount=str(claim.amount),
            token_symbol=claim.paid_with_token or claim.to_symbol,
            token_chain=claim.paid_with_chain or claim.to_chain,
            recipient_id=claim.recipient_address,
        )

    def attest(self, claim_id: str) -> Optional[str]:
        """
        Record the attestation for a SUCCESS claim if not yet recorded.

        Args:
            claim_id: Claim to attest

        Returns:
            The attestation reference, or None if not recorded this time
        """
        if self.lock is None:
            return self._attest(claim_id)
        result = self.lock.with_lock(f"attest:{claim_id}", self.lock_ttl, lambda: self._attest(claim_id))
        if result is NOT_ACQUIRED:
            logger.debug(f"Attestation for claim {claim_id} already in progress")
            return None
        return result

    def _attest(self, claim_id: str) -> Optional[str]:
        claim = self.store.get_claim(claim_id)
        if claim.status != ClaimStatus.SUCCESS:
            return None
        if claim.attestation_tx_hash:
            return claim.attestation_tx_hash
        if self.ledger is None:
            logger.debug("Claim attestation not configured; skipping on-chain record")
            return None

        nonce = self.store.set_attestation_nonce_if_absent(claim_id, generate_nonce())
        data = self.attestation_data(claim)
        commitment = compute_commitment(data, nonce)

        try:
            existing = self.ledger.get_payment(claim_id)
            if existing is not None:
                if existing.commitment != commitment:
                    raise SettlementError(
                        f"Ledger holds a different commitment for claim {claim_id}"
                    )
                # a previous submission landed but its reference was never stored
                tx_ref = f"on-chain:{claim_id}"
            else:
                tx_ref = self.ledger.record_payment(claim_id, data.execution_ref, commitment)
        except SettlementError as e:
            logger.warning(f"Failed to record attestation for claim {claim_id}: {e}")
            self.event_log.log(claim_id, events.ATTESTATION_FAILED, success=False, error_message=str(e))
            return None

        if not self.store.set_attestation_tx_hash_if_absent(claim_id, tx_ref):
            return self.store.get_claim(claim_id).attestation_tx_hash
        self.event_log.log(claim_id, events.ATTESTATION_SUBMITTED, ref_or_hash=tx_ref)
        logger.info(f"Attestation for claim {claim_id}: {tx_ref} (commitment {commitment_hex(commitment)})")
        return tx_ref

    def _attest_quietly(self, claim_id: str) -> Optional[str]:
        try:
            return self.attest(claim_id)
        except Exception as e:
            logger.error(f"Background attestation for claim {claim_id} failed, left for retry: {e}")
            return None

    def submit_async(self, claim: Claim) -> Future:
        """Attest in the background; used as the claim success hook"""
        return self._pool.submit(self._attest_quietly, claim.id)

    def _missing_attestations(self, limit: int):
        claims = self.store.list_claims(
            status=ClaimStatus.SUCCESS, missing_attestation=True, limit=limit
        )
        return [c.id for c in claims]

    def retry_missing(self, limit: int = 50) -> Dict[str, int]:
        """
        Attest every SUCCESS claim that has no attestation reference.

        Returns:
            ``{"attempted": n, "recorded": m}``
        """
        if self.ledger is None:
            return {"attempted": 0, "recorded": 0}
        return self.sweep.run(limit)

    def verify(self, claim_id: str) -> VerificationResult:
        """
        Recompute a claim's commitment and compare it with the ledger record.

        Raises:
            NotFoundError: If the claim does not exist
        """
        claim = self.store.get_claim(claim_id)
        if not claim.attestation_nonce:
            return VerificationResult(claim_id=claim_id, verified=False, reason="no nonce stored")
        if self.ledger is None:
            return VerificationResult(claim_id=claim_id, verified=False, reason="ledger not configured")

        data = self.attestation_data(claim)
        expected = compute_commitment(data, claim.attestation_nonce)
        record = self.ledger.get_payment(claim_id)
        if record is None:
            return VerificationResult(
                claim_id=claim_id, verified=False,
                expected_commitment=commitment_hex(expected), reason="not recorded on ledger"
            )
        verified = verify_commitment(data, claim.attestation_nonce, record.commitment)
        return VerificationResult(
            claim_id=claim_id,
            verified=verified,
            expected_commitment=commitment_hex(expected),
            onchain_commitment=commitment_hex(record.commitment),
            execution_ref=record.execution_ref,
            timestamp=record.timestamp,
            reason=None if verified else "commitment mismatch",
        )

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
