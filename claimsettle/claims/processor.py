"""
Per-intent processing: expiry checks, status polling and claim transitions.
"""
import logging
from typing import Optional

from .. import events
from ..config import Settings
from ..events import PaymentEventLog
from ..exceptions import (
    LockStoreUnavailableError, PersistenceError, SettlementError, TransientError
)
from ..models import ClaimStatus, ProcessingResult, SettlementIntent
from ..pending import PendingIndex
from ..providers.status import NormalizedStatus, StatusProvider
from ..store import Store
from ..utils import ensure_utc, utc_now
from .state_machine import ClaimStateMachine

logger = logging.getLogger(__name__)


class ClaimProcessor:
    """Drives one settlement intent per call; the caller holds the claim lock"""

    def __init__(
        self,
        store: Store,
        pending: PendingIndex,
        status_provider: StatusProvider,
        state_machine: ClaimStateMachine,
        event_log: PaymentEventLog,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.pending = pending
        self.status_provider = status_provider
        self.state_machine = state_machine
        self.event_log = event_log
        self.settings = settings or Settings()

    def expiry_reason(self, intent: SettlementIntent) -> Optional[str]:
        """Why an intent is dead without asking the provider, or None"""
        now = utc_now()
        if intent.deadline and ensure_utc(intent.deadline) < now:
            return "deadline passed"
        if now - ensure_utc(intent.created_at) > self.settings.max_intent_age:
            return "intent too old"
        return None

    def process_intent(self, intent_id: str) -> ProcessingResult:
        """
        Advance the claim behind one intent.

        Per-item failures are returned in the result; only store outages
        propagate.

        Raises:
            PersistenceError: If the persistence store is unavailable
            LockStoreUnavailableError: If the lock store is unavailable
        """
        claim_id = None
        try:
            intent = self.store.get_intent(intent_id)
            if intent is None:
                self.pending.remove_intent(intent_id)
                return ProcessingResult(ref=intent_id, action="missing", success=False,
                                        error="intent not found")
            claim_id = intent.claim_id
            return self._process(intent)
        except (PersistenceError, LockStoreUnavailableError):
            raise
        except SettlementError as e:
            logger.warning(f"Error processing intent {intent_id}: {e}")
            return ProcessingResult(claim_id=claim_id, ref=intent_id, action="error",
                                    success=False, error=str(e))
        except Exception:
            logger.exception(f"Unexpected error processing intent {intent_id}")
            return ProcessingResult(claim_id=claim_id, ref=intent_id, action="error",
                                    success=False, error="internal error")

    def _result(self, intent: SettlementIntent, action: str, success: bool = True,
                error: Optional[str] = None, tx_hash: Optional[str] = None) -> ProcessingResult:
        return ProcessingResult(claim_id=intent.claim_id, ref=intent.id, action=action,
                                success=success, error=error, tx_hash=tx_hash)

    def _process(self, intent: SettlementIntent) -> ProcessingResult:
        claim = self.store.get_claim(intent.claim_id)

        if intent.superseded:
            self.pending.remove_intent(intent.id)
            return self._result(intent, "superseded")

        if claim.is_terminal or claim.status == ClaimStatus.PRIVATE_TRANSFER_PENDING:
            self.pending.remove_intent(intent.id)
            return self._result(intent, "skipped", error=f"claim is {claim.status.value}")

        reason = self.expiry_reason(intent)
        if reason:
            logger.info(f"Expiring claim {claim.id}: {reason}")
            self.state_machine.expire(claim.id)
            self.pending.remove_intent(intent.id)
            self.event_log.log(claim.id, events.EXPIRED, ref_or_hash=intent.id, error_message=reason)
            return self._result(intent, "expired", error=reason)

        if not intent.deposit_address:
            return self._result(intent, "skipped", error="no deposit address")

        try:
            status = self.status_provider.poll(intent.deposit_address)
        except TransientError as e:
            return self._result(intent, "waiting", error=str(e))

        if status.status != intent.status:
            self.store.update_intent(intent.id, status=status.status, last_status_payload=status.raw)

        if status.normalized == NormalizedStatus.COMPLETE:
            claim = self.state_machine.settle(claim.id)
            self.pending.remove_intent(intent.id)
            self.event_log.log(claim.id, events.PAYMENT_DETECTED, ref_or_hash=status.tx_hash or intent.deposit_address)
            action = "private_transfer_pending" if claim.status == ClaimStatus.PRIVATE_TRANSFER_PENDING else "completed"
            return self._result(intent, action, tx_hash=status.tx_hash)

        if status.normalized == NormalizedStatus.FAILED:
            self.state_machine.refund(claim.id)
            self.pending.remove_intent(intent.id)
            return self._result(intent, "refunded", error=status.status)

        if status.normalized == NormalizedStatus.PROCESSING:
            self.state_machine.mark_in_flight(claim.id)
            return self._result(intent, "processing")

        return self._result(intent, "waiting")
