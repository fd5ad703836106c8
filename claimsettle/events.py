"""
Audit log of claim lifecycle events.

Events carry references and outcomes only; amounts, tokens and recipients
stay out of the log.
"""
import logging
from typing import Optional

from .exceptions import PersistenceError
from .models import PaymentEvent
from .store import Store

logger = logging.getLogger(__name__)

CLAIM_CREATED = "claim_created"
DEPOSIT_ISSUED = "deposit_issued"
PAYMENT_DETECTED = "payment_detected"
ATTESTATION_SUBMITTED = "attestation_submitted"
ATTESTATION_FAILED = "attestation_failed"
QUOTE_FAILED = "quote_failed"
EXECUTION_FAILED = "execution_failed"
REFUND_SENT = "refund_sent"
EXPIRED = "expired"


class PaymentEventLog:
    """Writes payment events to the log and the store"""

    def __init__(self, store: Store, logger_instance: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger_instance or logger

    def log(
        self,
        claim_id: str,
        event_type: str,
        success: bool = True,
        ref_or_hash: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> PaymentEvent:
        event = PaymentEvent(
            claim_id=claim_id,
            event_type=event_type,
            success=success,
            ref_or_hash=ref_or_hash,
            error_message=error_message[:500] if error_message else None,
        )
        line = f"[payment_event] claim_id={claim_id} event_type={event_type} success={success}"
        if ref_or_hash:
            line += f" ref={ref_or_hash}"
        if success:
            self.logger.info(line)
        else:
            self.logger.warning(f"{line} error={event.error_message}")
        try:
            self.store.record_event(event)
        except PersistenceError as e:
            # the log line above is the fallback record
            self.logger.error(f"Failed to persist payment event for {claim_id}: {e}")
        return event
