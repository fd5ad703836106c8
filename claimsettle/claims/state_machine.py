"""
Claim lifecycle.

    OPEN -> PENDING_DEPOSIT -> IN_FLIGHT -> PRIVATE_TRANSFER_PENDING -> SUCCESS
                                        \\-> SUCCESS

REFUNDED is reachable from PENDING_DEPOSIT and IN_FLIGHT; EXPIRED and
CANCELLED from any non-terminal state. Terminal states never change.
"""
import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..exceptions import InvalidTransitionError
from ..models import Claim, ClaimStatus, TERMINAL_CLAIM_STATUSES
from ..store import Store
from ..utils import utc_now

logger = logging.getLogger(__name__)

_EXITS = frozenset({ClaimStatus.EXPIRED, ClaimStatus.CANCELLED})

TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    ClaimStatus.OPEN: frozenset({ClaimStatus.PENDING_DEPOSIT}) | _EXITS,
    ClaimStatus.PENDING_DEPOSIT: frozenset({
        ClaimStatus.PENDING_DEPOSIT,
        ClaimStatus.IN_FLIGHT,
        ClaimStatus.REFUNDED,
    }) | _EXITS,
    ClaimStatus.IN_FLIGHT: frozenset({
        ClaimStatus.SUCCESS,
        ClaimStatus.PRIVATE_TRANSFER_PENDING,
        ClaimStatus.REFUNDED,
    }) | _EXITS,
    ClaimStatus.PRIVATE_TRANSFER_PENDING: frozenset({ClaimStatus.SUCCESS}) | _EXITS,
}

SuccessHook = Callable[[Claim], Any]


def can_transition(current: ClaimStatus, target: ClaimStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class ClaimStateMachine:
    """
    Applies claim status changes and their side effects.

    Callers are expected to hold the claim's lock.
    """

    def __init__(self, store: Store, success_hooks: Optional[List[SuccessHook]] = None):
        self.store = store
        self.success_hooks: List[SuccessHook] = list(success_hooks or [])

    def on_success(self, hook: SuccessHook) -> None:
        """Register a callback run after a claim enters SUCCESS"""
        self.success_hooks.append(hook)

    def transition(self, claim_id: str, target: ClaimStatus, **fields: Any) -> Claim:
        """
        Move a claim to ``target``.

        Args:
            claim_id: Claim to update
            target: New status
            **fields: Extra claim fields written with the status

        Returns:
            Updated claim

        Raises:
            InvalidTransitionError: If the move is not allowed
            NotFoundError: If the claim does not exist
        """
        claim = self.store.get_claim(claim_id)
        if not can_transition(claim.status, target):
            raise InvalidTransitionError(claim.status.value, target.value)

        if target == ClaimStatus.SUCCESS:
            fields.setdefault("paid_at", utc_now())
        updated = self.store.update_claim(claim_id, status=target, **fields)
        logger.info(f"Claim {claim_id}: {claim.status.value} -> {target.value}")

        if target == ClaimStatus.SUCCESS:
            self._run_success_hooks(updated)
        return updated

    def _run_success_hooks(self, claim: Claim) -> None:
        for hook in self.success_hooks:
            try:
                hook(claim)
            except Exception as e:
                logger.error(f"Success hook failed for claim {claim.id}: {e}")

    def mark_in_flight(self, claim_id: str) -> Claim:
        claim = self.store.get_claim(claim_id)
        if claim.status == ClaimStatus.IN_FLIGHT:
            return claim
        return self.transition(claim_id, ClaimStatus.IN_FLIGHT)

    def settle(self, claim_id: str) -> Claim:
        """
        Record a completed settlement.

        Walks through IN_FLIGHT if needed, then ends in SUCCESS or, for
        private claims, PRIVATE_TRANSFER_PENDING.
        """
        claim = self.store.get_claim(claim_id)
        if claim.status == ClaimStatus.PENDING_DEPOSIT:
            claim = self.transition(claim_id, ClaimStatus.IN_FLIGHT)
        target = ClaimStatus.PRIVATE_TRANSFER_PENDING if claim.is_private else ClaimStatus.SUCCESS
        return self.transition(claim_id, target)

    def refund(self, claim_id: str) -> Claim:
        return self.transition(claim_id, ClaimStatus.REFUNDED)

    def expire(self, claim_id: str) -> Claim:
        return self.transition(claim_id, ClaimStatus.EXPIRED)

    def cancel(self, claim_id: str) -> Claim:
        """Operator cancellation of a non-terminal claim"""
        return self.transition(claim_id, ClaimStatus.CANCELLED)

    def complete_private_transfer(self, claim_id: str) -> Claim:
        """Mark a private claim paid once the privacy transfer has landed"""
        return self.transition(claim_id, ClaimStatus.SUCCESS)


def is_terminal(status: ClaimStatus) -> bool:
    return status in TERMINAL_CLAIM_STATUSES
