"""
Claim lifecycle and per-intent processing.
"""
from .state_machine import ClaimStateMachine, TRANSITIONS, can_transition
from .processor import ClaimProcessor

__all__ = ["ClaimStateMachine", "TRANSITIONS", "can_transition", "ClaimProcessor"]
