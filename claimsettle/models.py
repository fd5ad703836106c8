"""
Data models for the claim settlement orchestrator.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ClaimStatus(str, Enum):
    """Lifecycle states of a claim"""
    OPEN = "OPEN"
    PENDING_DEPOSIT = "PENDING_DEPOSIT"
    IN_FLIGHT = "IN_FLIGHT"
    PRIVATE_TRANSFER_PENDING = "PRIVATE_TRANSFER_PENDING"
    SUCCESS = "SUCCESS"
    REFUNDED = "REFUNDED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


TERMINAL_CLAIM_STATUSES = frozenset({
    ClaimStatus.SUCCESS,
    ClaimStatus.REFUNDED,
    ClaimStatus.EXPIRED,
    ClaimStatus.CANCELLED,
})


class SessionStatus(str, Enum):
    """Lifecycle states of a companion wallet session"""
    PENDING_DEPOSIT = "pending_deposit"
    FUNDED = "funded"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


TERMINAL_SESSION_STATUSES = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.REFUNDED,
    SessionStatus.FAILED,
})


class Claim(BaseModel):
    """A payment obligation: pay `recipient_address` `amount` USD in `to_symbol` on `to_chain`"""
    id: str
    amount: str
    to_symbol: str
    to_chain: str
    recipient_address: str
    created_by: Optional[str] = None
    description: Optional[str] = None
    status: ClaimStatus = ClaimStatus.OPEN
    is_private: bool = False
    paid_at: Optional[datetime] = None
    attestation_tx_hash: Optional[str] = None
    attestation_nonce: Optional[str] = None
    paid_with_token: Optional[str] = None
    paid_with_chain: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CLAIM_STATUSES


class SettlementIntent(BaseModel):
    """One attempt to fulfill a claim through an external settlement rail"""
    id: str
    claim_id: str
    quote_id: Optional[str] = None
    deposit_address: Optional[str] = None
    memo: Optional[str] = None
    deadline: Optional[datetime] = None
    time_estimate: Optional[int] = None
    status: str = "PENDING_DEPOSIT"
    from_chain: Optional[str] = None
    to_chain: Optional[str] = None
    paid_amount: Optional[str] = None
    last_status_payload: Optional[Dict[str, Any]] = None
    superseded: bool = False
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class CompanionSession(BaseModel):
    """
    An ephemeral wallet that receives, converts and forwards funds for a
    same-chain token mismatch.

    The private key only exists here in sealed form (`encrypted_key`).
    """
    session_key: str
    claim_id: Optional[str] = None
    organization_id: Optional[str] = None
    address: str
    encrypted_key: Optional[Dict[str, Any]] = None
    chain_id: int
    from_token: str
    from_token_address: Optional[str] = None
    from_decimals: int
    to_token: str
    to_token_address: Optional[str] = None
    to_decimals: int
    to_amount: str
    amount_usd: str
    required_amount: int
    recipient_address: str
    refund_address: Optional[str] = None
    fee_amount: int = 0
    fee_recipient: Optional[str] = None
    status: SessionStatus = SessionStatus.PENDING_DEPOSIT
    amount_received: Optional[int] = None
    fee_tx_hash: Optional[str] = None
    swap_tx_hash: Optional[str] = None
    transfer_tx_hash: Optional[str] = None
    refund_tx_hash: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    @property
    def lock_key(self) -> str:
        if self.claim_id:
            return f"claim:{self.claim_id}"
        return f"org:{self.organization_id}"


class PaymentEvent(BaseModel):
    """Audit record of a claim lifecycle event (no amounts or recipients)"""
    claim_id: str
    event_type: str
    success: bool = True
    ref_or_hash: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class ProcessingResult(BaseModel):
    """Outcome of processing one pending-work item during a tick"""
    claim_id: Optional[str] = None
    ref: str
    kind: str = "intent"
    action: str
    success: bool = True
    error: Optional[str] = None
    tx_hash: Optional[str] = None

    class Config:
        use_enum_values = True


class DepositInstructions(BaseModel):
    """What the payer must send, and where"""
    claim_id: str
    deposit_address: str
    amount: str
    token: str
    chain: str
    memo: Optional[str] = None
    deadline: Optional[datetime] = None
    time_estimate: Optional[int] = None
    route: str = "intent"


class VerificationResult(BaseModel):
    """Result of recomputing a claim's commitment and comparing it with the ledger"""
    claim_id: str
    verified: bool
    expected_commitment: Optional[str] = None
    onchain_commitment: Optional[str] = None
    execution_ref: Optional[str] = None
    timestamp: Optional[int] = None
    reason: Optional[str] = None
