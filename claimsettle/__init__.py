"""
claimsettle - settle payment claims through deposit intents or companion
wallets, then attest each settlement on-chain without revealing its amount,
token or recipient.
"""
from .version import __version__
from .app import Application, build_application
from .attestation import AttestationLedger, AttestationRecorder, Web3AttestationLedger
from .claims import ClaimProcessor, ClaimStateMachine
from .claims.service import ClaimService
from .commitment import AttestationData, compute_commitment, verify_commitment
from .companion import CompanionWalletManager
from .config import Settings
from .exceptions import SettlementError, ErrorKind
from .lock import DistributedLock
from .models import Claim, ClaimStatus, CompanionSession, SessionStatus, SettlementIntent
from .orchestrator import Scheduler, SettlementOrchestrator

__all__ = [
    "__version__",
    "Application",
    "build_application",
    "AttestationLedger",
    "AttestationRecorder",
    "Web3AttestationLedger",
    "ClaimProcessor",
    "ClaimStateMachine",
    "ClaimService",
    "AttestationData",
    "compute_commitment",
    "verify_commitment",
    "CompanionWalletManager",
    "Settings",
    "SettlementError",
    "ErrorKind",
    "DistributedLock",
    "Claim",
    "ClaimStatus",
    "CompanionSession",
    "SessionStatus",
    "SettlementIntent",
    "Scheduler",
    "SettlementOrchestrator",
]
