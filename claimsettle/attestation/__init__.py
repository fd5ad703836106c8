"""
On-chain attestation of settled claims.
"""
from .ledger import AttestationLedger, LedgerRecord, Web3AttestationLedger
from .recorder import AttestationRecorder

__all__ = ["AttestationLedger", "LedgerRecord", "Web3AttestationLedger", "AttestationRecorder"]
