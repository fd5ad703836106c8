"""
Exceptions for the claim settlement orchestrator.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """
    Error classes used to decide how a failure is handled.

    The orchestration loop only aborts a tick for LOCK_STORE_UNAVAILABLE and
    PERSISTENCE_UNAVAILABLE; every other kind is recorded on the item.
    """
    TRANSIENT = "TRANSIENT"
    VALIDATION = "VALIDATION"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"
    EXPIRED = "EXPIRED"
    TOO_OLD = "TOO_OLD"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    LOCK_STORE_UNAVAILABLE = "LOCK_STORE_UNAVAILABLE"
    PERSISTENCE_UNAVAILABLE = "PERSISTENCE_UNAVAILABLE"
    NOT_FOUND = "NOT_FOUND"
    CONFIGURATION = "CONFIGURATION"


class SettlementError(Exception):
    """Base exception for settlement errors."""

    kind: ErrorKind = ErrorKind.EXECUTION_FAILED

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        super().__init__(message)


class TransientError(SettlementError):
    """Raised on network or timeout errors; the caller keeps prior state."""
    kind = ErrorKind.TRANSIENT


class InputValidationError(SettlementError):
    """Raised when a creation call receives bad input."""
    kind = ErrorKind.VALIDATION


class InvalidTransitionError(InputValidationError):
    """Raised when a claim status change is not in the transition table."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid claim transition {current} -> {target}")


class InsufficientFundsError(SettlementError):
    """Raised when a companion wallet holds less than the required amount."""
    kind = ErrorKind.INSUFFICIENT_FUNDS


class PriceUnavailableError(SettlementError):
    """Raised when no usable price exists for a token."""
    kind = ErrorKind.PRICE_UNAVAILABLE


class ExecutionFailedError(SettlementError):
    """Raised when a swap, transfer or submission fails."""
    kind = ErrorKind.EXECUTION_FAILED


class LedgerError(ExecutionFailedError):
    """Raised when an attestation ledger call fails."""
    pass


class ProviderError(SettlementError):
    """Raised when an external provider returns an error response."""

    kind = ErrorKind.EXECUTION_FAILED

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class LockStoreUnavailableError(SettlementError):
    """Raised when the lock store cannot be reached."""
    kind = ErrorKind.LOCK_STORE_UNAVAILABLE


class PersistenceError(SettlementError):
    """Raised when the persistence store cannot be read or written."""
    kind = ErrorKind.PERSISTENCE_UNAVAILABLE


class NotFoundError(SettlementError):
    """Raised when a claim, intent or session does not exist."""
    kind = ErrorKind.NOT_FOUND


class ConfigurationError(SettlementError):
    """Raised when required configuration is missing or invalid."""
    kind = ErrorKind.CONFIGURATION
