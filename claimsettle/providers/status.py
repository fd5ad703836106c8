"""
Settlement status polling and normalization.

Every provider-specific status string is mapped in ``normalize_status``;
new provider quirks belong there and nowhere else.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

import requests

from .._rate_limited_log import rate_limited_log
from ..exceptions import ProviderError, TransientError
from ..utils import truncate_address, validate_service_url
from ._http import build_session

logger = logging.getLogger(__name__)


class NormalizedStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


STATUS_MAP: Dict[str, NormalizedStatus] = {
    "PENDING_DEPOSIT": NormalizedStatus.PENDING,
    "PENDING": NormalizedStatus.PENDING,
    "WAITING": NormalizedStatus.PENDING,
    "KNOWN_DEPOSIT_TX": NormalizedStatus.PROCESSING,
    "PROCESSING": NormalizedStatus.PROCESSING,
    "DEPOSITED": NormalizedStatus.PROCESSING,
    "SWAPPED": NormalizedStatus.PROCESSING,
    "SUCCESS": NormalizedStatus.COMPLETE,
    "COMPLETED": NormalizedStatus.COMPLETE,
    "FILLED": NormalizedStatus.COMPLETE,
    "FAILED": NormalizedStatus.FAILED,
    "EXPIRED": NormalizedStatus.FAILED,
    "CANCELLED": NormalizedStatus.FAILED,
    "REFUNDED": NormalizedStatus.FAILED,
    "INCOMPLETE_DEPOSIT": NormalizedStatus.FAILED,
}


@dataclass
class StatusResult:
    """Normalized view of one status poll"""
    status: str
    normalized: NormalizedStatus
    tx_hash: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.normalized == NormalizedStatus.COMPLETE

    @property
    def is_failed(self) -> bool:
        return self.normalized == NormalizedStatus.FAILED


def raw_status_of(payload: Dict[str, Any]) -> str:
    value = payload.get("status") or payload.get("executionStatus") or payload.get("state") or "UNKNOWN"
    return str(value).upper()


def _positive(value: Any) -> bool:
    if value is None or value == "":
        return False
    try:
        return Decimal(str(value)) > 0
    except InvalidOperation:
        return False


def normalize_status(payload: Dict[str, Any]) -> NormalizedStatus:
    """
    Map a raw provider status payload to the internal vocabulary.

    Unknown statuses count as pending. An ``INCOMPLETE_DEPOSIT`` that already
    shows a deposited amount but no expected amount is a provider
    inconsistency, not a failure, and maps to processing.

    Args:
        payload: Raw JSON body from the status endpoint

    Returns:
        Normalized status
    """
    raw = raw_status_of(payload)
    details = payload.get("swapDetails") or payload

    if raw == "INCOMPLETE_DEPOSIT":
        deposited = details.get("depositedAmountFormatted") or details.get("depositedAmount")
        expected = details.get("amountInFormatted")
        if _positive(deposited) and (expected is None or expected == ""):
            return NormalizedStatus.PROCESSING

    return STATUS_MAP.get(raw, NormalizedStatus.PENDING)


def extract_tx_hash(payload: Dict[str, Any]) -> Optional[str]:
    """Pick the destination transaction hash out of a status payload, if any"""
    details = payload.get("swapDetails") or payload
    for source in (payload, details):
        for name in ("txHash", "transactionHash", "withdrawTxHash"):
            value = source.get(name)
            if isinstance(value, str) and value:
                return value
    for name in ("destinationChainTxHashes", "withdrawTxHashes"):
        hashes = details.get(name)
        if isinstance(hashes, list) and hashes:
            first = hashes[0]
            if isinstance(first, dict):
                first = first.get("hash")
            if isinstance(first, str) and first:
                return first
    return None


def to_status_result(payload: Dict[str, Any]) -> StatusResult:
    return StatusResult(
        status=raw_status_of(payload),
        normalized=normalize_status(payload),
        tx_hash=extract_tx_hash(payload),
        raw=payload,
    )


class StatusProvider(ABC):
    """Source of settlement status by deposit address"""

    @abstractmethod
    def poll(self, deposit_address: str) -> StatusResult:
        """
        Fetch and normalize the status of a deposit.

        Raises:
            TransientError: On network errors, timeouts and 5xx responses
            ProviderError: On any other provider error
        """
        pass


class OneClickStatusProvider(StatusProvider):
    """Status client for the 1-Click settlement API"""

    def __init__(
        self,
        api_base: str,
        api_token: Optional[str] = None,
        timeout: int = 30,
        retry_count: int = 3,
        session: Optional[requests.Session] = None
    ):
        self.api_base = validate_service_url("status_api_base", api_base)
        self.timeout = timeout
        self.session = session or build_session(retry_count, api_token)

    def poll(self, deposit_address: str) -> StatusResult:
        if not deposit_address:
            raise ValueError("deposit_address is required")
        try:
            response = self.session.get(
                f"{self.api_base}/v0/status",
                params={"depositAddress": deposit_address},
                timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            rate_limited_log(f"Status provider unreachable: {e.__class__.__name__}", logger_instance=logger)
            raise TransientError(f"Status provider unreachable: {e}")
        except requests.RequestException as e:
            raise TransientError(f"Status request failed: {e}")

        if response.status_code >= 500:
            rate_limited_log(f"Status provider returned {response.status_code}", logger_instance=logger)
            raise TransientError(f"Status provider returned {response.status_code}")
        if response.status_code >= 400:
            raise ProviderError(
                f"Status request for {truncate_address(deposit_address)} rejected: {response.status_code}",
                status_code=response.status_code
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise TransientError(f"Invalid JSON from status provider: {e}")
        if not isinstance(payload, dict):
            raise ProviderError(f"Unexpected status payload type {type(payload).__name__}")

        result = to_status_result(payload)
        logger.debug(
            f"Status for {truncate_address(deposit_address)}: {result.status} -> {result.normalized.value}"
        )
        return result
