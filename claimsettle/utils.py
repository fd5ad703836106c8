"""
Small helpers shared across claimsettle modules.
"""
import hashlib
import urllib.parse
from datetime import datetime, timezone
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Union

Number = Union[str, int, float, Decimal]


def sha256_hex(data: Union[str, bytes]) -> str:
    """
    Compute the SHA-256 hex digest of a string (UTF-8) or bytes.

    Args:
        data: Input to hash

    Returns:
        Lowercase hex digest without 0x prefix
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_atomic(amount: Number, decimals: int, rounding: str = ROUND_FLOOR) -> int:
    """
    Convert a human amount to the token's smallest unit.

    Args:
        amount: Human-readable amount (e.g. "1.5")
        decimals: Token decimal count
        rounding: decimal rounding mode, floor by default

    Returns:
        Integer amount in smallest units
    """
    scaled = to_decimal(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=rounding))


def to_atomic_ceil(amount: Number, decimals: int) -> int:
    return to_atomic(amount, decimals, rounding=ROUND_CEILING)


def from_atomic(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


def truncate_address(address: str) -> str:
    """Shorten an address for log output"""
    if not address or len(address) <= 12:
        return address
    return f"{address[:6]}…{address[-4:]}"


def validate_service_url(url_name: str, url: str) -> str:
    """
    Require https for remote services; plain http is allowed for localhost.

    Raises:
        ValueError: If the URL uses another scheme for a remote host
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.netloc.split(":")[0] if parsed.netloc else ""
    is_local = host in ("localhost", "127.0.0.1")
    if parsed.scheme != "https" and not is_local:
        raise ValueError(f"{url_name} must use https:// for security (got: {parsed.scheme}://)")
    return url.rstrip("/")
