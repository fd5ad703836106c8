"""
Tests for utility functions.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from claimsettle.utils import (
    ensure_utc,
    from_atomic,
    sha256_hex,
    to_atomic,
    to_atomic_ceil,
    to_decimal,
    truncate_address,
    validate_service_url,
)


def test_sha256_hex():
    """SHA-256 of strings and bytes"""
    expected = "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08"
    assert sha256_hex("test") == expected
    assert sha256_hex(b"test") == expected


def test_to_decimal_avoids_float_noise():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal("2.50") == Decimal("2.50")
    assert to_decimal(3) == Decimal(3)


@pytest.mark.parametrize("amount,decimals,expected", [
    ("1.5", 6, 1500000),
    ("0.0000001", 6, 0),
    ("0.0205", 18, 20500000000000000),
    (Decimal("1.9999999"), 6, 1999999),
])
def test_to_atomic_floors(amount, decimals, expected):
    assert to_atomic(amount, decimals) == expected


def test_to_atomic_ceil():
    assert to_atomic_ceil("0.0000001", 6) == 1
    assert to_atomic_ceil("1.5", 6) == 1500000


def test_from_atomic():
    assert from_atomic(1500000, 6) == Decimal("1.5")
    assert from_atomic(10 ** 18, 18) == Decimal(1)


def test_ensure_utc():
    naive = datetime(2024, 1, 1, 12, 0)
    assert ensure_utc(naive).tzinfo == timezone.utc
    aware = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert ensure_utc(aware) is aware


def test_truncate_address():
    assert truncate_address("0x1234567890123456789012345678901234567890") == "0x1234…7890"
    assert truncate_address("short") == "short"
    assert truncate_address("") == ""


class TestValidateServiceUrl:

    def test_https_is_accepted(self):
        assert validate_service_url("api", "https://api.example.com/") == "https://api.example.com"

    @pytest.mark.parametrize("url", ["http://localhost:8080", "http://127.0.0.1"])
    def test_localhost_http_is_accepted(self, url):
        assert validate_service_url("api", url) == url

    @pytest.mark.parametrize("url", ["http://api.example.com", "ftp://api.example.com"])
    def test_remote_insecure_is_rejected(self, url):
        with pytest.raises(ValueError, match="https"):
            validate_service_url("api", url)
