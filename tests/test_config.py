"""
Tests for environment-driven settings.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from claimsettle.config import Settings
from claimsettle.exceptions import ConfigurationError


def test_defaults():
    settings = Settings.from_env({})
    assert settings.redis_url is None
    assert settings.claim_lock_ttl == 60
    assert settings.session_lock_ttl == 300
    assert settings.max_intent_age == timedelta(days=30)
    assert settings.session_max_age == timedelta(hours=24)
    assert settings.max_session_attempts == 3
    assert settings.attestation_configured is False


def test_reads_prefixed_variables():
    settings = Settings.from_env({
        "SETTLE_REDIS_URL": "redis://cache:6379/0",
        "SETTLE_MAX_WORKERS": "4",
        "SETTLE_FEE_PERCENT": "0.02",
        "SETTLE_AUTO_PROCESS": "false",
        "SETTLE_API_TOKEN": "",
        "UNRELATED": "x",
    })
    assert settings.redis_url == "redis://cache:6379/0"
    assert settings.max_workers == 4
    assert settings.fee_percent == Decimal("0.02")
    assert settings.auto_process is False
    assert settings.api_token is None


def test_rpc_url_overrides():
    settings = Settings.from_env({
        "SETTLE_RPC_URL_8453": "https://base.example.com",
        "SETTLE_RPC_URL_1": "https://eth.example.com",
    })
    assert settings.rpc_urls == {8453: "https://base.example.com", 1: "https://eth.example.com"}


def test_bad_rpc_chain_id():
    with pytest.raises(ConfigurationError):
        Settings.from_env({"SETTLE_RPC_URL_BASE": "https://base.example.com"})


def test_unparseable_value():
    with pytest.raises(ConfigurationError):
        Settings.from_env({"SETTLE_MAX_WORKERS": "many"})


def test_attestation_needs_all_three_values():
    partial = Settings.from_env({
        "SETTLE_ATTESTATION_RPC_URL": "https://rpc.example.com",
        "SETTLE_ATTESTATION_CONTRACT": "0x1234567890123456789012345678901234567890",
    })
    assert partial.attestation_configured is False

    full = Settings.from_env({
        "SETTLE_ATTESTATION_RPC_URL": "https://rpc.example.com",
        "SETTLE_ATTESTATION_CONTRACT": "0x1234567890123456789012345678901234567890",
        "SETTLE_ATTESTATION_PRIVATE_KEY": "0x" + "01" * 32,
    })
    assert full.attestation_configured is True


def test_private_key_not_in_repr():
    settings = Settings(attestation_private_key="0x" + "01" * 32)
    assert "01010101" not in repr(settings)


def test_reads_os_environ_by_default(monkeypatch):
    monkeypatch.setenv("SETTLE_TICK_INTERVAL", "15")
    assert Settings.from_env().tick_interval == 15
