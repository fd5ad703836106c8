"""
Tests for companion key handling.
"""
import base64
from unittest.mock import patch

import pytest

from claimsettle.companion.secrets import (
    MASTER_KEY_ENV,
    SecretKey,
    get_master_key,
    open_key,
    reset_master_key_cache,
    seal_key,
)
from claimsettle.exceptions import ConfigurationError

TEST_KEY_HEX = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


class TestSecretKey:

    def test_repr_hides_key(self):
        secret = SecretKey.from_hex(TEST_KEY_HEX)
        assert repr(secret) == "SecretKey(****)"
        assert str(secret) == "SecretKey(****)"
        assert "0123456789abcdef" not in repr(secret)

    def test_address_matches_eth_account(self):
        from eth_account import Account

        secret = SecretKey.from_hex(TEST_KEY_HEX)
        assert secret.address == Account.from_key(TEST_KEY_HEX).address

    def test_wipe_zeroes_buffer(self):
        secret = SecretKey.generate()
        assert not secret.wiped
        secret.wipe()
        assert secret.wiped
        with pytest.raises(ValueError):
            secret.account()

    def test_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            SecretKey(b"\x01" * 16)

    def test_generated_keys_differ(self):
        assert SecretKey.generate().address != SecretKey.generate().address


class TestSealing:

    def test_seal_then_open(self):
        secret = SecretKey.from_hex(TEST_KEY_HEX)
        sealed = seal_key(secret)

        assert sealed["version"] == 1
        assert TEST_KEY_HEX[2:] not in sealed["encrypted"]
        assert open_key(sealed).address == secret.address

    def test_tampered_data_is_rejected(self):
        sealed = seal_key(SecretKey.generate())
        raw = bytearray(base64.b64decode(sealed["encrypted"]))
        raw[-1] ^= 0xFF
        with pytest.raises(ValueError):
            open_key({"encrypted": base64.b64encode(bytes(raw)).decode(), "version": 1})

    def test_missing_field_is_rejected(self):
        with pytest.raises(ValueError):
            open_key({"version": 1})

    def test_other_master_key_cannot_open(self, monkeypatch):
        sealed = seal_key(SecretKey.generate())
        monkeypatch.setenv(MASTER_KEY_ENV, base64.b64encode(b"\x09" * 32).decode())
        reset_master_key_cache()
        with pytest.raises(ValueError):
            open_key(sealed)


class TestMasterKey:

    @pytest.fixture(autouse=True)
    def _no_env_key(self, monkeypatch):
        monkeypatch.delenv(MASTER_KEY_ENV, raising=False)
        monkeypatch.delenv("CI", raising=False)
        reset_master_key_cache()
        yield
        reset_master_key_cache()

    def test_env_key(self, monkeypatch):
        monkeypatch.setenv(MASTER_KEY_ENV, base64.b64encode(b"\x05" * 32).decode())
        assert get_master_key() == b"\x05" * 32

    def test_wrong_length_env_key(self, monkeypatch):
        monkeypatch.setenv(MASTER_KEY_ENV, base64.b64encode(b"\x05" * 8).decode())
        with pytest.raises(ConfigurationError):
            get_master_key()

    def test_invalid_base64_env_key(self, monkeypatch):
        monkeypatch.setenv(MASTER_KEY_ENV, "not base64!")
        with pytest.raises(ConfigurationError):
            get_master_key()

    def test_keyring_key(self):
        stored = base64.b64encode(b"\x06" * 32).decode()
        with patch("keyring.get_password", return_value=stored):
            assert get_master_key() == b"\x06" * 32

    def test_no_key_outside_ci(self):
        with patch("keyring.get_password", return_value=None):
            with pytest.raises(ConfigurationError, match="No master key"):
                get_master_key()

    def test_ci_generates_and_stores_key(self, monkeypatch):
        monkeypatch.setenv("CI", "true")
        with patch("keyring.get_password", return_value=None), \
                patch("keyring.set_password") as set_password:
            key = get_master_key()
        assert len(key) == 32
        set_password.assert_called_once()
        assert base64.b64decode(set_password.call_args[0][2]) == key

    def test_keyring_failure_is_tolerated_in_ci(self, monkeypatch):
        monkeypatch.setenv("CI", "true")
        with patch("keyring.get_password", side_effect=RuntimeError("no backend")), \
                patch("keyring.set_password", side_effect=RuntimeError("no backend")):
            assert len(get_master_key()) == 32

    def test_key_is_cached(self, monkeypatch):
        monkeypatch.setenv(MASTER_KEY_ENV, base64.b64encode(b"\x05" * 32).decode())
        first = get_master_key()
        monkeypatch.setenv(MASTER_KEY_ENV, base64.b64encode(b"\x08" * 32).decode())
        assert get_master_key() == first
