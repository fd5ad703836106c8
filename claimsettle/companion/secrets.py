"""
Ephemeral key handling for companion wallets.

Keys are generated with eth_account, held in memory as ``SecretKey`` and
sealed at rest with a libsodium secret box keyed by the master key.
"""
import os
import base64
import logging
import threading
from typing import Any, Dict, Optional

import nacl.exceptions
import nacl.secret
import nacl.utils
from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "claimsettle"
KEYRING_KEY_NAME = "master-key"
MASTER_KEY_ENV = "SETTLE_MASTER_KEY"

_master_key_cache: Optional[bytes] = None
_master_key_lock = threading.Lock()


class SecretKey:
    """
    Opaque holder for a private key.

    The key never appears in ``repr``/``str``; ``wipe`` overwrites the
    backing buffer once the session is finished.
    """

    __slots__ = ("_buf",)

    def __init__(self, raw: bytes):
        if len(raw) != 32:
            raise ValueError("Private key must be 32 bytes")
        self._buf = bytearray(raw)

    @classmethod
    def generate(cls) -> "SecretKey":
        account = Account.create()
        return cls(bytes(account.key))

    @classmethod
    def from_hex(cls, value: str) -> "SecretKey":
        value = value[2:] if value.startswith("0x") else value
        return cls(bytes.fromhex(value))

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def account(self) -> LocalAccount:
        """eth_account signer for this key"""
        if self.wiped:
            raise ValueError("Secret key has been wiped")
        return Account.from_key(bytes(self._buf))

    @property
    def address(self) -> str:
        return self.account().address

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0

    def __repr__(self) -> str:
        return "SecretKey(****)"

    __str__ = __repr__


def get_master_key() -> bytes:
    """
    Master key used to seal companion keys.

    Looked up in ``SETTLE_MASTER_KEY`` (base64), then the OS keyring. With
    ``CI=true`` and no key available, one is generated and stored in the
    keyring when possible.

    Returns:
        32-byte key

    Raises:
        ConfigurationError: If no key is available outside CI
    """
    global _master_key_cache

    with _master_key_lock:
        if _master_key_cache is not None:
            return _master_key_cache

        key = None
        env_key = os.environ.get(MASTER_KEY_ENV)
        if env_key:
            try:
                key = base64.b64decode(env_key)
            except ValueError:
                raise ConfigurationError(f"Invalid {MASTER_KEY_ENV} format (expected base64)")

        if key is None:
            try:
                import keyring
                stored = keyring.get_password(KEYRING_SERVICE, KEYRING_KEY_NAME)
                if stored:
                    key = base64.b64decode(stored)
            except Exception as e:
                logger.debug("Keyring access failed: %s", str(e))

        if key is None:
            if os.environ.get("CI") != "true":
                raise ConfigurationError(
                    f"No master key available. Set {MASTER_KEY_ENV} or store one in the OS keyring."
                )
            key = nacl.utils.random(nacl.secret.SecretBox.KEY_SIZE)
            try:
                import keyring
                keyring.set_password(
                    KEYRING_SERVICE, KEYRING_KEY_NAME, base64.b64encode(key).decode("ascii")
                )
            except Exception as e:
                logger.warning(f"Generated a master key but could not store it in the keyring: {e}")

        if len(key) != nacl.secret.SecretBox.KEY_SIZE:
            raise ConfigurationError("Master key must be 32 bytes")

        _master_key_cache = key
        return key


def reset_master_key_cache() -> None:
    global _master_key_cache
    with _master_key_lock:
        _master_key_cache = None


def seal_key(secret: SecretKey) -> Dict[str, Any]:
    """
    Encrypt a private key for storage.

    Returns:
        ``{"encrypted": <base64 nonce+ciphertext>, "version": 1}``
    """
    box = nacl.secret.SecretBox(get_master_key())
    encrypted = box.encrypt(bytes(secret._buf))
    return {
        "encrypted": base64.b64encode(encrypted).decode("ascii"),
        "version": 1
    }


def open_key(sealed: Dict[str, Any]) -> SecretKey:
    """
    Decrypt a sealed private key.

    Raises:
        ValueError: If the data cannot be decrypted
    """
    box = nacl.secret.SecretBox(get_master_key())
    try:
        raw = box.decrypt(base64.b64decode(sealed["encrypted"]))
    except (nacl.exceptions.CryptoError, KeyError, ValueError) as e:
        raise ValueError(f"Failed to decrypt companion key: {e}")
    return SecretKey(raw)
