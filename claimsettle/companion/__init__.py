"""
Companion wallets for same-chain token conversion.
"""
from .secrets import SecretKey, seal_key, open_key, get_master_key
from .manager import CompanionWalletManager, required_deposit

__all__ = [
    "SecretKey",
    "seal_key",
    "open_key",
    "get_master_key",
    "CompanionWalletManager",
    "required_deposit",
]
