"""
Runtime configuration for claimsettle.

Every setting can be supplied through a ``SETTLE_*`` environment variable;
see ``Settings.from_env``.
"""
import os
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "SETTLE_"
DEFAULT_PROVIDER_BASE = "https://1click.chaindefuser.com"


class Settings(BaseModel):
    """Orchestrator settings"""

    # shared stores
    redis_url: Optional[str] = None
    store_path: Optional[str] = None

    # settlement provider
    status_api_base: str = DEFAULT_PROVIDER_BASE
    quote_api_base: str = DEFAULT_PROVIDER_BASE
    api_token: Optional[str] = None
    referral: Optional[str] = "claimsettle"
    slippage_bps: int = 100
    quote_deadline_minutes: int = 60
    swap_api_base: Optional[str] = None
    swap_api_key: Optional[str] = None
    http_timeout: int = 30
    retry_count: int = 3

    # attestation ledger
    attestation_rpc_url: Optional[str] = None
    attestation_contract: Optional[str] = None
    attestation_private_key: Optional[str] = Field(default=None, repr=False)
    attestation_batch_size: int = 50

    # companion wallets
    treasury_address: Optional[str] = None
    fee_percent: Decimal = Decimal("0.01")
    deposit_buffer: Decimal = Decimal("0.03")
    max_session_attempts: int = 3
    session_max_age_hours: int = 24
    gas_sponsor_private_key: Optional[str] = Field(default=None, repr=False)
    rpc_urls: Dict[int, str] = Field(default_factory=dict)

    # scheduling
    claim_lock_ttl: int = 60
    session_lock_ttl: int = 300
    attestation_lock_ttl: int = 120
    max_intent_age_days: int = 30
    max_workers: int = 1
    tick_interval: int = 60
    attestation_interval: int = 600
    auto_process: bool = True

    @property
    def max_intent_age(self) -> timedelta:
        return timedelta(days=self.max_intent_age_days)

    @property
    def session_max_age(self) -> timedelta:
        return timedelta(hours=self.session_max_age_hours)

    @property
    def attestation_configured(self) -> bool:
        return bool(
            self.attestation_rpc_url
            and self.attestation_contract
            and self.attestation_private_key
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from ``SETTLE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        values: Dict[str, object] = {}
        rpc_urls: Dict[int, str] = {}

        for name in cls.model_fields:
            if name == "rpc_urls":
                continue
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw

        rpc_prefix = ENV_PREFIX + "RPC_URL_"
        for key, raw in env.items():
            if key.startswith(rpc_prefix) and raw:
                chain = key[len(rpc_prefix):]
                try:
                    rpc_urls[int(chain)] = raw
                except ValueError:
                    raise ConfigurationError(f"Invalid chain id in {key}")
        if rpc_urls:
            values["rpc_urls"] = rpc_urls

        try:
            settings = cls.model_validate(values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        logger.debug(
            f"Loaded settings (redis={'yes' if settings.redis_url else 'no'}, "
            f"attestation={'yes' if settings.attestation_configured else 'no'}, "
            f"workers={settings.max_workers})"
        )
        return settings
