"""
Wiring: build every component from ``Settings``.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from eth_account import Account

from .attestation import AttestationLedger, AttestationRecorder, Web3AttestationLedger
from .chain import BalanceReader, ChainRegistry
from .claims import ClaimProcessor, ClaimStateMachine
from .claims.service import ClaimService
from .companion import CompanionWalletManager
from .config import Settings
from .events import PaymentEventLog
from .lock import DistributedLock, KeyValueStore, MemoryKeyValueStore, RedisKeyValueStore
from .orchestrator import SettlementOrchestrator
from .pending import PendingIndex
from .providers import (
    OneClickQuoteProvider, OneClickStatusProvider, QuoteProvider, StatusProvider,
    SwapExecutor, Web3SwapExecutor
)
from .store import JsonFileStore, MemoryStore, Store

logger = logging.getLogger(__name__)


@dataclass
class Application:
    """All wired components of one orchestrator process"""
    settings: Settings
    store: Store
    kv_store: KeyValueStore
    lock: DistributedLock
    pending: PendingIndex
    registry: ChainRegistry
    events: PaymentEventLog
    state_machine: ClaimStateMachine
    status_provider: StatusProvider
    quotes: QuoteProvider
    companions: CompanionWalletManager
    processor: ClaimProcessor
    recorder: AttestationRecorder
    claims: ClaimService
    orchestrator: SettlementOrchestrator

    def close(self) -> None:
        self.recorder.shutdown(wait=True)


def build_application(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    kv_store: Optional[KeyValueStore] = None,
    status_provider: Optional[StatusProvider] = None,
    quotes: Optional[QuoteProvider] = None,
    balances: Optional[BalanceReader] = None,
    executor: Optional[SwapExecutor] = None,
    ledger: Optional[AttestationLedger] = None,
    registry: Optional[ChainRegistry] = None
) -> Application:
    """
    Build the orchestrator and its collaborators.

    Any component passed in is used as-is; the rest come from ``settings``.
    Without ``redis_url`` the lock store is in-memory, which only
    coordinates threads of this process.

    Args:
        settings: Settings (defaults to ``Settings.from_env()``)

    Returns:
        The wired application
    """
    settings = settings or Settings.from_env()

    if store is None:
        store = JsonFileStore(settings.store_path) if settings.store_path else MemoryStore()
    if kv_store is None:
        if settings.redis_url:
            kv_store = RedisKeyValueStore(settings.redis_url)
        else:
            logger.warning("No SETTLE_REDIS_URL set; locks only cover this process")
            kv_store = MemoryKeyValueStore()

    lock = DistributedLock(kv_store)
    pending = PendingIndex(kv_store)
    registry = registry or ChainRegistry(rpc_overrides=settings.rpc_urls)
    event_log = PaymentEventLog(store)
    state_machine = ClaimStateMachine(store)

    status_provider = status_provider or OneClickStatusProvider(
        settings.status_api_base,
        api_token=settings.api_token,
        timeout=settings.http_timeout,
        retry_count=settings.retry_count,
    )
    quotes = quotes or OneClickQuoteProvider(
        settings.quote_api_base,
        api_token=settings.api_token,
        referral=settings.referral,
        slippage_bps=settings.slippage_bps,
        deadline_minutes=settings.quote_deadline_minutes,
        timeout=settings.http_timeout,
        retry_count=settings.retry_count,
    )
    balances = balances or BalanceReader(registry)
    if executor is None:
        gas_sponsor = None
        if settings.gas_sponsor_private_key:
            gas_sponsor = Account.from_key(settings.gas_sponsor_private_key)
        else:
            logger.info("No gas sponsor configured; companion wallets accept native tokens only")
        executor = Web3SwapExecutor(
            balances,
            swap_api_base=settings.swap_api_base,
            swap_api_key=settings.swap_api_key,
            slippage_bps=settings.slippage_bps,
            timeout=settings.http_timeout,
            retry_count=settings.retry_count,
            gas_sponsor=gas_sponsor,
        )
    if ledger is None and settings.attestation_configured:
        ledger = Web3AttestationLedger(
            settings.attestation_rpc_url,
            settings.attestation_contract,
            private_key=settings.attestation_private_key,
        )
    elif ledger is None:
        logger.info("Attestation ledger not configured; settled claims will not be attested")

    recorder = AttestationRecorder(
        store, ledger, event_log, lock=lock, lock_ttl=settings.attestation_lock_ttl
    )
    state_machine.on_success(recorder.submit_async)

    companions = CompanionWalletManager(
        store, pending, registry, balances, quotes, executor, state_machine, event_log, settings
    )
    processor = ClaimProcessor(store, pending, status_provider, state_machine, event_log, settings)
    claims = ClaimService(
        store, pending, state_machine, quotes, companions, registry, event_log, lock, settings
    )
    orchestrator = SettlementOrchestrator(
        store, pending, lock, processor, companions, recorder, settings
    )

    return Application(
        settings=settings,
        store=store,
        kv_store=kv_store,
        lock=lock,
        pending=pending,
        registry=registry,
        events=event_log,
        state_machine=state_machine,
        status_provider=status_provider,
        quotes=quotes,
        companions=companions,
        processor=processor,
        recorder=recorder,
        claims=claims,
        orchestrator=orchestrator,
    )
