"""
The orchestration loop: one tick walks every pending intent and companion
session under its per-item lock.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from .attestation import AttestationRecorder
from .claims import ClaimProcessor
from .companion import CompanionWalletManager
from .config import Settings
from .exceptions import LockStoreUnavailableError, PersistenceError
from .lock import NOT_ACQUIRED, DistributedLock
from .models import ProcessingResult
from .pending import INTENT, PendingIndex
from .store import Store

logger = logging.getLogger(__name__)


class SettlementOrchestrator:
    """
    Drives pending work to completion.

    Overlapping ticks in one process are refused; across processes the
    per-item locks keep any item to a single worker.
    """

    def __init__(
        self,
        store: Store,
        pending: PendingIndex,
        lock: DistributedLock,
        processor: ClaimProcessor,
        companions: CompanionWalletManager,
        recorder: Optional[AttestationRecorder] = None,
        settings: Optional[Settings] = None,
        logger_instance: Optional[logging.Logger] = None
    ):
        self.store = store
        self.pending = pending
        self.lock = lock
        self.processor = processor
        self.companions = companions
        self.recorder = recorder
        self.settings = settings or Settings()
        self.logger = logger_instance or logger
        self._tick_guard = threading.Lock()

    def get_processing_status(self) -> Dict[str, bool]:
        return {"isProcessing": self._tick_guard.locked()}

    def _lock_for(self, kind: str, ref: str) -> Tuple[str, int]:
        if kind == INTENT:
            intent = self.store.get_intent(ref)
            if intent is None:
                return f"intent:{ref}", self.settings.claim_lock_ttl
            return f"claim:{intent.claim_id}", self.settings.claim_lock_ttl
        session = self.store.get_session(ref)
        if session is None:
            return f"session:{ref}", self.settings.session_lock_ttl
        return session.lock_key, self.settings.session_lock_ttl

    def _work_for(self, kind: str, ref: str) -> Callable[[], ProcessingResult]:
        if kind == INTENT:
            return lambda: self.processor.process_intent(ref)
        return lambda: self.companions.process_session(ref)

    def process_item(self, kind: str, ref: str) -> Optional[ProcessingResult]:
        """
        Process one pending item under its lock.

        Returns:
            The item's result, or None if another worker holds the lock

        Raises:
            LockStoreUnavailableError: If the lock store is down
            PersistenceError: If the persistence store is down
        """
        key, ttl = self._lock_for(kind, ref)
        result = self.lock.with_lock(key, ttl, self._work_for(kind, ref))
        if result is NOT_ACQUIRED:
            self.logger.debug(f"Skipping {kind} {ref}: {key} is locked")
            return None
        return result

    def _run_items(self, items: List[Tuple[str, str]]) -> List[ProcessingResult]:
        if self.settings.max_workers <= 1 or len(items) <= 1:
            results = [self.process_item(kind, ref) for kind, ref in items]
        else:
            with ThreadPoolExecutor(max_workers=self.settings.max_workers,
                                    thread_name_prefix="settle") as pool:
                futures = [pool.submit(self.process_item, kind, ref) for kind, ref in items]
                results = [f.result() for f in futures]
        return [r for r in results if r is not None]

    def process_pending(self) -> List[ProcessingResult]:
        """
        Run one tick.

        Returns:
            Results for every item processed; empty if a tick was already running

        Raises:
            LockStoreUnavailableError: If the lock store is down
            PersistenceError: If the persistence store is down
        """
        if not self._tick_guard.acquire(blocking=False):
            self.logger.info("Processing already in progress, skipping tick")
            return []
        try:
            items = self.pending.items()
            if not items:
                return []
            started = time.monotonic()
            results = self._run_items(items)
            elapsed = time.monotonic() - started
            failed = sum(1 for r in results if not r.success)
            self.logger.info(
                f"Tick processed {len(results)}/{len(items)} items in {elapsed:.2f}s ({failed} failed)"
            )
            return results
        except (LockStoreUnavailableError, PersistenceError) as e:
            self.logger.error(f"Tick aborted: {e}")
            raise
        finally:
            self._tick_guard.release()

    def trigger_processing(self) -> Dict[str, Any]:
        """Operator entry point; returns ``{"processed": n, "results": [...]}``"""
        results = self.process_pending()
        return {
            "processed": len(results),
            "results": [r.model_dump(exclude_none=True) for r in results],
        }

    def retry_attestations(self) -> Dict[str, int]:
        if self.recorder is None:
            return {"attempted": 0, "recorded": 0}
        return self.recorder.retry_missing(self.settings.attestation_batch_size)


class Scheduler:
    """
    Runs the processing tick and the attestation sweep on their intervals.

    Args:
        orchestrator: Orchestrator to drive
        tick_interval: Seconds between processing ticks
        attestation_interval: Seconds between attestation sweeps
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(
        self,
        orchestrator: SettlementOrchestrator,
        tick_interval: Optional[float] = None,
        attestation_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        settings = orchestrator.settings
        self.orchestrator = orchestrator
        self.tick_interval = tick_interval if tick_interval is not None else settings.tick_interval
        self.attestation_interval = (
            attestation_interval if attestation_interval is not None else settings.attestation_interval
        )
        self.clock = clock
        self._next_tick = 0.0
        self._next_sweep = 0.0

    def run_once(self) -> None:
        """Run whichever jobs are due; errors are logged and the schedule goes on"""
        now = self.clock()
        if self.orchestrator.settings.auto_process and now >= self._next_tick:
            self._next_tick = now + self.tick_interval
            try:
                self.orchestrator.process_pending()
            except Exception:
                logger.exception("Processing tick failed")
        if now >= self._next_sweep:
            self._next_sweep = now + self.attestation_interval
            try:
                self.orchestrator.retry_attestations()
            except Exception:
                logger.exception("Attestation sweep failed")

    def run_forever(self, stop_event: Optional[threading.Event] = None, poll: float = 1.0) -> None:
        """Loop until ``stop_event`` is set"""
        stop_event = stop_event or threading.Event()
        logger.info(
            f"Scheduler started (tick every {self.tick_interval}s, "
            f"attestation sweep every {self.attestation_interval}s)"
        )
        while not stop_event.is_set():
            self.run_once()
            stop_event.wait(poll)
        logger.info("Scheduler stopped")
