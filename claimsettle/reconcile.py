"""
Recurring idempotent reconciliation: find records in a terminal state that
lack a required side effect and re-run that side effect.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from .exceptions import LockStoreUnavailableError, PersistenceError

logger = logging.getLogger(__name__)


class ReconciliationJob:
    """
    Args:
        name: Name used in log lines
        find_candidates: Returns up to ``limit`` ids needing the side effect
        reconcile: Applies the side effect to one id; a truthy return means done
        limit: Batch size per run
    """

    def __init__(
        self,
        name: str,
        find_candidates: Callable[[int], List[str]],
        reconcile: Callable[[str], Optional[Any]],
        limit: int = 50
    ):
        self.name = name
        self.find_candidates = find_candidates
        self.reconcile = reconcile
        self.limit = limit

    def run(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Run one batch.

        Returns:
            ``{"attempted": n, "recorded": m}``
        """
        candidates = self.find_candidates(limit or self.limit)
        recorded = 0
        for item_id in candidates:
            try:
                if self.reconcile(item_id):
                    recorded += 1
            except (LockStoreUnavailableError, PersistenceError):
                raise
            except Exception:
                logger.exception(f"{self.name}: reconciling {item_id} failed")
        if candidates:
            logger.info(f"{self.name}: attempted={len(candidates)} recorded={recorded}")
        return {"attempted": len(candidates), "recorded": recorded}
