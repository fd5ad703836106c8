"""
Pending-work index: the set of in-flight intents and companion sessions
the orchestration loop scans each tick.
"""
import logging
from typing import List, Tuple

from .lock.store import KeyValueStore

logger = logging.getLogger(__name__)

PENDING_SET_KEY = "settlement:pending"
INTENT = "intent"
SESSION = "session"


class PendingIndex:
    """Members are ``intent:<intent_id>`` and ``session:<session_key>``"""

    def __init__(self, store: KeyValueStore, set_key: str = PENDING_SET_KEY):
        self.store = store
        self.set_key = set_key

    @staticmethod
    def member(kind: str, ref: str) -> str:
        return f"{kind}:{ref}"

    def add_intent(self, intent_id: str) -> None:
        self.store.add_member(self.set_key, self.member(INTENT, intent_id))

    def add_session(self, session_key: str) -> None:
        self.store.add_member(self.set_key, self.member(SESSION, session_key))

    def remove_intent(self, intent_id: str) -> None:
        self.store.remove_member(self.set_key, self.member(INTENT, intent_id))

    def remove_session(self, session_key: str) -> None:
        self.store.remove_member(self.set_key, self.member(SESSION, session_key))

    def remove(self, member: str) -> None:
        self.store.remove_member(self.set_key, member)

    def items(self) -> List[Tuple[str, str]]:
        """
        Pending ``(kind, ref)`` pairs in a stable order.

        Raises:
            LockStoreUnavailableError: If the store cannot be reached
        """
        result = []
        for member in sorted(self.store.members(self.set_key)):
            kind, sep, ref = member.partition(":")
            if not sep or kind not in (INTENT, SESSION):
                logger.warning(f"Dropping malformed pending entry {member!r}")
                self.remove(member)
                continue
            result.append((kind, ref))
        return result
