"""
Persistence for claims, settlement intents, companion sessions and events.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..exceptions import NotFoundError
from ..models import (
    Claim, ClaimStatus, CompanionSession, PaymentEvent, SettlementIntent
)
from ..utils import utc_now

logger = logging.getLogger(__name__)

Tables = Dict[str, Any]


def empty_tables() -> Tables:
    return {"claims": {}, "intents": {}, "sessions": {}, "events": []}


class Store(ABC):
    """
    Read/update-by-id/filter-by-status access to settlement records.

    Writes are last-write-wins per field, except the two attestation
    fields which are set at most once.
    """

    # claims

    @abstractmethod
    def create_claim(self, claim: Claim) -> Claim:
        pass

    @abstractmethod
    def get_claim(self, claim_id: str) -> Claim:
        """
        Raises:
            NotFoundError: If the claim does not exist
        """
        pass

    @abstractmethod
    def update_claim(self, claim_id: str, **fields: Any) -> Claim:
        pass

    @abstractmethod
    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        missing_attestation: bool = False,
        limit: Optional[int] = None
    ) -> List[Claim]:
        pass

    @abstractmethod
    def set_attestation_nonce_if_absent(self, claim_id: str, nonce: str) -> str:
        """
        Store a nonce unless the claim already has one.

        Returns:
            The nonce now stored on the claim (existing one wins)
        """
        pass

    @abstractmethod
    def set_attestation_tx_hash_if_absent(self, claim_id: str, tx_hash: str) -> bool:
        """
        Store the attestation reference unless one is already recorded.

        Returns:
            True if this call stored it
        """
        pass

    # intents

    @abstractmethod
    def create_intent(self, intent: SettlementIntent) -> SettlementIntent:
        pass

    @abstractmethod
    def get_intent(self, intent_id: str) -> Optional[SettlementIntent]:
        pass

    @abstractmethod
    def update_intent(self, intent_id: str, **fields: Any) -> SettlementIntent:
        pass

    @abstractmethod
    def list_intents(self, claim_id: str) -> List[SettlementIntent]:
        """Intents for a claim, oldest first"""
        pass

    def latest_intent(self, claim_id: str, active_only: bool = False) -> Optional[SettlementIntent]:
        """Newest intent; with ``active_only`` superseded intents are ignored"""
        intents = self.list_intents(claim_id)
        if active_only:
            intents = [i for i in intents if not i.superseded]
        return intents[-1] if intents else None

    # companion sessions

    @abstractmethod
    def save_session(self, session: CompanionSession) -> CompanionSession:
        pass

    @abstractmethod
    def get_session(self, session_key: str) -> Optional[CompanionSession]:
        pass

    @abstractmethod
    def update_session(self, session_key: str, **fields: Any) -> CompanionSession:
        pass

    @abstractmethod
    def list_sessions(self, claim_id: Optional[str] = None) -> List[CompanionSession]:
        pass

    # events

    @abstractmethod
    def record_event(self, event: PaymentEvent) -> None:
        pass

    @abstractmethod
    def list_events(self, claim_id: Optional[str] = None) -> List[PaymentEvent]:
        pass


class TableStore(Store):
    """
    Store over plain dict tables of JSON-compatible rows.

    Subclasses provide ``_transaction``, a context manager yielding the
    tables and persisting them when the block exits without error.
    """

    @abstractmethod
    @contextmanager
    def _transaction(self) -> Iterator[Tables]:
        yield empty_tables()

    @staticmethod
    def _merge(model_cls, row: Dict[str, Any], fields: Dict[str, Any]):
        updated = model_cls.model_validate({**row, **fields, "updated_at": utc_now()})
        return updated

    # claims

    def create_claim(self, claim: Claim) -> Claim:
        with self._transaction() as tables:
            if claim.id in tables["claims"]:
                raise ValueError(f"Claim {claim.id} already exists")
            tables["claims"][claim.id] = claim.model_dump(mode="json")
        return claim

    def get_claim(self, claim_id: str) -> Claim:
        with self._transaction() as tables:
            row = tables["claims"].get(claim_id)
        if row is None:
            raise NotFoundError(f"Claim {claim_id} not found")
        return Claim.model_validate(row)

    def update_claim(self, claim_id: str, **fields: Any) -> Claim:
        with self._transaction() as tables:
            row = tables["claims"].get(claim_id)
            if row is None:
                raise NotFoundError(f"Claim {claim_id} not found")
            claim = self._merge(Claim, row, fields)
            tables["claims"][claim_id] = claim.model_dump(mode="json")
        return claim

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        missing_attestation: bool = False,
        limit: Optional[int] = None
    ) -> List[Claim]:
        with self._transaction() as tables:
            rows = list(tables["claims"].values())
        claims = [Claim.model_validate(row) for row in rows]
        if status is not None:
            claims = [c for c in claims if c.status == status]
        if missing_attestation:
            claims = [c for c in claims if not c.attestation_tx_hash]
        claims.sort(key=lambda c: c.created_at)
        if limit is not None:
            claims = claims[:limit]
        return claims

    def set_attestation_nonce_if_absent(self, claim_id: str, nonce: str) -> str:
        with self._transaction() as tables:
            row = tables["claims"].get(claim_id)
            if row is None:
                raise NotFoundError(f"Claim {claim_id} not found")
            if row.get("attestation_nonce"):
                return row["attestation_nonce"]
            claim = self._merge(Claim, row, {"attestation_nonce": nonce})
            tables["claims"][claim_id] = claim.model_dump(mode="json")
        return nonce

    def set_attestation_tx_hash_if_absent(self, claim_id: str, tx_hash: str) -> bool:
        with self._transaction() as tables:
            row = tables["claims"].get(claim_id)
            if row is None:
                raise NotFoundError(f"Claim {claim_id} not found")
            if row.get("attestation_tx_hash"):
                return False
            claim = self._merge(Claim, row, {"attestation_tx_hash": tx_hash})
            tables["claims"][claim_id] = claim.model_dump(mode="json")
        return True

    # intents

    def create_intent(self, intent: SettlementIntent) -> SettlementIntent:
        with self._transaction() as tables:
            tables["intents"][intent.id] = intent.model_dump(mode="json")
        return intent

    def get_intent(self, intent_id: str) -> Optional[SettlementIntent]:
        with self._transaction() as tables:
            row = tables["intents"].get(intent_id)
        return SettlementIntent.model_validate(row) if row is not None else None

    def update_intent(self, intent_id: str, **fields: Any) -> SettlementIntent:
        with self._transaction() as tables:
            row = tables["intents"].get(intent_id)
            if row is None:
                raise NotFoundError(f"Intent {intent_id} not found")
            intent = self._merge(SettlementIntent, row, fields)
            tables["intents"][intent_id] = intent.model_dump(mode="json")
        return intent

    def list_intents(self, claim_id: str) -> List[SettlementIntent]:
        with self._transaction() as tables:
            rows = [r for r in tables["intents"].values() if r["claim_id"] == claim_id]
        intents = [SettlementIntent.model_validate(r) for r in rows]
        intents.sort(key=lambda i: i.created_at)
        return intents

    # companion sessions

    def save_session(self, session: CompanionSession) -> CompanionSession:
        with self._transaction() as tables:
            tables["sessions"][session.session_key] = session.model_dump(mode="json")
        return session

    def get_session(self, session_key: str) -> Optional[CompanionSession]:
        with self._transaction() as tables:
            row = tables["sessions"].get(session_key)
        return CompanionSession.model_validate(row) if row is not None else None

    def update_session(self, session_key: str, **fields: Any) -> CompanionSession:
        with self._transaction() as tables:
            row = tables["sessions"].get(session_key)
            if row is None:
                raise NotFoundError(f"Session {session_key} not found")
            session = self._merge(CompanionSession, row, fields)
            tables["sessions"][session_key] = session.model_dump(mode="json")
        return session

    def list_sessions(self, claim_id: Optional[str] = None) -> List[CompanionSession]:
        with self._transaction() as tables:
            rows = list(tables["sessions"].values())
        sessions = [CompanionSession.model_validate(r) for r in rows]
        if claim_id is not None:
            sessions = [s for s in sessions if s.claim_id == claim_id]
        sessions.sort(key=lambda s: s.created_at)
        return sessions

    # events

    def record_event(self, event: PaymentEvent) -> None:
        with self._transaction() as tables:
            tables["events"].append(event.model_dump(mode="json"))

    def list_events(self, claim_id: Optional[str] = None) -> List[PaymentEvent]:
        with self._transaction() as tables:
            rows = list(tables["events"])
        events = [PaymentEvent.model_validate(r) for r in rows]
        if claim_id is not None:
            events = [e for e in events if e.claim_id == claim_id]
        return events
