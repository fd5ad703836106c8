"""
Claim creation and deposit requests.

A deposit request either accepts a provider quote (settlement intent) or,
for a same-chain token mismatch, opens a companion wallet session.
"""
import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Optional

from web3 import Web3

from .. import events
from ..chain import ChainRegistry
from ..companion.manager import CompanionWalletManager
from ..config import Settings
from ..events import PaymentEventLog
from ..exceptions import InputValidationError, ProviderError, TransientError
from ..lock import NOT_ACQUIRED, DistributedLock
from ..models import Claim, ClaimStatus, DepositInstructions, SettlementIntent
from ..pending import PendingIndex
from ..providers.quotes import QuoteProvider, normalize_chain_name
from ..store import Store
from ..utils import to_decimal
from .state_machine import ClaimStateMachine

logger = logging.getLogger(__name__)

ORIGIN_SLIPPAGE = Decimal("1.02")


def _parse_amount(amount) -> Decimal:
    try:
        value = to_decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InputValidationError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise InputValidationError("Amount must be a positive number")
    return value


class ClaimService:
    """Entry points that create claims and issue deposit addresses"""

    def __init__(
        self,
        store: Store,
        pending: PendingIndex,
        state_machine: ClaimStateMachine,
        quotes: QuoteProvider,
        companions: CompanionWalletManager,
        registry: ChainRegistry,
        event_log: PaymentEventLog,
        lock: Optional[DistributedLock] = None,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.pending = pending
        self.state_machine = state_machine
        self.quotes = quotes
        self.companions = companions
        self.registry = registry
        self.event_log = event_log
        self.lock = lock
        self.settings = settings or Settings()

    def create_claim(
        self,
        amount,
        to_symbol: str,
        to_chain: str,
        recipient_address: str,
        created_by: Optional[str] = None,
        description: Optional[str] = None,
        is_private: bool = False
    ) -> Claim:
        """
        Create an OPEN claim.

        Raises:
            InputValidationError: On a bad amount, token, chain or address
        """
        value = _parse_amount(amount)
        if not to_symbol or not to_chain:
            raise InputValidationError("Destination token and chain are required")
        if not recipient_address:
            raise InputValidationError("Recipient address is required")
        try:
            self.registry.resolve_chain_id(to_chain)
            evm = True
        except InputValidationError:
            evm = False
        if evm and not Web3.is_address(recipient_address):
            raise InputValidationError(f"Invalid recipient address for {to_chain}")

        claim = Claim(
            id=str(uuid.uuid4()),
            amount=str(value),
            to_symbol=to_symbol.upper(),
            to_chain=normalize_chain_name(to_chain),
            recipient_address=recipient_address,
            created_by=created_by,
            description=description,
            is_private=is_private,
        )
        self.store.create_claim(claim)
        self.event_log.log(claim.id, events.CLAIM_CREATED)
        return claim

    def request_deposit(
        self,
        claim_id: str,
        from_token: str,
        from_chain: str,
        refund_address: Optional[str] = None
    ) -> DepositInstructions:
        """
        Issue deposit instructions for a claim.

        A repeated request supersedes the previous intent or companion session.

        Raises:
            InputValidationError: If the claim cannot take a deposit or the route is unknown
            PriceUnavailableError: If a needed price is missing
            ProviderError: If the quote is rejected
            TransientError: If the claim is being processed right now
        """
        if self.lock is None:
            return self._request_deposit(claim_id, from_token, from_chain, refund_address)
        result = self.lock.with_lock(
            f"claim:{claim_id}",
            self.settings.claim_lock_ttl,
            lambda: self._request_deposit(claim_id, from_token, from_chain, refund_address),
        )
        if result is NOT_ACQUIRED:
            raise TransientError(f"Claim {claim_id} is busy, try again")
        return result

    def _same_chain_companion(self, claim: Claim, from_token: str, from_chain: str) -> Optional[int]:
        if from_token.upper() == claim.to_symbol.upper():
            return None
        try:
            source_chain = self.registry.resolve_chain_id(from_chain)
            dest_chain = self.registry.resolve_chain_id(claim.to_chain)
        except InputValidationError:
            return None
        if source_chain != dest_chain:
            return None
        if not self.companions.supports_route(source_chain, from_token, claim.to_symbol):
            return None
        return source_chain

    def _request_deposit(
        self,
        claim_id: str,
        from_token: str,
        from_chain: str,
        refund_address: Optional[str]
    ) -> DepositInstructions:
        claim = self.store.get_claim(claim_id)
        if claim.status not in (ClaimStatus.OPEN, ClaimStatus.PENDING_DEPOSIT):
            raise InputValidationError(f"Claim {claim_id} cannot take a deposit in status {claim.status.value}")

        chain_id = self._same_chain_companion(claim, from_token, from_chain)
        if chain_id is not None:
            return self._companion_deposit(claim, chain_id, from_token, refund_address)
        return self._intent_deposit(claim, from_token, from_chain, refund_address)

    def _companion_deposit(
        self,
        claim: Claim,
        chain_id: int,
        from_token: str,
        refund_address: Optional[str]
    ) -> DepositInstructions:
        chain = self.registry.chain(chain_id)
        usd = Decimal(claim.amount)
        dest_price = self.quotes.get_price(claim.to_symbol, chain.name)
        to_amount = usd / dest_price

        session = self.companions.create_session(
            chain_id=chain_id,
            from_token=from_token,
            to_token=claim.to_symbol,
            to_amount=to_amount,
            recipient_address=claim.recipient_address,
            amount_usd=usd,
            claim_id=claim.id,
            refund_address=refund_address,
        )
        self._supersede_routes(claim.id, keep_session=session.session_key)
        self.state_machine.transition(
            claim.id, ClaimStatus.PENDING_DEPOSIT,
            paid_with_token=session.from_token, paid_with_chain=chain.name,
        )
        self.event_log.log(claim.id, events.DEPOSIT_ISSUED, ref_or_hash=session.address)
        return DepositInstructions(
            claim_id=claim.id,
            deposit_address=session.address,
            amount=str(self.companions.deposit_amount(session)),
            token=session.from_token,
            chain=chain.name,
            route="companion",
        )

    def _supersede_routes(self, claim_id: str, keep_session: Optional[str] = None) -> None:
        for intent in self.store.list_intents(claim_id):
            if not intent.superseded:
                self.store.update_intent(intent.id, superseded=True)
                self.pending.remove_intent(intent.id)
                logger.info(f"Intent {intent.id} superseded for claim {claim_id}")
        self.companions.supersede_sessions(claim_id, keep=keep_session)

    def _intent_deposit(
        self,
        claim: Claim,
        from_token: str,
        from_chain: str,
        refund_address: Optional[str]
    ) -> DepositInstructions:
        source = self.quotes.find_token(from_token, from_chain)
        dest = self.quotes.find_token(claim.to_symbol, claim.to_chain)
        if source is None or dest is None:
            missing = f"{from_token}/{from_chain}" if source is None else f"{claim.to_symbol}/{claim.to_chain}"
            raise InputValidationError(f"Unsupported token {missing}")

        usd = Decimal(claim.amount)
        dest_price = self.quotes.get_price(dest.symbol, dest.chain)
        origin_price = self.quotes.get_price(source.symbol, source.chain)
        amount_out = usd / dest_price

        try:
            quote = self.quotes.get_deposit_quote(
                source, dest, amount_out, claim.recipient_address, refund_address
            )
        except (ProviderError, TransientError) as e:
            self.event_log.log(claim.id, events.QUOTE_FAILED, success=False, error_message=str(e))
            raise

        self._supersede_routes(claim.id)
        intent = SettlementIntent(
            id=str(uuid.uuid4()),
            claim_id=claim.id,
            quote_id=quote.quote_id,
            deposit_address=quote.deposit_address,
            memo=quote.memo,
            deadline=quote.deadline,
            time_estimate=quote.time_estimate,
            from_chain=source.chain,
            to_chain=dest.chain,
            paid_amount=quote.min_amount_in_formatted,
        )
        self.store.create_intent(intent)
        self.pending.add_intent(intent.id)
        self.state_machine.transition(
            claim.id, ClaimStatus.PENDING_DEPOSIT,
            paid_with_token=source.symbol, paid_with_chain=source.chain,
        )
        self.event_log.log(claim.id, events.DEPOSIT_ISSUED, ref_or_hash=quote.deposit_address)

        amount_in = quote.min_amount_in_formatted or str(usd / origin_price * ORIGIN_SLIPPAGE)
        return DepositInstructions(
            claim_id=claim.id,
            deposit_address=quote.deposit_address,
            amount=amount_in,
            token=source.symbol,
            chain=source.chain,
            memo=quote.memo,
            deadline=quote.deadline,
            time_estimate=quote.time_estimate,
            route="intent",
        )
