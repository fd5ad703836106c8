"""
Companion wallet sessions: ephemeral wallets that receive a payer's tokens,
convert them on the same chain and forward the result to the recipient.
"""
import logging
import time
from decimal import Decimal
from typing import List, Optional, Union

from .. import events
from ..chain import BalanceReader, ChainRegistry, TokenSpec
from ..claims.state_machine import ClaimStateMachine
from ..config import Settings
from ..events import PaymentEventLog
from ..exceptions import (
    InputValidationError, InvalidTransitionError, LockStoreUnavailableError, NotFoundError,
    PersistenceError, PriceUnavailableError, SettlementError, TransientError
)
from ..models import ClaimStatus, CompanionSession, ProcessingResult, SessionStatus
from ..pending import PendingIndex
from ..providers.quotes import PriceSource
from ..providers.swap import SwapExecutor
from ..store import Store
from ..utils import from_atomic, to_atomic, to_atomic_ceil, to_decimal, truncate_address, utc_now
from .secrets import SecretKey, open_key, seal_key

logger = logging.getLogger(__name__)

REASON_TOO_LOW = "balance too low for refund"
REASON_EXPIRED = "session expired before funding"
REASON_SUPERSEDED = "superseded"


def required_deposit(
    amount_usd: Decimal,
    price: Decimal,
    token: TokenSpec,
    fee_percent: Decimal,
    deposit_buffer: Decimal
) -> int:
    """
    Smallest-unit amount a payer must send to a companion wallet.

    ``ceil(usd * (1 + fee + buffer) / price * 10^decimals) + gas_reserve``

    Raises:
        PriceUnavailableError: If the price is missing or not positive
    """
    if price is None or price <= 0:
        raise PriceUnavailableError(f"No usable price for {token.symbol}")
    human = amount_usd * (1 + fee_percent + deposit_buffer) / price
    return to_atomic_ceil(human, token.decimals) + token.gas_reserve_atomic


class CompanionWalletManager:
    """
    Owns companion session keys from creation until they are burned.

    ``process_session`` is safe to call repeatedly; finished sessions are
    left untouched.
    """

    def __init__(
        self,
        store: Store,
        pending: PendingIndex,
        registry: ChainRegistry,
        balances: BalanceReader,
        prices: PriceSource,
        executor: SwapExecutor,
        state_machine: ClaimStateMachine,
        event_log: PaymentEventLog,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.pending = pending
        self.registry = registry
        self.balances = balances
        self.prices = prices
        self.executor = executor
        self.state_machine = state_machine
        self.event_log = event_log
        self.settings = settings or Settings()

    def create_session(
        self,
        chain_id: int,
        from_token: str,
        to_token: str,
        to_amount: Union[str, Decimal],
        recipient_address: str,
        amount_usd: Union[str, Decimal],
        claim_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        refund_address: Optional[str] = None
    ) -> CompanionSession:
        """
        Create a companion wallet and register it for processing.

        Route support must be checked by the caller.

        Args:
            chain_id: Chain the conversion happens on
            from_token: Symbol the payer sends
            to_token: Symbol the recipient receives
            to_amount: Human amount of ``to_token`` owed
            recipient_address: Final recipient
            amount_usd: USD value of the obligation
            claim_id: Owning claim (or ``organization_id``)
            organization_id: Owning organization
            refund_address: Where refunds go; defaults to the recipient

        Returns:
            The persisted session (its ``address`` is the deposit address)

        Raises:
            InputValidationError: If no owner is given or amounts are invalid
            PriceUnavailableError: If the source token has no price
        """
        if not claim_id and not organization_id:
            raise InputValidationError("claim_id or organization_id is required")
        usd = to_decimal(amount_usd)
        if usd <= 0:
            raise InputValidationError("amount_usd must be positive")

        chain = self.registry.chain(chain_id)
        source = self.registry.token(chain_id, from_token)
        target = self.registry.token(chain_id, to_token)
        price = self.prices.get_price(source.symbol, chain.name)

        required = required_deposit(
            usd, price, source, self.settings.fee_percent, self.settings.deposit_buffer
        )
        fee_amount = 0
        if self.settings.treasury_address:
            fee_amount = to_atomic(usd * self.settings.fee_percent / price, source.decimals)

        secret = SecretKey.generate()
        try:
            address = secret.address
            sealed = seal_key(secret)
        finally:
            secret.wipe()

        millis = int(time.time() * 1000)
        prefix = f"claim:swap:{claim_id}" if claim_id else f"org:swap:{organization_id}"
        while self.store.get_session(f"{prefix}:{millis}") is not None:
            millis += 1
        session_key = f"{prefix}:{millis}"

        session = CompanionSession(
            session_key=session_key,
            claim_id=claim_id,
            organization_id=organization_id,
            address=address,
            encrypted_key=sealed,
            chain_id=chain.chain_id,
            from_token=source.symbol,
            from_token_address=source.address,
            from_decimals=source.decimals,
            to_token=target.symbol,
            to_token_address=target.address,
            to_decimals=target.decimals,
            to_amount=str(to_amount),
            amount_usd=str(usd),
            required_amount=required,
            recipient_address=recipient_address,
            refund_address=refund_address,
            fee_amount=fee_amount,
            fee_recipient=self.settings.treasury_address if fee_amount else None,
        )
        self.store.save_session(session)
        self.pending.add_session(session_key)
        logger.info(
            f"Created companion session {session_key} at {truncate_address(address)} "
            f"({source.symbol} -> {target.symbol} on {chain.name})"
        )
        return session

    def supports_route(self, chain_id: int, from_token: str, to_token: str) -> bool:
        """True if a session can convert ``from_token`` into ``to_token`` on ``chain_id``"""
        if not self.registry.is_swap_supported(chain_id, from_token, to_token):
            return False
        return self.executor.supports_source(self.registry.token(chain_id, from_token))

    def supersede_sessions(self, claim_id: str, keep: Optional[str] = None) -> List[str]:
        """
        Retire a claim's open sessions after a newer deposit request.

        Sealed keys are kept so a late deposit can still be recovered.

        Returns:
            Keys of the sessions that were retired
        """
        retired = []
        for session in self.store.list_sessions(claim_id):
            if session.session_key == keep or session.is_terminal:
                continue
            self._finish(session, SessionStatus.FAILED, error=REASON_SUPERSEDED)
            logger.info(f"Session {session.session_key} superseded for claim {claim_id}")
            retired.append(session.session_key)
        return retired

    def deposit_amount(self, session: CompanionSession) -> Decimal:
        """Human-readable amount the payer should send"""
        return from_atomic(session.required_amount, session.from_decimals)

    def _result(self, session: CompanionSession, action: str, success: bool = True,
                error: Optional[str] = None, tx_hash: Optional[str] = None) -> ProcessingResult:
        return ProcessingResult(
            claim_id=session.claim_id,
            ref=session.session_key,
            kind="session",
            action=action,
            success=success,
            error=error,
            tx_hash=tx_hash,
        )

    def _is_current_route(self, session: CompanionSession) -> bool:
        if any(not intent.superseded for intent in self.store.list_intents(session.claim_id)):
            return False
        return all(
            other.created_at <= session.created_at
            for other in self.store.list_sessions(session.claim_id)
            if other.session_key != session.session_key
        )

    def _claim_transition(self, session: CompanionSession, action: str) -> None:
        if not session.claim_id:
            return
        if not self._is_current_route(session):
            logger.warning(
                f"Session {session.session_key} is no longer the deposit route of claim "
                f"{session.claim_id}, claim left unchanged"
            )
            return
        try:
            if action == "in_flight":
                claim = self.store.get_claim(session.claim_id)
                if claim.status == ClaimStatus.PENDING_DEPOSIT:
                    self.state_machine.mark_in_flight(session.claim_id)
            elif action == "settle":
                self.state_machine.settle(session.claim_id)
            elif action == "refund":
                self.state_machine.refund(session.claim_id)
            elif action == "expire":
                self.state_machine.expire(session.claim_id)
        except (InvalidTransitionError, NotFoundError) as e:
            logger.warning(f"Claim {session.claim_id} not updated for session {session.session_key}: {e}")

    def _finish(self, session: CompanionSession, status: SessionStatus, **fields) -> CompanionSession:
        # completed and refunded sessions burn their key; failed ones keep it for recovery
        if status in (SessionStatus.COMPLETED, SessionStatus.REFUNDED):
            fields["encrypted_key"] = None
        updated = self.store.update_session(session.session_key, status=status, **fields)
        self.pending.remove_session(session.session_key)
        return updated

    def _signer_key(self, session: CompanionSession) -> SecretKey:
        if not session.encrypted_key:
            raise SettlementError(f"Session {session.session_key} has no key")
        return open_key(session.encrypted_key)

    def process_session(self, session_or_key: Union[CompanionSession, str]) -> ProcessingResult:
        """
        Advance one companion session.

        Per-session failures are returned in the result; only store outages
        propagate.

        Args:
            session_or_key: Session or its key

        Returns:
            Outcome for this tick

        Raises:
            PersistenceError: If the persistence store is unavailable
            LockStoreUnavailableError: If the lock store is unavailable
        """
        if isinstance(session_or_key, CompanionSession):
            ref = session_or_key.session_key
        else:
            ref = session_or_key
        claim_id = None
        try:
            session = self.store.get_session(ref)
            if session is None and isinstance(session_or_key, CompanionSession):
                session = session_or_key
            if session is None:
                self.pending.remove_session(ref)
                return ProcessingResult(ref=ref, kind="session", action="missing",
                                        success=False, error="session not found")
            claim_id = session.claim_id
            return self._process_session(session)
        except (PersistenceError, LockStoreUnavailableError):
            raise
        except SettlementError as e:
            logger.warning(f"Error processing session {ref}: {e}")
            return ProcessingResult(claim_id=claim_id, ref=ref, kind="session", action="error",
                                    success=False, error=str(e))
        except Exception:
            logger.exception(f"Unexpected error processing session {ref}")
            return ProcessingResult(claim_id=claim_id, ref=ref, kind="session", action="error",
                                    success=False, error="internal error")

    def _process_session(self, session: CompanionSession) -> ProcessingResult:
        if session.is_terminal:
            self.pending.remove_session(session.session_key)
            return self._result(session, "skipped")

        age = utc_now() - session.created_at
        if session.status == SessionStatus.PENDING_DEPOSIT and age > self.settings.session_max_age:
            self._finish(session, SessionStatus.FAILED, error=REASON_EXPIRED)
            self._claim_transition(session, "expire")
            if session.claim_id:
                self.event_log.log(session.claim_id, events.EXPIRED, ref_or_hash=session.session_key)
            return self._result(session, "expired")

        token = self.registry.token(session.chain_id, session.from_token)
        try:
            balance = self.balances.balance_of(session.chain_id, token, session.address)
        except TransientError as e:
            return self._result(session, "waiting", error=str(e))

        if balance < token.dust_atomic:
            return self._result(session, "waiting")

        if session.status == SessionStatus.PENDING_DEPOSIT:
            session = self.store.update_session(
                session.session_key, status=SessionStatus.FUNDED, amount_received=balance
            )
            self._claim_transition(session, "in_flight")
            if session.claim_id:
                self.event_log.log(session.claim_id, events.PAYMENT_DETECTED, ref_or_hash=session.address)

        required = session.required_amount
        if session.fee_tx_hash:
            required -= session.fee_amount
        if balance < required:
            return self._refund(session, token, balance)
        return self._execute(session, token, balance)

    def _refund(self, session: CompanionSession, token: TokenSpec, balance: int) -> ProcessingResult:
        refund_amount = balance - token.gas_reserve_atomic
        logger.info(
            f"Session {session.session_key} underfunded: {balance} < {session.required_amount}, "
            f"refund {refund_amount}"
        )
        if refund_amount <= 0:
            self._finish(session, SessionStatus.FAILED, error=REASON_TOO_LOW, amount_received=balance)
            if session.claim_id:
                self.event_log.log(session.claim_id, events.EXECUTION_FAILED, success=False,
                                   ref_or_hash=session.session_key, error_message=REASON_TOO_LOW)
            return self._result(session, "failed", success=False, error=REASON_TOO_LOW)

        to_address = session.refund_address or session.recipient_address
        secret = None
        try:
            secret = self._signer_key(session)
            tx_hash = self.executor.transfer(
                secret.account(), session.chain_id, token, to_address, refund_amount
            )
        except Exception as e:
            return self._record_failure(session, e)
        finally:
            if secret is not None:
                secret.wipe()

        self._finish(session, SessionStatus.REFUNDED, refund_tx_hash=tx_hash,
                     amount_received=balance, error=None)
        self._claim_transition(session, "refund")
        if session.claim_id:
            self.event_log.log(session.claim_id, events.REFUND_SENT, ref_or_hash=tx_hash)
        return self._result(session, "refunded", tx_hash=tx_hash)

    def _execute(self, session: CompanionSession, token: TokenSpec, balance: int) -> ProcessingResult:
        target = self.registry.token(session.chain_id, session.to_token)
        spendable = balance - token.gas_reserve_atomic
        secret = None
        try:
            secret = self._signer_key(session)
            signer = secret.account()
            if session.fee_amount > 0 and session.fee_recipient and not session.fee_tx_hash:
                fee_tx = self.executor.transfer(
                    signer, session.chain_id, token, session.fee_recipient, session.fee_amount
                )
                session = self.store.update_session(session.session_key, fee_tx_hash=fee_tx)
                spendable -= session.fee_amount

            if token.symbol == target.symbol:
                transfer_tx = self.executor.transfer(
                    signer, session.chain_id, token, session.recipient_address, spendable
                )
                swap_tx = None
            else:
                result = self.executor.swap_and_transfer(
                    signer,
                    session.chain_id,
                    token,
                    target,
                    spendable,
                    to_atomic(session.to_amount, target.decimals),
                    session.recipient_address,
                )
                swap_tx, transfer_tx = result.swap_tx_hash, result.transfer_tx_hash
        except Exception as e:
            return self._record_failure(session, e)
        finally:
            if secret is not None:
                secret.wipe()

        self._finish(session, SessionStatus.COMPLETED, swap_tx_hash=swap_tx,
                     transfer_tx_hash=transfer_tx, amount_received=balance, error=None)
        self._claim_transition(session, "settle")
        logger.info(f"Session {session.session_key} completed: {transfer_tx}")
        return self._result(session, "completed", tx_hash=transfer_tx)

    def _record_failure(self, session: CompanionSession, error: Exception) -> ProcessingResult:
        if isinstance(error, SettlementError):
            message = str(error)
        else:
            logger.exception(f"Unexpected error executing session {session.session_key}")
            message = "execution failed"
        attempts = session.attempts + 1
        max_attempts = self.settings.max_session_attempts

        if attempts >= max_attempts:
            self._finish(session, SessionStatus.FAILED, attempts=attempts, error=message)
            logger.error(f"Session {session.session_key} failed after {attempts} attempts: {message}")
            if session.claim_id:
                self.event_log.log(session.claim_id, events.EXECUTION_FAILED, success=False,
                                   ref_or_hash=session.session_key, error_message=message)
            return self._result(session, "failed", success=False, error=message)

        self.store.update_session(session.session_key, status=SessionStatus.FUNDED,
                                  attempts=attempts, error=message)
        logger.warning(
            f"Session {session.session_key} attempt {attempts}/{max_attempts} failed: {message}"
        )
        return self._result(session, "retry", success=False, error=message)
