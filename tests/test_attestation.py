"""
Tests for the attestation recorder.
"""
from unittest.mock import MagicMock

import pytest

from claimsettle.attestation import AttestationRecorder
from claimsettle.commitment import compute_commitment
from claimsettle.events import PaymentEventLog
from claimsettle.exceptions import LedgerError, NotFoundError, TransientError
from claimsettle.lock import DistributedLock
from claimsettle.models import Claim, ClaimStatus, CompanionSession, SessionStatus, SettlementIntent

from test_helpers.fakes import RECIPIENT, FakeLedger, FlakyLedger


def settled_claim(store, claim_id="claim-1", **fields):
    claim = Claim(
        id=claim_id,
        amount="100",
        to_symbol="USDC",
        to_chain="base",
        recipient_address=RECIPIENT,
        status=ClaimStatus.SUCCESS,
        paid_with_token="USDC",
        paid_with_chain="base",
        **fields
    )
    store.create_claim(claim)
    return claim


@pytest.fixture
def recorder(store, kv_store, ledger):
    rec = AttestationRecorder(store, ledger, PaymentEventLog(store), lock=DistributedLock(kv_store))
    yield rec
    rec.shutdown()


def test_attest_records_commitment_once(recorder, store, ledger):
    settled_claim(store)

    tx_ref = recorder.attest("claim-1")
    again = recorder.attest("claim-1")

    assert tx_ref and again == tx_ref
    assert ledger.submissions == ["claim-1"]
    claim = store.get_claim("claim-1")
    assert claim.attestation_tx_hash == tx_ref
    assert ledger.records["claim-1"].commitment == compute_commitment(
        recorder.attestation_data(claim), claim.attestation_nonce
    )
    events = [e.event_type for e in store.list_events("claim-1")]
    assert events == ["attestation_submitted"]


def test_non_success_claim_is_not_attested(recorder, store, ledger):
    settled_claim(store)
    store.update_claim("claim-1", status=ClaimStatus.IN_FLIGHT)
    assert recorder.attest("claim-1") is None
    assert ledger.submissions == []


def test_failure_leaves_no_hash_but_keeps_nonce(recorder, store, ledger):
    settled_claim(store)
    ledger.fail_with = LedgerError("reverted")

    assert recorder.attest("claim-1") is None

    claim = store.get_claim("claim-1")
    assert claim.attestation_tx_hash is None
    assert claim.attestation_nonce
    events = store.list_events("claim-1")
    assert events[-1].event_type == "attestation_failed"
    assert events[-1].success is False


def test_retry_reuses_nonce(store, kv_store):
    ledger = FlakyLedger(failures=1)
    recorder = AttestationRecorder(store, ledger, PaymentEventLog(store), lock=DistributedLock(kv_store))
    settled_claim(store)

    assert recorder.attest("claim-1") is None
    nonce = store.get_claim("claim-1").attestation_nonce
    assert recorder.attest("claim-1")

    claim = store.get_claim("claim-1")
    assert claim.attestation_nonce == nonce
    assert ledger.records["claim-1"].commitment == compute_commitment(
        recorder.attestation_data(claim), nonce
    )
    recorder.shutdown()


def test_recovers_record_that_landed_without_reference(recorder, store, ledger):
    claim = settled_claim(store)
    nonce = store.set_attestation_nonce_if_absent("claim-1", "ab" * 32)
    ledger.record_payment(
        "claim-1", "claim-1", compute_commitment(recorder.attestation_data(claim), nonce)
    )
    ledger.submissions.clear()

    tx_ref = recorder.attest("claim-1")

    assert tx_ref == "on-chain:claim-1"
    assert ledger.submissions == []
    assert store.get_claim("claim-1").attestation_tx_hash == "on-chain:claim-1"


def test_conflicting_ledger_record_is_an_error(recorder, store, ledger):
    settled_claim(store)
    store.set_attestation_nonce_if_absent("claim-1", "ab" * 32)
    ledger.record_payment("claim-1", "claim-1", b"\x01" * 32)

    assert recorder.attest("claim-1") is None
    assert store.get_claim("claim-1").attestation_tx_hash is None


def test_ledger_lookup_outage_is_recorded(recorder, store, ledger):
    settled_claim(store)
    ledger.lookup_error = TransientError("rpc down")
    assert recorder.attest("claim-1") is None
    assert store.list_events("claim-1")[-1].event_type == "attestation_failed"


def test_unconfigured_ledger_skips(store):
    recorder = AttestationRecorder(store, None, PaymentEventLog(store))
    settled_claim(store)
    assert recorder.configured is False
    assert recorder.attest("claim-1") is None
    assert recorder.retry_missing() == {"attempted": 0, "recorded": 0}
    assert store.get_claim("claim-1").attestation_nonce is None
    recorder.shutdown()


def test_attest_skipped_while_lock_held(recorder, store, kv_store, ledger):
    settled_claim(store)
    DistributedLock(kv_store).acquire("attest:claim-1", 120)
    assert recorder.attest("claim-1") is None
    assert ledger.submissions == []


def test_execution_ref_prefers_quote_then_deposit_address(recorder, store):
    claim = settled_claim(store)
    assert recorder.execution_ref(claim) == "claim-1"

    store.create_intent(SettlementIntent(id="i1", claim_id="claim-1", deposit_address="0xdep"))
    assert recorder.execution_ref(claim) == "0xdep"

    store.update_intent("i1", quote_id="quote-9")
    assert recorder.execution_ref(claim) == "quote-9"


def test_execution_ref_skips_superseded_intents(recorder, store):
    claim = settled_claim(store)
    store.create_intent(SettlementIntent(id="i1", claim_id="claim-1", quote_id="quote-1", superseded=True))
    store.save_session(CompanionSession(
        session_key="claim:swap:claim-1:1", claim_id="claim-1", address=RECIPIENT, chain_id=8453,
        from_token="ETH", from_decimals=18, to_token="USDC", to_decimals=6, to_amount="5",
        amount_usd="5", required_amount=1, recipient_address=RECIPIENT,
        status=SessionStatus.COMPLETED, transfer_tx_hash="0xtransfer",
    ))
    assert recorder.execution_ref(claim) == "0xtransfer"

    store.create_intent(SettlementIntent(id="i2", claim_id="claim-1", quote_id="quote-2"))
    assert recorder.execution_ref(claim) == "quote-2"


def test_attestation_data_falls_back_to_destination_token(recorder, store):
    claim = Claim(id="c", amount="5", to_symbol="USDT", to_chain="arbitrum", recipient_address=RECIPIENT)
    data = recorder.attestation_data(claim)
    assert (data.token_symbol, data.token_chain, data.recipient_id) == ("USDT", "arbitrum", RECIPIENT)


def test_retry_missing_sweeps_success_claims(recorder, store, ledger):
    for i in range(3):
        settled_claim(store, claim_id=f"claim-{i}")
    store.set_attestation_tx_hash_if_absent("claim-0", "0xdone")
    open_claim = Claim(id="open", amount="1", to_symbol="USDC", to_chain="base", recipient_address=RECIPIENT)
    store.create_claim(open_claim)

    assert recorder.retry_missing() == {"attempted": 2, "recorded": 2}
    assert sorted(ledger.records) == ["claim-1", "claim-2"]
    assert recorder.retry_missing() == {"attempted": 0, "recorded": 0}


def test_retry_missing_respects_limit(recorder, store):
    for i in range(5):
        settled_claim(store, claim_id=f"claim-{i}")
    assert recorder.retry_missing(limit=2) == {"attempted": 2, "recorded": 2}


def test_submit_async_attests_in_background(recorder, store, ledger):
    claim = settled_claim(store)
    future = recorder.submit_async(claim)
    assert future.result(timeout=5) == store.get_claim("claim-1").attestation_tx_hash
    assert "claim-1" in ledger.records


def test_submit_async_swallows_unexpected_errors(store, kv_store):
    ledger = MagicMock()
    ledger.get_payment.side_effect = RuntimeError("boom")
    recorder = AttestationRecorder(store, ledger, PaymentEventLog(store), lock=DistributedLock(kv_store))
    claim = settled_claim(store)

    assert recorder.submit_async(claim).result(timeout=5) is None
    recorder.shutdown()


class TestVerify:

    def test_verified_after_attestation(self, recorder, store):
        settled_claim(store)
        recorder.attest("claim-1")

        result = recorder.verify("claim-1")

        assert result.verified is True
        assert result.expected_commitment == result.onchain_commitment
        assert result.execution_ref == "claim-1"
        assert result.timestamp == 1700000000

    def test_tampered_amount_fails(self, recorder, store):
        settled_claim(store)
        recorder.attest("claim-1")
        store.update_claim("claim-1", amount="99")

        result = recorder.verify("claim-1")

        assert result.verified is False
        assert result.reason == "commitment mismatch"

    def test_without_nonce(self, recorder, store):
        settled_claim(store)
        assert recorder.verify("claim-1").reason == "no nonce stored"

    def test_not_on_ledger(self, recorder, store):
        settled_claim(store)
        store.set_attestation_nonce_if_absent("claim-1", "ab" * 32)
        result = recorder.verify("claim-1")
        assert result.verified is False
        assert result.reason == "not recorded on ledger"

    def test_unknown_claim(self, recorder):
        with pytest.raises(NotFoundError):
            recorder.verify("missing")

    def test_other_ledger_instance(self, store):
        recorder = AttestationRecorder(store, FakeLedger(), PaymentEventLog(store))
        settled_claim(store)
        store.set_attestation_nonce_if_absent("claim-1", "ab" * 32)
        assert recorder.verify("claim-1").verified is False
        recorder.shutdown()
