"""
Tests for claim lifecycle transitions.
"""
from unittest.mock import MagicMock

import pytest

from claimsettle.claims import ClaimStateMachine, can_transition
from claimsettle.exceptions import InvalidTransitionError, NotFoundError
from claimsettle.models import Claim, ClaimStatus, TERMINAL_CLAIM_STATUSES

from test_helpers.fakes import RECIPIENT


def make_claim(store, status=ClaimStatus.OPEN, is_private=False, claim_id="claim-1"):
    claim = Claim(
        id=claim_id,
        amount="100",
        to_symbol="USDC",
        to_chain="base",
        recipient_address=RECIPIENT,
        status=status,
        is_private=is_private,
    )
    store.create_claim(claim)
    return claim


@pytest.fixture
def machine(store):
    return ClaimStateMachine(store)


@pytest.mark.parametrize("current,target,allowed", [
    (ClaimStatus.OPEN, ClaimStatus.PENDING_DEPOSIT, True),
    (ClaimStatus.OPEN, ClaimStatus.SUCCESS, False),
    (ClaimStatus.PENDING_DEPOSIT, ClaimStatus.IN_FLIGHT, True),
    (ClaimStatus.PENDING_DEPOSIT, ClaimStatus.REFUNDED, True),
    (ClaimStatus.PENDING_DEPOSIT, ClaimStatus.SUCCESS, False),
    (ClaimStatus.IN_FLIGHT, ClaimStatus.SUCCESS, True),
    (ClaimStatus.IN_FLIGHT, ClaimStatus.PRIVATE_TRANSFER_PENDING, True),
    (ClaimStatus.IN_FLIGHT, ClaimStatus.OPEN, False),
    (ClaimStatus.PRIVATE_TRANSFER_PENDING, ClaimStatus.SUCCESS, True),
    (ClaimStatus.PRIVATE_TRANSFER_PENDING, ClaimStatus.REFUNDED, False),
])
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


@pytest.mark.parametrize("terminal", sorted(TERMINAL_CLAIM_STATUSES, key=lambda s: s.value))
def test_terminal_states_never_change(terminal):
    for target in ClaimStatus:
        assert not can_transition(terminal, target)


@pytest.mark.parametrize("status", [
    ClaimStatus.OPEN, ClaimStatus.PENDING_DEPOSIT, ClaimStatus.IN_FLIGHT,
    ClaimStatus.PRIVATE_TRANSFER_PENDING,
])
def test_any_live_state_can_expire_or_cancel(status):
    assert can_transition(status, ClaimStatus.EXPIRED)
    assert can_transition(status, ClaimStatus.CANCELLED)


def test_transition_writes_status_and_fields(machine, store):
    make_claim(store)
    claim = machine.transition("claim-1", ClaimStatus.PENDING_DEPOSIT, paid_with_token="ETH")
    assert claim.status == ClaimStatus.PENDING_DEPOSIT
    assert store.get_claim("claim-1").paid_with_token == "ETH"


def test_invalid_transition_raises_and_leaves_claim(machine, store):
    make_claim(store)
    with pytest.raises(InvalidTransitionError) as excinfo:
        machine.transition("claim-1", ClaimStatus.SUCCESS)
    assert excinfo.value.current == "OPEN"
    assert store.get_claim("claim-1").status == ClaimStatus.OPEN


def test_missing_claim(machine):
    with pytest.raises(NotFoundError):
        machine.transition("nope", ClaimStatus.CANCELLED)


def test_settle_walks_through_in_flight(machine, store):
    make_claim(store, status=ClaimStatus.PENDING_DEPOSIT)
    claim = machine.settle("claim-1")
    assert claim.status == ClaimStatus.SUCCESS
    assert claim.paid_at is not None


def test_settle_private_claim_waits_for_private_transfer(machine, store):
    make_claim(store, status=ClaimStatus.IN_FLIGHT, is_private=True)
    hook = MagicMock()
    machine.on_success(hook)

    claim = machine.settle("claim-1")
    assert claim.status == ClaimStatus.PRIVATE_TRANSFER_PENDING
    hook.assert_not_called()

    claim = machine.complete_private_transfer("claim-1")
    assert claim.status == ClaimStatus.SUCCESS
    hook.assert_called_once()


def test_success_hook_runs_once_with_claim(machine, store):
    make_claim(store, status=ClaimStatus.IN_FLIGHT)
    hook = MagicMock()
    machine.on_success(hook)

    machine.transition("claim-1", ClaimStatus.SUCCESS)

    hook.assert_called_once()
    assert hook.call_args[0][0].id == "claim-1"


def test_failing_hook_does_not_undo_success(machine, store):
    make_claim(store, status=ClaimStatus.IN_FLIGHT)
    machine.on_success(MagicMock(side_effect=RuntimeError("ledger down")))

    claim = machine.transition("claim-1", ClaimStatus.SUCCESS)

    assert claim.status == ClaimStatus.SUCCESS
    assert store.get_claim("claim-1").status == ClaimStatus.SUCCESS


def test_mark_in_flight_is_idempotent(machine, store):
    make_claim(store, status=ClaimStatus.PENDING_DEPOSIT)
    machine.mark_in_flight("claim-1")
    assert machine.mark_in_flight("claim-1").status == ClaimStatus.IN_FLIGHT


def test_refund_expire_cancel(machine, store):
    make_claim(store, status=ClaimStatus.PENDING_DEPOSIT, claim_id="a")
    make_claim(store, status=ClaimStatus.OPEN, claim_id="b")
    make_claim(store, status=ClaimStatus.IN_FLIGHT, claim_id="c")

    assert machine.refund("a").status == ClaimStatus.REFUNDED
    assert machine.expire("b").status == ClaimStatus.EXPIRED
    assert machine.cancel("c").status == ClaimStatus.CANCELLED
    with pytest.raises(InvalidTransitionError):
        machine.cancel("a")
