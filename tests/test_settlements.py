"""Tests for the settlement lifecycle."""

from datetime import UTC, datetime, timedelta

import pytest

from bill_split.exceptions import (
    InvalidSettlementTransitionError,
    NothingToSettleError,
    SettlementError,
    TransactionNotFoundError,
)
from bill_split.models import PaymentDetails
from bill_split.settlements import (
    apply_settlement_transition,
    build_settlement_context,
    cancel_settlement,
    can_transition,
    confirm_settlement,
    create_settlement,
    extract_settlement_delta,
    is_confirmed_settlement,
    latest_settlements,
    plan_settlement,
    reopen_settlement,
)
from bill_split.transactions import build_split_transaction

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def settlement():
    """An initiated settlement where the user pays alice 25."""
    request = plan_settlement("alice", -2500)
    return create_settlement(request, now=NOW, transaction_id="s1")


class TestPlanSettlement:
    """Test turning a settle-up action into a request."""

    def test_user_owes_marked_paid(self):
        """balance -25 marked paid gives amount -25 and a confirmed status."""
        request = plan_settlement("alice", -2500, mark_paid=True)
        assert request.amount_cents == -2500
        assert request.status == "confirmed"

    def test_friend_owes(self):
        """A positive balance gives a positive amount, initiated by default."""
        request = plan_settlement("alice", 1200)
        assert request.amount_cents == 1200
        assert request.status == "initiated"

    def test_partial_amount_keeps_balance_sign(self):
        """A partial amount is signed like the balance."""
        request = plan_settlement("alice", -2500, amount="10")
        assert request.amount_cents == -1000

    def test_zero_balance(self):
        """Nothing to settle when the balance is even."""
        with pytest.raises(NothingToSettleError):
            plan_settlement("alice", 0)

    @pytest.mark.parametrize("friend_id,amount", [("", None), ("alice", 0), ("alice", "-5")])
    def test_invalid_input(self, friend_id, amount):
        """A missing friend or non-positive amount is rejected."""
        with pytest.raises(SettlementError):
            plan_settlement(friend_id, 1000, amount)

    def test_payment_metadata(self):
        """Payment details ride along on the request and the transaction."""
        payment = PaymentDetails(method="bank", reference="INV-1")
        request = plan_settlement("alice", 500, payment=payment)
        settlement = create_settlement(request, now=NOW)
        assert settlement.payment == payment


class TestCreateSettlement:
    """Test settlement construction."""

    def test_delta_cancels_balance(self, settlement):
        """The user owed 25, so the settlement adds +25 to the balance."""
        assert settlement.delta_cents == 2500
        assert settlement.effects[0].share_cents == 2500
        assert [(p.id, p.amount_cents) for p in settlement.participants] == [
            ("you", 2500),
            ("alice", 0),
        ]
        assert build_settlement_context(settlement) == ("alice", -2500)

    def test_status_timestamps(self):
        """A confirmed settlement is stamped confirmed at creation."""
        request = plan_settlement("alice", 1000, mark_paid=True)
        settlement = create_settlement(request, now=NOW)
        assert settlement.settlement_status == "confirmed"
        assert settlement.confirmed_at == NOW
        assert settlement.cancelled_at is None
        assert settlement.initiated_at == NOW


class TestTransitions:
    """Test the settlement status state machine."""

    def test_allowed_transitions(self):
        """Open settlements close; closed settlements reopen to pending."""
        assert can_transition("initiated", "confirmed")
        assert can_transition("pending", "cancelled")
        assert can_transition("confirmed", "pending")
        assert can_transition("cancelled", "pending")
        assert not can_transition("confirmed", "cancelled")
        assert not can_transition("cancelled", "confirmed")
        assert not can_transition("initiated", "pending")

    def test_confirm_then_reopen(self, settlement):
        """Status and timestamps change; the delta never does."""
        later = NOW + timedelta(hours=1)
        confirmed = confirm_settlement(settlement, later)
        assert confirmed.settlement_status == "confirmed"
        assert confirmed.confirmed_at == later
        assert confirmed.updated_at == later
        assert confirmed.delta_cents == settlement.delta_cents

        reopened = reopen_settlement(confirmed, later + timedelta(hours=1))
        assert reopened.settlement_status == "pending"
        assert reopened.confirmed_at is None
        assert reopened.delta_cents == settlement.delta_cents

    def test_same_status_is_noop(self, settlement):
        """Re-applying the current status returns the settlement unchanged."""
        confirmed = confirm_settlement(settlement, NOW)
        assert confirm_settlement(confirmed, NOW + timedelta(days=1)) is confirmed

    def test_illegal_transition(self, settlement):
        """confirmed can't jump straight to cancelled."""
        confirmed = confirm_settlement(settlement, NOW)
        with pytest.raises(InvalidSettlementTransitionError) as exc_info:
            cancel_settlement(confirmed, NOW)
        assert exc_info.value.current == "confirmed"
        assert exc_info.value.target == "cancelled"

    def test_apply_to_list(self, settlement):
        """Only the matching settlement is replaced."""
        split = build_split_transaction(10, "you", [{"id": "alice", "amount": 5}], now=NOW)
        result = apply_settlement_transition([split, settlement], "s1", "cancelled", NOW)
        assert result[0] is split
        assert result[1].settlement_status == "cancelled"
        assert result[1].cancelled_at == NOW

    def test_apply_unknown_id(self, settlement):
        """An unknown id is reported."""
        with pytest.raises(TransactionNotFoundError):
            apply_settlement_transition([settlement], "missing", "confirmed", NOW)


class TestSettlementQueries:
    """Test settlement read helpers."""

    def test_is_confirmed_settlement(self, settlement):
        """Splits count as confirmed; settlements only once confirmed."""
        split = build_split_transaction(10, "you", [{"id": "alice", "amount": 5}], now=NOW)
        assert is_confirmed_settlement(split)
        assert is_confirmed_settlement(None)
        assert not is_confirmed_settlement(settlement)
        assert is_confirmed_settlement(confirm_settlement(settlement, NOW))

    def test_latest_settlements(self, settlement):
        """The most recent settlement per friend wins."""
        newer = create_settlement(
            plan_settlement("alice", 700), now=NOW + timedelta(days=1), transaction_id="s2"
        )
        bob = create_settlement(plan_settlement("bob", 300), now=NOW, transaction_id="s3")
        summaries = latest_settlements([newer, settlement, bob])
        assert summaries["alice"].transaction_id == "s2"
        assert summaries["alice"].balance_cents == 700
        assert summaries["bob"].status == "initiated"

    @pytest.mark.parametrize(
        "record,expected",
        [
            ({"delta": 12.5}, 1250),
            ({"effects": [{"friendId": "a", "delta": -3}]}, -300),
            ({"participants": [{"id": "you", "amount": 0}, {"id": "a", "amount": 4}]}, -400),
            ({"participants": [{"id": "you", "amount": 6}, {"id": "a", "amount": 0}]}, 600),
            ({}, 0),
        ],
    )
    def test_extract_settlement_delta(self, record, expected):
        """The delta comes from delta, then effects, then participants."""
        assert extract_settlement_delta(record) == expected
