"""Tests for the in-memory ledger state."""

from datetime import UTC, datetime

import pytest

from bill_split.exceptions import (
    FriendHasBalanceError,
    FriendNotFoundError,
    InvalidSettlementTransitionError,
    TemplateNotFoundError,
    TransactionNotFoundError,
)
from bill_split.models import Snapshot, UnrecognizedTransaction
from bill_split.settlements import create_settlement, plan_settlement
from bill_split.state import LedgerState
from bill_split.templates import build_template
from bill_split.transactions import build_split_transaction

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def state():
    """A ledger with two friends and nothing recorded."""
    ledger = LedgerState()
    ledger.add_friend("Alice", email="Alice@Example.com")
    ledger.add_friend("Bob")
    return ledger


class TestFriends:
    """Test friend management."""

    def test_first_friend_is_selected(self, state):
        """Adding the first friend selects them."""
        assert state.selected_id == state.friends[0].id

    def test_email_dedupe(self, state):
        """Adding an existing email returns the existing friend."""
        again = state.add_friend("Someone Else", email=" alice@example.com ")
        assert again.name == "Alice"
        assert len(state.friends) == 2

    def test_find_friend(self, state):
        """Friends are found by id, email or name, ignoring case."""
        alice = state.friends[0]
        assert state.find_friend(alice.id) is alice
        assert state.find_friend("ALICE@example.com") is alice
        assert state.find_friend("alice") is alice
        with pytest.raises(FriendNotFoundError):
            state.find_friend("carol")

    def test_remove_settled_friend(self, state):
        """A friend without a balance can be removed; selection moves on."""
        alice, bob = state.friends
        state.remove_friend(alice.id)
        assert state.friends == [bob]
        assert state.selected_id == bob.id

    def test_remove_friend_with_balance(self, state):
        """An open balance blocks removal."""
        bob = state.friends[1]
        state.add_transaction(
            build_split_transaction(10, "you", [{"id": bob.id, "amount": 5}], now=NOW)
        )
        with pytest.raises(FriendHasBalanceError) as exc_info:
            state.remove_friend(bob.id)
        assert exc_info.value.balance_cents == 500

    def test_select_unknown_friend(self, state):
        """Selecting an unknown friend fails; None clears the selection."""
        with pytest.raises(FriendNotFoundError):
            state.select_friend("ghost")
        state.select_friend(None)
        assert state.selected_id is None


class TestTransactions:
    """Test transaction management."""

    def test_newest_first(self, state):
        """New transactions go to the front."""
        first = build_split_transaction(10, "you", [{"id": "a", "amount": 5}], now=NOW)
        second = build_split_transaction(20, "you", [{"id": "a", "amount": 5}], now=NOW)
        state.add_transaction(first)
        state.add_transaction(second)
        assert state.transactions == [second, first]

    def test_update_and_delete(self, state):
        """Metadata edits keep the amounts; deleting removes the record."""
        tx = state.add_transaction(
            build_split_transaction(10, "you", [{"id": "a", "amount": 5}], now=NOW)
        )
        updated = state.update_transaction(tx.id, category="Food", note="pizza", now=NOW)
        assert updated.category == "Food"
        assert state.get_transaction(tx.id).note == "pizza"
        assert updated.effects == tx.effects

        state.delete_transaction(tx.id)
        with pytest.raises(TransactionNotFoundError):
            state.get_transaction(tx.id)

    def test_unrecognized_cannot_be_edited(self, state):
        """Unrecognized records are kept but not editable."""
        state.add_transaction(UnrecognizedTransaction(payload={"id": "odd"}))
        with pytest.raises(TransactionNotFoundError):
            state.update_transaction("odd", note="x")

    def test_settlement_transition(self, state):
        """Transitions go through the state machine."""
        settlement = state.add_transaction(
            create_settlement(plan_settlement("a", 500), now=NOW, transaction_id="s1")
        )
        confirmed = state.apply_settlement_transition("s1", "confirmed", NOW)
        assert confirmed.settlement_status == "confirmed"
        assert confirmed.delta_cents == settlement.delta_cents
        with pytest.raises(InvalidSettlementTransitionError):
            state.apply_settlement_transition("s1", "cancelled", NOW)


class TestBudgetsAndSnapshots:
    """Test budgets and the snapshot round trip."""

    def test_category_budget(self, state):
        """Budgets are stored in cents; None or a negative amount removes them."""
        state.set_category_budget(" Food ", "120.50")
        assert state.budgets == {"Food": 12050}
        state.set_category_budget("Food", -1)
        assert state.budgets == {}
        state.set_category_budget("Taxi", 10)
        state.set_category_budget("Taxi", None)
        assert state.budgets == {}

    def test_to_snapshot_is_a_copy(self, state):
        """Later mutations don't leak into an earlier snapshot."""
        snapshot = state.to_snapshot()
        state.add_friend("Carol")
        assert len(snapshot.friends) == 2
        restored = LedgerState.from_snapshot(snapshot)
        assert restored.selected_id == state.selected_id

    def test_empty(self):
        """A fresh state is empty."""
        assert LedgerState().to_snapshot() == Snapshot()


class TestTemplatesAndReminders:
    """Test template storage and reminder stamps."""

    @pytest.fixture
    def lunch(self, state):
        """A one-off lunch template shared with Alice."""
        alice = state.friends[0]
        return build_template(
            "Lunch", 20, "you", [{"id": alice.id, "amount": 10}], now=NOW
        )

    def test_save_find_delete(self, state, lunch):
        """Templates are found by id or name and replaced in place."""
        state.save_template(lunch)
        assert state.find_template(lunch.id) is lunch
        assert state.find_template(" LUNCH ") is lunch

        renamed = lunch.model_copy(update={"note": "weekly lunch"})
        state.save_template(renamed)
        assert state.templates == [renamed]

        assert state.delete_template(lunch.id) == renamed
        assert state.templates == []
        with pytest.raises(TemplateNotFoundError):
            state.find_template("lunch")
        with pytest.raises(TemplateNotFoundError):
            state.delete_template(lunch.id)

    def test_snapshot_keeps_templates_and_reminders(self, state, lunch):
        """Templates and reminder settings survive a snapshot round trip."""
        state.save_template(lunch)
        state.record_reminders_sent([state.friends[0].id], NOW)
        restored = LedgerState.from_snapshot(state.to_snapshot())
        assert restored.templates == [lunch]
        assert restored.reminders.last_sent == {state.friends[0].id: NOW}

    def test_remove_friend_clears_reminder(self, state):
        """Removing a friend forgets when they were last reminded."""
        bob = state.friends[1]
        state.record_reminders_sent([bob.id], NOW)
        state.remove_friend(bob.id)
        assert state.reminders.last_sent == {}
