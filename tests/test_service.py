"""Tests for LedgerService layer."""

import sqlite3
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from bill_split.config import Settings
from bill_split.db import Database
from bill_split.exceptions import (
    FriendHasBalanceError,
    FriendNotFoundError,
    NothingToSettleError,
    ReminderSettingsError,
    ShareMismatchError,
    SnapshotValidationError,
    TemplateError,
    TemplateNotFoundError,
)
from bill_split.models import PaymentDetails
from bill_split.service import LedgerService

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


def balances(service):
    return {friend.id: balance for friend, balance in service.balances()}


@pytest.fixture
def mock_settings(tmp_path):
    """Create settings pointing at a temporary database."""
    return Settings(database_path=tmp_path / "test.db", monthly_budget=Decimal("200"))


@pytest.fixture
def mock_db(mock_settings):
    """Create a temporary database."""
    db = Database(mock_settings.database_path)
    yield db
    db.close()


@pytest.fixture
def service(mock_settings, mock_db):
    """Create a LedgerService instance with a fixed clock."""
    return LedgerService(mock_settings, mock_db, clock=lambda: NOW)


@pytest.fixture
def friends(service):
    """Add two friends."""
    return service.add_friend("Alice", email="alice@example.com"), service.add_friend("Bob")


class TestPersistence:
    """Test that every change is written through."""

    def test_reload_sees_changes(self, service, friends, mock_settings, mock_db):
        """A new service on the same database sees the stored ledger."""
        service.add_split(30, {"alice": 10, "bob": 10}, category="food")
        reloaded = LedgerService(mock_settings, mock_db, clock=lambda: NOW)
        assert [f.name for f in reloaded.state.friends] == ["Alice", "Bob"]
        assert reloaded.state.transactions == service.state.transactions

    def test_empty_database(self, service):
        """An empty database starts an empty ledger."""
        assert service.state.friends == []
        assert service.export_snapshot()["payload"]["transactions"] == []


class TestSplits:
    """Test recording and editing splits."""

    def test_add_split(self, service, friends):
        """Friend references resolve by name; the user's share is inferred."""
        alice, bob = friends
        tx = service.add_split(30, {"Alice": 10, "bob": "10"}, category="food", note="pizza")
        assert tx.category == "Food"
        assert tx.created_at == NOW
        assert tx.participants[0].amount_cents == 1000
        assert balances(service) == {alice.id: 1000, bob.id: 1000}

    def test_friend_payer(self, service, friends):
        """When a friend pays, the user owes them their own share."""
        alice, _ = friends
        service.add_split(50, {"alice": 20}, payer="alice")
        assert balances(service)[alice.id] == -3000

    def test_unknown_category_falls_back(self, service, friends):
        """Unknown categories become Other."""
        assert service.add_split(10, {"alice": 5}, category="Yachts").category == "Other"

    def test_share_mismatch(self, service, friends):
        """An explicit user share that doesn't add up is rejected and nothing is saved."""
        with pytest.raises(ShareMismatchError):
            service.add_split(10, {"alice": 5}, your_share=2)
        assert service.state.transactions == []

    def test_update_and_history(self, service, friends):
        """Edits show up in the filtered history."""
        alice, _ = friends
        tx = service.add_split(10, {"alice": 5})
        service.add_split(10, {"bob": 5}, category="Taxi")
        service.update_transaction(tx.id, category="drinks", note="beers")
        history = service.history("alice")
        assert [t.id for t in history] == [tx.id]
        assert history[0].category == "Drinks"
        assert len(service.history(category="Taxi")) == 1
        assert service.history(start="2024-04-01") == []

    def test_remove_friend_guard(self, service, friends):
        """A friend with a balance can't be removed until settled."""
        service.add_split(10, {"bob": 5})
        with pytest.raises(FriendHasBalanceError):
            service.remove_friend("bob")
        service.settle_up("bob", mark_paid=True)
        assert service.remove_friend("bob").name == "Bob"


class TestSettlements:
    """Test the settle-up flow."""

    def test_settle_full_balance(self, service, friends):
        """The settlement offsets the balance right away; confirming stamps it."""
        alice, _ = friends
        service.add_split(100, {"alice": 40})
        settlement = service.settle_up(
            "alice", payment=PaymentDetails(method="bank", reference="REF")
        )
        assert settlement.settlement_status == "initiated"
        assert settlement.delta_cents == -4000
        assert balances(service)[alice.id] == 0

        confirmed = service.confirm_settlement(settlement.id)
        assert confirmed.confirmed_at == NOW
        summary = service.settlement_summaries()[alice.id]
        assert summary.status == "confirmed"
        assert summary.payment.reference == "REF"

    def test_partial_and_cancel(self, service, friends):
        """Partial settlements and cancellations keep the delta."""
        alice, _ = friends
        service.add_split(100, {"alice": 40}, payer="alice")
        settlement = service.settle_up("alice", "20")
        assert settlement.delta_cents == 2000
        cancelled = service.cancel_settlement(settlement.id)
        assert cancelled.delta_cents == 2000
        assert service.reopen_settlement(settlement.id).settlement_status == "pending"

    def test_nothing_to_settle(self, service, friends):
        """An even balance can't be settled."""
        with pytest.raises(NothingToSettleError):
            service.settle_up("alice")


class TestBudgetsAndAnalytics:
    """Test budget configuration and reports."""

    def test_monthly_budget_override(self, service):
        """The stored override wins over the configured default."""
        assert service.monthly_budget_cents() == 20000
        service.set_monthly_budget("350")
        assert service.monthly_budget_cents() == 35000

    def test_budget_report(self, service, friends):
        """Spend this month is measured against the budgets."""
        service.add_split(100, {"alice": 40}, category="Food")
        service.set_category_budget("food", 50)
        report = service.budget_report()
        assert report.status.spent_cents == 6000
        assert report.status.utilization == pytest.approx(0.3)
        assert report.categories[0].category == "Food"
        assert report.categories[0].remaining_cents == -1000
        assert report.totals.total_over_budget_cents == 1000

    def test_analytics(self, service, friends):
        """Analytics honor the category filter."""
        service.add_split(100, {"alice": 40}, category="Food")
        service.add_split(10, {"bob": 5}, category="Taxi")
        report = service.analytics(category="Food", today=date(2024, 3, 20))
        assert report.overview.count == 1
        assert report.categories[0].category == "Food"
        assert [p.key for p in report.monthly_trend] == ["2024-03"]
        assert report.budget.spent_cents == 6000


class TestImportExport:
    """Test importing and exporting snapshots."""

    def test_export_then_import(self, service, friends, mock_settings, tmp_path):
        """An exported ledger imports into a fresh database unchanged."""
        service.add_split(30, {"alice": 10, "bob": 10})
        service.set_category_budget("Food", 25)
        exported = service.export_snapshot()

        other_db = Database(tmp_path / "other.db")
        try:
            other = LedgerService(mock_settings, other_db, clock=lambda: NOW)
            result = other.import_snapshot(exported)
            assert result.skipped_transactions == []
            assert other.state.to_snapshot() == service.state.to_snapshot()
        finally:
            other_db.close()

    def test_invalid_import_keeps_ledger(self, service, friends):
        """A structurally invalid import leaves the stored ledger alone."""
        with pytest.raises(SnapshotValidationError):
            service.import_snapshot({"friends": "nope"})
        assert len(service.state.friends) == 2

    def test_import_reports_skips(self, service):
        """Skipped records are reported and the rest is stored."""
        result = service.import_snapshot(
            {
                "friends": [{"id": "f1", "name": "Carol"}],
                "transactions": [
                    {"id": "t1", "total": 20, "friendId": "f1", "half": 10},
                    {"id": "t2", "total": 20, "friendId": "ghost"},
                ],
            }
        )
        assert len(result.skipped_transactions) == 1
        assert [f.name for f in service.state.friends] == ["Carol"]
        assert balances(service) == {"f1": 1000}


class TestTemplates:
    """Test saved and recurring templates."""

    def test_add_and_use(self, service, friends):
        """Using a template records a split and moves its due date on."""
        alice, _ = friends
        template = service.add_template(
            "Rent",
            900,
            {"alice": 300},
            category="bills",
            frequency="monthly",
            next_occurrence="2024-03-31",
        )
        assert template.category == "Bills"
        assert template.participants[0].amount_cents == 60000

        tx = service.use_template("rent")
        assert tx.template_id == template.id
        assert tx.note == "Rent"
        assert balances(service)[alice.id] == 30000
        stored = service.state.find_template(template.id)
        assert stored.recurrence.next_occurrence == date(2024, 4, 30)

    def test_same_name_overwrites(self, service, friends):
        """Saving under an existing name replaces that template."""
        first = service.add_template("Lunch", 20, {"bob": 10})
        second = service.add_template("lunch", 30, {"bob": 15})
        assert second.id == first.id
        assert second.updated_at == NOW
        assert service.list_templates() == [second]

    def test_save_split_as_template(self, service, friends):
        """An existing split becomes a template; settlements cannot."""
        tx = service.add_split(30, {"alice": 10}, payer="alice", category="taxi")
        template = service.save_split_as_template(tx.id, "Cab", frequency="weekly")
        assert template.payer == friends[0].id
        assert template.recurrence.next_occurrence == NOW.date()
        assert service.due_templates() == [template]

        settlement = service.settle_up("alice")
        with pytest.raises(TemplateError):
            service.save_split_as_template(settlement.id, "Nope")

    def test_use_after_friend_removed(self, service, friends):
        """A template naming a removed friend can't be used."""
        service.add_template("Coffee", 6, {"bob": 3})
        service.remove_friend("bob")
        with pytest.raises(FriendNotFoundError):
            service.use_template("coffee")
        assert service.state.transactions == []

    def test_remove_template(self, service, friends):
        """Templates are removed by name."""
        service.add_template("Lunch", 20, {"bob": 10})
        service.remove_template("LUNCH")
        assert service.list_templates() == []
        with pytest.raises(TemplateNotFoundError):
            service.remove_template("lunch")


class TestReminders:
    """Test balance reminders."""

    def test_check_mark_and_snooze(self, service, friends):
        """A sent reminder snoozes the friend until the snooze runs out."""
        alice, bob = friends
        service.add_split(100, {"alice": 40, "bob": 10})

        result = service.check_reminders()
        assert [job.friend_id for job in result.due] == [alice.id]

        service.mark_reminders_sent([alice.id])
        result = service.check_reminders()
        assert result.due == []
        assert result.snoozed[0].retry_at == NOW + timedelta(hours=72)

        result = service.check_reminders(now=NOW + timedelta(hours=73))
        assert result.due[0].last_sent_at == NOW

    def test_configure(self, service, friends, mock_settings, mock_db):
        """Reminder preferences are stored with the ledger."""
        service.configure_reminders(threshold="5", snooze_hours=24, channels=["sms"])
        service.add_split(20, {"bob": 6})
        reloaded = LedgerService(mock_settings, mock_db, clock=lambda: NOW)
        assert reloaded.state.reminders.threshold_cents == 500
        assert reloaded.state.reminders.channels == ["sms"]
        assert [job.friend_id for job in reloaded.check_reminders().due] == [friends[1].id]

        with pytest.raises(ReminderSettingsError):
            service.configure_reminders(trigger_level="urgent")
        assert service.state.reminders.snooze_hours == 24


class TestFailedSaves:
    """Test that a failed write leaves the ledger as it was."""

    @pytest.fixture
    def broken_db(self, service, monkeypatch):
        """Make every snapshot write fail."""

        def fail(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(service.db, "save_snapshot", fail)

    def test_add_split(self, service, friends, broken_db):
        """The split is not kept in memory when it can't be stored."""
        with pytest.raises(sqlite3.OperationalError):
            service.add_split(30, {"alice": 10})
        assert service.state.transactions == []
        assert balances(service) == {friends[0].id: 0, friends[1].id: 0}

    def test_add_friend(self, service, friends, broken_db):
        """The friend list is unchanged."""
        with pytest.raises(sqlite3.OperationalError):
            service.add_friend("Carol")
        assert [f.name for f in service.state.friends] == ["Alice", "Bob"]

    def test_import(self, service, friends, broken_db):
        """An import that can't be stored doesn't replace the ledger."""
        with pytest.raises(sqlite3.OperationalError):
            service.import_snapshot({"friends": [], "transactions": []})
        assert len(service.state.friends) == 2

    def test_memory_matches_store(self, service, friends, mock_settings, mock_db, monkeypatch):
        """After a failed write, memory and the database still agree."""
        service.add_split(30, {"alice": 10})
        original = mock_db.save_snapshot

        def fail(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(service.db, "save_snapshot", fail)
        with pytest.raises(sqlite3.OperationalError):
            service.settle_up("alice")
        monkeypatch.setattr(service.db, "save_snapshot", original)

        reloaded = LedgerService(mock_settings, mock_db, clock=lambda: NOW)
        assert reloaded.state.to_snapshot() == service.state.to_snapshot()
