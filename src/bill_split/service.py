"""Service layer that composes the ledger engine with storage.

The service owns one ``LedgerState`` loaded from the database. Every change
runs the pure engine functions against a working copy, writes the copy to the
database and only then makes it the current state.
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, date, datetime
from typing import Any

from .analytics import (
    compute_analytics_overview,
    compute_budget_aggregates,
    compute_budget_status,
    compute_budget_totals,
    compute_category_breakdown,
    compute_friend_balances,
    compute_monthly_trend,
    compute_monthly_volume,
)
from .categories import build_category_index, resolve_category
from .config import Settings
from .db import Database
from .exceptions import SettlementError, TemplateError, TemplateNotFoundError
from .filters import ALL_CATEGORIES, filter_transactions
from .ledger import balance_for
from .models import (
    YOU,
    AnalyticsReport,
    AnyTransaction,
    BudgetReport,
    Friend,
    Participant,
    PaymentDetails,
    ReminderEvaluation,
    ReminderSettings,
    RestoreResult,
    SettlementStatus,
    SettlementSummary,
    SettlementTransaction,
    SplitTransaction,
    TemplateRecurrence,
    TransactionTemplate,
)
from .money import to_cents
from .reminders import configure_reminders, evaluate_reminders
from .settlements import create_settlement, latest_settlements, plan_settlement
from .snapshot import decode_snapshot, export_snapshot, restore_snapshot
from .state import LedgerState
from .templates import (
    build_template,
    due_templates,
    generate_from_template,
    make_recurrence,
    template_from_transaction,
    upcoming_templates,
)
from .transactions import build_split_transaction, transaction_includes_friend

logger = logging.getLogger(__name__)

MONTHLY_BUDGET_KEY = "monthly_budget_cents"


class LedgerService:
    """Service for recording splits and settlements in a stored ledger."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the service and load the stored ledger."""
        self.settings = settings
        self.db = database
        self.clock = clock or (lambda: datetime.now(UTC))
        self.category_index = build_category_index(settings.categories)
        self.state = self._load()

    def _load(self) -> LedgerState:
        data = self.db.load_snapshot()
        if data is None:
            logger.info("No stored ledger, starting empty")
            return LedgerState()
        snapshot = decode_snapshot(data)
        logger.debug(
            f"Loaded {len(snapshot.friends)} friend(s) and "
            f"{len(snapshot.transactions)} transaction(s)"
        )
        return LedgerState.from_snapshot(snapshot)

    def _persist(self, state: LedgerState):
        self.db.save_snapshot(export_snapshot(state.to_snapshot()))

    def save(self):
        """Write the current state to the database."""
        self._persist(self.state)

    @contextmanager
    def _editing(self) -> Iterator[LedgerState]:
        """
        Yield a working copy of the state for one change.

        The copy replaces the current state only after it has been written,
        so an error in the change or in the write leaves both as they were.
        """
        draft = LedgerState.from_snapshot(self.state.to_snapshot())
        yield draft
        self._persist(draft)
        self.state = draft

    @staticmethod
    def _participants(
        state: LedgerState, friend_shares: Mapping[str, object], your_share: object
    ) -> list[Participant]:
        participants = [Participant(id=YOU, amount_cents=max(to_cents(your_share), 0))]
        for key, share in friend_shares.items():
            friend = state.find_friend(key)
            participants.append(Participant(id=friend.id, amount_cents=max(to_cents(share), 0)))
        return participants

    @staticmethod
    def _payer_id(state: LedgerState, payer: str) -> str:
        return YOU if payer == YOU else state.find_friend(payer).id

    # ========================================================================
    # Friends
    # ========================================================================

    def add_friend(self, name: str, email: str | None = None, tag: str = "friend") -> Friend:
        """Add a friend and persist the ledger."""
        with self._editing() as state:
            friend = state.add_friend(name, email=email, tag=tag)
        return friend

    def remove_friend(self, key: str) -> Friend:
        """
        Remove a friend by id, email or name.

        Raises:
            FriendNotFoundError: If no friend matches
            FriendHasBalanceError: If the friend still has an open balance
        """
        with self._editing() as state:
            friend = state.remove_friend(state.find_friend(key).id)
        return friend

    def balances(self) -> list[tuple[Friend, int]]:
        """Every friend with their current balance in cents."""
        balances = self.state.balances()
        return [(friend, balance_for(balances, friend.id)) for friend in self.state.friends]

    # ========================================================================
    # Splits
    # ========================================================================

    def add_split(
        self,
        total: object,
        friend_shares: Mapping[str, object],
        *,
        payer: str = YOU,
        your_share: object = None,
        category: str | None = None,
        note: str = "",
    ) -> SplitTransaction:
        """
        Record a split.

        Args:
            total: Total in currency units
            friend_shares: Friend id, email or name mapped to their share
            payer: "you" or a friend id, email or name
            your_share: The user's share; inferred from the total when None
            category: Category name, resolved against the configured list
            note: Free-form note

        Returns:
            The recorded split

        Raises:
            FriendNotFoundError: If a friend reference doesn't match
            ShareMismatchError: If the shares don't add up to the total
        """
        with self._editing() as state:
            tx = build_split_transaction(
                total,
                self._payer_id(state, payer),
                self._participants(state, friend_shares, your_share),
                category=resolve_category(category, self.category_index),
                note=note,
                now=self.clock(),
            )
            state.add_transaction(tx)
        logger.info(f"Recorded split {tx.id} for {tx.total_cents} cents")
        return tx

    def update_transaction(
        self, transaction_id: str, *, category: str | None = None, note: str | None = None
    ) -> AnyTransaction:
        """Change the category or note of a transaction."""
        if category is not None:
            category = resolve_category(category, self.category_index)
        with self._editing() as state:
            tx = state.update_transaction(
                transaction_id, category=category, note=note, now=self.clock()
            )
        return tx

    def delete_transaction(self, transaction_id: str) -> AnyTransaction:
        """Delete a transaction."""
        with self._editing() as state:
            tx = state.delete_transaction(transaction_id)
        return tx

    def history(
        self,
        friend_key: str | None = None,
        category: str | None = ALL_CATEGORIES,
        start: date | str | None = None,
        end: date | str | None = None,
    ) -> list[AnyTransaction]:
        """Transactions filtered by friend, category and date range, newest first."""
        transactions = filter_transactions(self.state.transactions, category, start, end)
        if friend_key:
            friend_id = self.state.find_friend(friend_key).id
            transactions = [
                tx for tx in transactions if transaction_includes_friend(tx, friend_id)
            ]
        return transactions

    # ========================================================================
    # Templates
    # ========================================================================

    def _recurrence(
        self,
        frequency: str | None,
        next_occurrence: date | str | None,
        reminder_days_before: int | None,
    ) -> TemplateRecurrence | None:
        if frequency is None:
            return None
        return make_recurrence(
            frequency, next_occurrence, reminder_days_before, today=self.clock().date()
        )

    @staticmethod
    def _existing_template(state: LedgerState, name: str) -> TransactionTemplate | None:
        try:
            return state.find_template(name)
        except TemplateNotFoundError:
            return None

    def add_template(
        self,
        name: str,
        total: object,
        friend_shares: Mapping[str, object],
        *,
        payer: str = YOU,
        your_share: object = None,
        category: str | None = None,
        note: str | None = None,
        frequency: str | None = None,
        next_occurrence: date | str | None = None,
        reminder_days_before: int | None = None,
    ) -> TransactionTemplate:
        """
        Save a split preset under a name.

        A template with the same name is overwritten and keeps its id.

        Raises:
            FriendNotFoundError: If a friend reference doesn't match
            ShareMismatchError: If the shares don't add up to the total
            TemplateError: If the name or recurrence is invalid
        """
        recurrence = self._recurrence(frequency, next_occurrence, reminder_days_before)
        with self._editing() as state:
            template = build_template(
                name,
                total,
                self._payer_id(state, payer),
                self._participants(state, friend_shares, your_share),
                category=resolve_category(category, self.category_index),
                note=note,
                recurrence=recurrence,
                existing=self._existing_template(state, name),
                now=self.clock(),
            )
            state.save_template(template)
        return template

    def save_split_as_template(
        self,
        transaction_id: str,
        name: str,
        *,
        frequency: str | None = None,
        next_occurrence: date | str | None = None,
        reminder_days_before: int | None = None,
    ) -> TransactionTemplate:
        """
        Save an existing split as a template.

        Raises:
            TransactionNotFoundError: If no transaction has that id
            TemplateError: If the transaction is not a split, or the name or
                recurrence is invalid
        """
        recurrence = self._recurrence(frequency, next_occurrence, reminder_days_before)
        with self._editing() as state:
            tx = state.get_transaction(transaction_id)
            if not isinstance(tx, SplitTransaction):
                raise TemplateError(f"Transaction {transaction_id} is not a split")
            template = template_from_transaction(
                tx,
                name,
                recurrence=recurrence,
                existing=self._existing_template(state, name),
                now=self.clock(),
            )
            state.save_template(template)
        return template

    def list_templates(self) -> list[TransactionTemplate]:
        """Saved templates, newest first."""
        return list(self.state.templates)

    def remove_template(self, key: str) -> TransactionTemplate:
        """
        Delete a template by id or name.

        Raises:
            TemplateNotFoundError: If nothing matches
        """
        with self._editing() as state:
            template = state.delete_template(state.find_template(key).id)
        return template

    def use_template(self, key: str) -> SplitTransaction:
        """
        Record a split from a template and advance its recurrence.

        Raises:
            TemplateNotFoundError: If nothing matches
            FriendNotFoundError: If the template names a removed friend
            ShareMismatchError: If the stored shares no longer match the total
        """
        with self._editing() as state:
            template = state.find_template(key)
            for participant in template.participants:
                if participant.id != YOU:
                    state.get_friend(participant.id)
            if template.payer != YOU:
                state.get_friend(template.payer)
            tx, advanced = generate_from_template(template, now=self.clock())
            state.add_transaction(tx)
            state.save_template(advanced)
        logger.info(f"Recorded split {tx.id} from template '{template.name}'")
        return tx

    def due_templates(self, today: date | None = None) -> list[TransactionTemplate]:
        """Recurring templates whose due date has arrived."""
        return due_templates(self.state.templates, today or self.clock().date())

    def upcoming_templates(self, today: date | None = None) -> list[TransactionTemplate]:
        """Recurring templates inside their reminder window."""
        return upcoming_templates(self.state.templates, today or self.clock().date())

    # ========================================================================
    # Settlements
    # ========================================================================

    def settle_up(
        self,
        friend_key: str,
        amount: object = None,
        *,
        mark_paid: bool = False,
        payment: PaymentDetails | None = None,
        note: str = "",
    ) -> SettlementTransaction:
        """
        Record a settlement that clears the balance with a friend.

        Raises:
            FriendNotFoundError: If no friend matches
            NothingToSettleError: If the balance is already even
            SettlementError: If the amount is not positive
        """
        with self._editing() as state:
            friend = state.find_friend(friend_key)
            balance = balance_for(state.balances(), friend.id)
            request = plan_settlement(
                friend.id, balance, amount, mark_paid=mark_paid, payment=payment
            )
            settlement = create_settlement(request, now=self.clock(), note=note)
            state.add_transaction(settlement)
        return settlement

    def transition_settlement(
        self, transaction_id: str, target: SettlementStatus
    ) -> SettlementTransaction:
        """
        Move a settlement to a new status and persist it.

        Raises:
            TransactionNotFoundError: If no settlement has that id
            InvalidSettlementTransitionError: If the move is not allowed
        """
        with self._editing() as state:
            tx = state.apply_settlement_transition(transaction_id, target, self.clock())
            if not isinstance(tx, SettlementTransaction):
                raise SettlementError(f"Transaction {transaction_id} is not a settlement")
        return tx

    def confirm_settlement(self, transaction_id: str) -> SettlementTransaction:
        """Mark a settlement as paid."""
        return self.transition_settlement(transaction_id, "confirmed")

    def cancel_settlement(self, transaction_id: str) -> SettlementTransaction:
        """Cancel a settlement."""
        return self.transition_settlement(transaction_id, "cancelled")

    def reopen_settlement(self, transaction_id: str) -> SettlementTransaction:
        """Move a settlement back to pending."""
        return self.transition_settlement(transaction_id, "pending")

    def settlement_summaries(self) -> dict[str, SettlementSummary]:
        """Latest settlement per friend."""
        return latest_settlements(self.state.transactions)

    # ========================================================================
    # Reminders
    # ========================================================================

    def check_reminders(self, now: datetime | None = None) -> ReminderEvaluation:
        """Friends who owe at least the reminder threshold, due or snoozed."""
        return evaluate_reminders(
            self.state.balances(), self.state.reminders, now or self.clock()
        )

    def mark_reminders_sent(self, friend_ids: Iterable[str]) -> ReminderSettings:
        """Record that reminders went out to the given friends now."""
        with self._editing() as state:
            state.record_reminders_sent(friend_ids, self.clock())
        return self.state.reminders

    def configure_reminders(
        self,
        *,
        trigger_level: str | None = None,
        threshold: object = None,
        snooze_hours: int | None = None,
        channels: Iterable[str] | None = None,
    ) -> ReminderSettings:
        """
        Change the reminder preferences.

        Raises:
            ReminderSettingsError: If a value is invalid
        """
        with self._editing() as state:
            state.reminders = configure_reminders(
                state.reminders,
                trigger_level=trigger_level,
                threshold_cents=None if threshold is None else to_cents(threshold),
                snooze_hours=snooze_hours,
                channels=channels,
            )
        return self.state.reminders

    # ========================================================================
    # Budgets and analytics
    # ========================================================================

    def monthly_budget_cents(self) -> int:
        """Monthly budget: the stored override, else the configured default."""
        stored = self.db.get_config(MONTHLY_BUDGET_KEY)
        if stored is not None:
            return int(stored)
        return to_cents(self.settings.monthly_budget)

    def set_monthly_budget(self, amount: object):
        """Store a monthly budget override, in currency units."""
        cents = max(to_cents(amount), 0)
        self.db.set_config(MONTHLY_BUDGET_KEY, str(cents))
        logger.info(f"Monthly budget set to {cents} cents")

    def set_category_budget(self, category: str, amount: object | None):
        """Set or clear (None) the budget of one category."""
        canonical = self.category_index.get(category.strip().lower(), category.strip())
        with self._editing() as state:
            state.set_category_budget(canonical, amount)

    def budget_report(self, today: date | None = None) -> BudgetReport:
        """Monthly budget status and per-category budget usage."""
        today = today or self.clock().date()
        aggregates = compute_budget_aggregates(
            self.state.transactions, self.state.budgets, self.settings.categories
        )
        return BudgetReport(
            status=compute_budget_status(
                self.state.transactions, self.monthly_budget_cents(), today
            ),
            categories=aggregates,
            totals=compute_budget_totals(aggregates),
        )

    def analytics(
        self,
        category: str | None = ALL_CATEGORIES,
        start: date | str | None = None,
        end: date | str | None = None,
        today: date | None = None,
    ) -> AnalyticsReport:
        """Compute every analytics view over the filtered transactions."""
        transactions = filter_transactions(self.state.transactions, category, start, end)
        months = self.settings.trend_months
        return AnalyticsReport(
            overview=compute_analytics_overview(transactions),
            categories=compute_category_breakdown(transactions),
            monthly_trend=compute_monthly_trend(transactions, months),
            monthly_volume=compute_monthly_volume(transactions, months),
            friend_balances=compute_friend_balances(transactions),
            budget=compute_budget_status(
                transactions, self.monthly_budget_cents(), today or self.clock().date()
            ),
        )

    # ========================================================================
    # Import / export
    # ========================================================================

    def import_snapshot(self, data: Any) -> RestoreResult:
        """
        Replace the ledger with an imported snapshot.

        Raises:
            SnapshotValidationError: If the snapshot is structurally invalid;
                the stored ledger is left untouched
        """
        result = restore_snapshot(data, categories=self.settings.categories, now=self.clock())
        state = LedgerState.from_snapshot(result.to_snapshot())
        self._persist(state)
        self.state = state
        return result

    def export_snapshot(self) -> dict[str, Any]:
        """Current ledger in the snapshot envelope format."""
        return export_snapshot(self.state.to_snapshot())
