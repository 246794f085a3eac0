"""In-memory ledger state.

``LedgerState`` owns the friends, transactions, budgets, templates, reminder
settings and selection of one ledger. Callers create it from a snapshot,
mutate it through its methods and take a snapshot back out to persist or
export it.
"""

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime

from .exceptions import (
    FriendHasBalanceError,
    FriendNotFoundError,
    TemplateNotFoundError,
    TransactionNotFoundError,
)
from .ledger import REMOVAL_TOLERANCE_CENTS, balance_for, compute_balances
from .models import (
    AnyTransaction,
    Friend,
    ReminderSettings,
    SettlementStatus,
    Snapshot,
    TransactionTemplate,
    UnrecognizedTransaction,
)
from .money import to_cents
from .reminders import mark_reminders_sent
from .settlements import apply_settlement_transition
from .transactions import update_transaction_metadata

logger = logging.getLogger(__name__)


class LedgerState:
    """Mutable container for one ledger."""

    def __init__(self, snapshot: Snapshot | None = None):
        snapshot = snapshot or Snapshot()
        self.friends: list[Friend] = list(snapshot.friends)
        self.transactions: list[AnyTransaction] = list(snapshot.transactions)
        self.budgets: dict[str, int] = dict(snapshot.budgets)
        self.selected_id: str | None = snapshot.selected_id
        self.templates: list[TransactionTemplate] = list(snapshot.templates)
        self.reminders: ReminderSettings = snapshot.reminders.model_copy(deep=True)

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "LedgerState":
        """Create state from a decoded snapshot."""
        return cls(snapshot)

    def to_snapshot(self) -> Snapshot:
        """Capture the current state as a snapshot."""
        return Snapshot(
            friends=list(self.friends),
            selected_id=self.selected_id,
            transactions=list(self.transactions),
            budgets=dict(self.budgets),
            templates=list(self.templates),
            reminders=self.reminders.model_copy(deep=True),
        )

    # ------------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------------

    def get_friend(self, friend_id: str) -> Friend:
        """
        Look up a friend by id.

        Raises:
            FriendNotFoundError: If no friend has that id
        """
        for friend in self.friends:
            if friend.id == friend_id:
                return friend
        raise FriendNotFoundError(f"No friend with id {friend_id}")

    def find_friend(self, key: str) -> Friend:
        """
        Look up a friend by id, email or case-insensitive name.

        Raises:
            FriendNotFoundError: If nothing matches
        """
        lowered = key.strip().lower()
        for friend in self.friends:
            if friend.id == key or friend.email == lowered:
                return friend
        for friend in self.friends:
            if friend.name.lower() == lowered:
                return friend
        raise FriendNotFoundError(f"No friend matching '{key}'")

    def add_friend(
        self, name: str, email: str | None = None, tag: str = "friend"
    ) -> Friend:
        """
        Add a friend; an existing friend with the same email is returned instead.

        Args:
            name: Display name
            email: Optional email, stored lowercase
            tag: Free-form grouping tag

        Returns:
            The new or existing friend
        """
        email = email.strip().lower() if email and email.strip() else None
        if email:
            for friend in self.friends:
                if friend.email == email:
                    logger.info(f"Friend with email {email} already exists: {friend.id}")
                    return friend

        friend = Friend(
            id=str(uuid.uuid4()),
            name=name.strip() or "Friend",
            email=email,
            tag=tag.strip() or "friend",
        )
        self.friends.append(friend)
        if self.selected_id is None:
            self.selected_id = friend.id
        logger.info(f"Added friend {friend.name} ({friend.id})")
        return friend

    def remove_friend(self, friend_id: str) -> Friend:
        """
        Remove a friend whose balance is settled.

        Raises:
            FriendNotFoundError: If no friend has that id
            FriendHasBalanceError: If the balance is more than a cent off zero
        """
        friend = self.get_friend(friend_id)
        balance = balance_for(self.balances(), friend_id)
        if abs(balance) > REMOVAL_TOLERANCE_CENTS:
            raise FriendHasBalanceError(friend_id, balance)

        self.friends = [f for f in self.friends if f.id != friend_id]
        self.reminders.last_sent.pop(friend_id, None)
        if self.selected_id == friend_id:
            self.selected_id = self.friends[0].id if self.friends else None
        logger.info(f"Removed friend {friend.name} ({friend_id})")
        return friend

    def select_friend(self, friend_id: str | None) -> None:
        """Change the selected friend; None clears the selection."""
        if friend_id is not None:
            self.get_friend(friend_id)
        self.selected_id = friend_id

    # ------------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------------

    def _index_of(self, transaction_id: str) -> int:
        for i, tx in enumerate(self.transactions):
            if tx.id == transaction_id:
                return i
        raise TransactionNotFoundError(f"No transaction with id {transaction_id}")

    def get_transaction(self, transaction_id: str) -> AnyTransaction:
        """
        Look up a transaction by id.

        Raises:
            TransactionNotFoundError: If no transaction has that id
        """
        return self.transactions[self._index_of(transaction_id)]

    def add_transaction(self, tx: AnyTransaction) -> AnyTransaction:
        """Add a transaction; the newest comes first."""
        self.transactions.insert(0, tx)
        return tx

    def replace_transaction(self, tx: AnyTransaction) -> AnyTransaction:
        """
        Replace the transaction with the same id.

        Raises:
            TransactionNotFoundError: If no transaction has that id
        """
        self.transactions[self._index_of(tx.id)] = tx
        return tx

    def delete_transaction(self, transaction_id: str) -> AnyTransaction:
        """
        Delete a transaction by id.

        Raises:
            TransactionNotFoundError: If no transaction has that id
        """
        tx = self.transactions.pop(self._index_of(transaction_id))
        logger.info(f"Deleted transaction {transaction_id}")
        return tx

    def update_transaction(
        self,
        transaction_id: str,
        *,
        category: str | None = None,
        note: str | None = None,
        now: datetime | None = None,
    ) -> AnyTransaction:
        """
        Change the category and/or note of a transaction.

        Raises:
            TransactionNotFoundError: If no editable transaction has that id
        """
        tx = self.get_transaction(transaction_id)
        if isinstance(tx, UnrecognizedTransaction):
            raise TransactionNotFoundError(f"Transaction {transaction_id} cannot be edited")
        return self.replace_transaction(
            update_transaction_metadata(tx, category=category, note=note, now=now)
        )

    def apply_settlement_transition(
        self,
        transaction_id: str,
        target: SettlementStatus,
        now: datetime | None = None,
    ) -> AnyTransaction:
        """
        Move a settlement to a new status.

        Raises:
            TransactionNotFoundError: If no settlement has that id
            InvalidSettlementTransitionError: If the move is not allowed
        """
        self.transactions = apply_settlement_transition(
            self.transactions, transaction_id, target, now
        )
        return self.get_transaction(transaction_id)

    # ------------------------------------------------------------------------
    # Budgets and derived values
    # ------------------------------------------------------------------------

    def set_category_budget(self, category: str, amount: object | None) -> None:
        """Set a category budget in currency units; None or a negative amount removes it."""
        category = category.strip()
        cents = None if amount is None else to_cents(amount)
        if cents is None or cents < 0:
            self.budgets.pop(category, None)
            logger.info(f"Removed budget for {category}")
            return
        self.budgets[category] = cents
        logger.info(f"Set budget for {category}: {cents} cents")

    def balances(self) -> dict[str, int]:
        """Current balance per friend, in cents."""
        return compute_balances(self.transactions)

    # ------------------------------------------------------------------------
    # Templates and reminders
    # ------------------------------------------------------------------------

    def find_template(self, key: str) -> TransactionTemplate:
        """
        Look up a template by id or case-insensitive name.

        Raises:
            TemplateNotFoundError: If nothing matches
        """
        lowered = key.strip().lower()
        for template in self.templates:
            if template.id == key:
                return template
        for template in self.templates:
            if template.name.lower() == lowered:
                return template
        raise TemplateNotFoundError(f"No template matching '{key}'")

    def save_template(self, template: TransactionTemplate) -> TransactionTemplate:
        """Replace the template with the same id, or add it at the front."""
        for i, existing in enumerate(self.templates):
            if existing.id == template.id:
                self.templates[i] = template
                return template
        self.templates.insert(0, template)
        logger.info(f"Added template {template.name} ({template.id})")
        return template

    def delete_template(self, template_id: str) -> TransactionTemplate:
        """
        Delete a template by id.

        Raises:
            TemplateNotFoundError: If no template has that id
        """
        for i, template in enumerate(self.templates):
            if template.id == template_id:
                logger.info(f"Deleted template {template.name} ({template_id})")
                return self.templates.pop(i)
        raise TemplateNotFoundError(f"No template with id {template_id}")

    def record_reminders_sent(self, friend_ids: Iterable[str], when: datetime) -> None:
        """Stamp the given friends as reminded at ``when``."""
        self.reminders = mark_reminders_sent(self.reminders, friend_ids, when)
