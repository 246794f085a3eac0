"""Custom exceptions for Bill Split."""


class BillSplitError(Exception):
    """Base exception for all Bill Split errors."""

    pass


class ConfigurationError(BillSplitError):
    """Raised when configuration is invalid or missing."""

    pass


class SnapshotValidationError(BillSplitError):
    """Raised when an imported snapshot is structurally unusable."""

    pass


class TransactionRejectedError(BillSplitError):
    """Raised when a single imported transaction cannot be reconciled."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ShareMismatchError(BillSplitError):
    """Raised when participant shares don't add up to the split total."""

    def __init__(self, total_cents: int, shares_cents: int, message: str | None = None):
        self.total_cents = total_cents
        self.shares_cents = shares_cents
        super().__init__(
            message
            or f"Participant shares ({shares_cents} cents) do not match "
            f"total ({total_cents} cents)"
        )


class SettlementError(BillSplitError):
    """Base class for settlement lifecycle errors."""

    pass


class NothingToSettleError(SettlementError):
    """Raised when settling a friend whose balance is already even."""

    def __init__(self, friend_id: str):
        self.friend_id = friend_id
        super().__init__(f"Balance with {friend_id} is already settled")


class InvalidSettlementTransitionError(SettlementError):
    """Raised when a settlement status change is not allowed."""

    def __init__(self, transaction_id: str, current: str, target: str):
        self.transaction_id = transaction_id
        self.current = current
        self.target = target
        super().__init__(
            f"Settlement {transaction_id} cannot move from '{current}' to '{target}'"
        )


class TransactionNotFoundError(BillSplitError):
    """Raised when a transaction id is not in the ledger."""

    pass


class FriendNotFoundError(BillSplitError):
    """Raised when a friend id is not in the ledger."""

    pass


class FriendHasBalanceError(BillSplitError):
    """Raised when removing a friend whose balance is not settled."""

    def __init__(self, friend_id: str, balance_cents: int):
        self.friend_id = friend_id
        self.balance_cents = balance_cents
        super().__init__(
            f"Friend {friend_id} still has an open balance of {balance_cents} cents"
        )


class TemplateError(BillSplitError):
    """Raised when a transaction template is invalid."""

    pass


class TemplateNotFoundError(TemplateError):
    """Raised when a template id or name is not in the ledger."""

    pass


class ReminderSettingsError(BillSplitError):
    """Raised when reminder settings are given invalid values."""

    pass
