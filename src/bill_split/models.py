"""Pydantic domain models for Bill Split."""

from datetime import date, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

YOU = "you"  # Participant id that always stands for the ledger owner

SettlementStatus = Literal["initiated", "pending", "confirmed", "cancelled"]

# ============================================================================
# People
# ============================================================================


class Friend(BaseModel):
    """A counterparty the user shares expenses with."""

    id: str
    name: str
    email: str | None = None  # lowercase, unique among friends
    tag: str = "friend"


# ============================================================================
# Transactions
# ============================================================================


class Participant(BaseModel):
    """One entry of a split: who carries how much of the total."""

    id: str  # YOU or a friend id
    amount_cents: int = Field(default=0, ge=0)


class Effect(BaseModel):
    """Derived balance impact of a transaction on one friend.

    delta_cents is signed: positive means the friend owes the user,
    negative means the user owes the friend.
    """

    friend_id: str
    share_cents: int
    delta_cents: int


class PaymentDetails(BaseModel):
    """Optional payment metadata recorded with a settlement."""

    method: str | None = None
    due_date: str | None = None
    reference: str | None = None
    memo: str | None = None


class SplitTransaction(BaseModel):
    """An expense paid by one party and divided among participants."""

    id: str
    type: Literal["split"] = "split"
    total_cents: int
    payer: str = YOU
    participants: list[Participant]
    effects: list[Effect]
    friend_id: str | None = None  # set when exactly one friend is involved
    friend_ids: list[str] = Field(default_factory=list)
    category: str = "Other"
    note: str = ""
    created_at: datetime
    updated_at: datetime | None = None
    template_id: str | None = None
    template_name: str | None = None


class SettlementTransaction(BaseModel):
    """A payment recorded to clear some or all of a balance.

    The effect delta is fixed at creation; lifecycle changes only touch the
    status and its timestamps.
    """

    id: str
    type: Literal["settlement"] = "settlement"
    friend_id: str
    participants: list[Participant]
    effects: list[Effect]
    friend_ids: list[str] = Field(default_factory=list)
    category: str | None = None
    note: str = ""
    created_at: datetime
    updated_at: datetime | None = None
    settlement_status: SettlementStatus = "initiated"
    initiated_at: datetime | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    payment: PaymentDetails | None = None

    @property
    def delta_cents(self) -> int:
        """Signed balance impact of this settlement."""
        return self.effects[0].delta_cents if self.effects else 0


class UnrecognizedTransaction(BaseModel):
    """A stored record whose shape matches no known schema.

    Kept verbatim so that a later export does not lose it; it never affects
    balances or analytics.
    """

    type: Literal["unrecognized"] = "unrecognized"
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str | None:
        raw = self.payload.get("id")
        return raw if isinstance(raw, str) else None


AnyTransaction = Annotated[
    SplitTransaction | SettlementTransaction | UnrecognizedTransaction,
    Field(discriminator="type"),
]


class SettlementRequest(BaseModel):
    """A settle-up request, signed like the balance being cleared."""

    friend_id: str
    amount_cents: int  # negative when the user owes the friend
    status: SettlementStatus = "initiated"
    payment: PaymentDetails | None = None


class SettlementSummary(BaseModel):
    """Latest settlement state for one friend."""

    transaction_id: str
    friend_id: str
    status: SettlementStatus
    balance_cents: int  # balance the settlement clears
    timestamp: datetime | None = None
    payment: PaymentDetails | None = None


# ============================================================================
# Templates and Reminders
# ============================================================================

RecurrenceFrequency = Literal["weekly", "monthly", "yearly"]
ReminderChannel = Literal["email", "sms", "push"]
ReminderTriggerLevel = Literal["low", "medium", "high"]


class TemplateRecurrence(BaseModel):
    """When a recurring template is next due."""

    frequency: RecurrenceFrequency
    next_occurrence: date
    reminder_days_before: int | None = Field(default=None, ge=0)


class TransactionTemplate(BaseModel):
    """A saved split preset that new splits can be built from."""

    id: str
    name: str
    total_cents: int = Field(default=0, ge=0)
    payer: str = YOU
    category: str = "Other"
    note: str | None = None
    participants: list[Participant] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None
    recurrence: TemplateRecurrence | None = None


class ReminderSettings(BaseModel):
    """Balance reminder preferences and when each friend was last reminded."""

    trigger_level: ReminderTriggerLevel = "medium"
    threshold_cents: int = Field(default=2500, ge=0)
    snooze_hours: int = Field(default=72, ge=1)
    channels: list[ReminderChannel] = Field(default_factory=lambda: ["email"])
    last_sent: dict[str, datetime] = Field(default_factory=dict)  # friend id -> time


class ReminderJob(BaseModel):
    """A reminder that should go out now."""

    friend_id: str
    balance_cents: int
    overdue_by_cents: int  # amount above the threshold
    channels: list[ReminderChannel]
    send_at: datetime
    last_sent_at: datetime | None = None


class SnoozedReminder(BaseModel):
    """A reminder held back because one was sent recently."""

    friend_id: str
    balance_cents: int
    last_sent_at: datetime
    retry_at: datetime


class ReminderEvaluation(BaseModel):
    """Outcome of checking balances against the reminder settings."""

    due: list[ReminderJob] = Field(default_factory=list)
    snoozed: list[SnoozedReminder] = Field(default_factory=list)
    next_run_at: datetime
    threshold_cents: int
    snooze_hours: int


# ============================================================================
# Snapshot Models
# ============================================================================


class Snapshot(BaseModel):
    """The full importable/exportable state bundle."""

    friends: list[Friend] = Field(default_factory=list)
    selected_id: str | None = None
    transactions: list[AnyTransaction] = Field(default_factory=list)
    budgets: dict[str, int] = Field(default_factory=dict)  # category -> cents
    templates: list[TransactionTemplate] = Field(default_factory=list)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)


class SkippedTransaction(BaseModel):
    """An imported record that was rejected, with the reason."""

    transaction: Any
    reason: str


class RestoreResult(BaseModel):
    """Outcome of importing an untrusted snapshot."""

    friends: list[Friend]
    transactions: list[AnyTransaction]
    selected_id: str | None = None
    skipped_transactions: list[SkippedTransaction] = Field(default_factory=list)
    budgets: dict[str, int] = Field(default_factory=dict)
    templates: list[TransactionTemplate] = Field(default_factory=list)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)
    version: int = 1

    def to_snapshot(self) -> Snapshot:
        """Drop the import report and keep the usable state."""
        return Snapshot(
            friends=self.friends,
            selected_id=self.selected_id,
            transactions=self.transactions,
            budgets=self.budgets,
            templates=self.templates,
            reminders=self.reminders,
        )


# ============================================================================
# Analytics Models
# ============================================================================


class AnalyticsOverview(BaseModel):
    """Summary statistics for a list of transactions."""

    count: int
    total_volume_cents: int
    owed_to_you_cents: int
    you_owe_cents: int
    net_balance_cents: int
    average_cents: int


class CategoryTotal(BaseModel):
    """Personal spend for one category."""

    category: str
    amount_cents: int


class CategoryBreakdown(BaseModel):
    """Personal spend for one category with its share of the whole."""

    category: str
    count: int
    total_cents: int
    percentage: float  # one decimal place


class MonthlyDataPoint(BaseModel):
    """One month of a trend series."""

    key: str  # YYYY-MM
    label: str  # short month name
    amount_cents: int


class FriendBalance(BaseModel):
    """Confirmed balance with one friend."""

    friend_id: str
    balance_cents: int


class BudgetStatus(BaseModel):
    """Current month spend measured against a monthly budget."""

    budget_cents: int
    spent_cents: int
    remaining_cents: int
    utilization: float
    status: Literal["on-track", "warning", "over"]


class BudgetAggregate(BaseModel):
    """Spend against the budget of a single category."""

    category: str
    budget_cents: int | None = None  # None = unlimited
    spent_cents: int
    remaining_cents: int | None = None
    is_over_budget: bool = False
    utilization: float | None = None


class BudgetTotals(BaseModel):
    """Sums over all categories that have a budget."""

    total_budgeted_cents: int
    total_spent_against_budget_cents: int
    total_remaining_cents: int
    total_over_budget_cents: int


class AnalyticsReport(BaseModel):
    """Everything the analytics view shows for one filtered list."""

    overview: AnalyticsOverview
    categories: list[CategoryBreakdown]
    monthly_trend: list[MonthlyDataPoint]
    monthly_volume: list[MonthlyDataPoint]
    friend_balances: list[FriendBalance]
    budget: BudgetStatus


class BudgetReport(BaseModel):
    """Monthly budget status plus per-category budget usage."""

    status: BudgetStatus
    categories: list[BudgetAggregate]
    totals: BudgetTotals
