"""Analytics and budget aggregation.

Every function takes a transaction list the caller has already filtered and
returns plain summary models. All money is in cents.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from .categories import DEFAULT_CATEGORIES, build_category_index, normalize_category_key
from .models import (
    YOU,
    AnalyticsOverview,
    AnyTransaction,
    BudgetAggregate,
    BudgetStatus,
    BudgetTotals,
    CategoryBreakdown,
    CategoryTotal,
    FriendBalance,
    MonthlyDataPoint,
    SettlementTransaction,
    SplitTransaction,
    UnrecognizedTransaction,
)
from .settlements import is_confirmed_settlement

UNCATEGORIZED = "Uncategorized"
MONTH_LABELS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)  # fmt: skip
WARNING_UTILIZATION = 0.9


def _divide_cents(cents: int, divisor: int) -> int:
    """Divide an amount of cents, rounding half away from zero."""
    quotient = Decimal(cents) / Decimal(divisor)
    return int(quotient.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _ratio(part: int, whole: int, places: str) -> float:
    value = Decimal(part) / Decimal(whole)
    return float(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


def month_key(moment: date) -> str:
    """Bucket key for a date or datetime, e.g. '2024-03'."""
    return f"{moment.year:04d}-{moment.month:02d}"


def month_label(key: str) -> str:
    """Short English month name for a bucket key."""
    return MONTH_LABELS[int(key.split("-")[1]) - 1]


def _timestamp(tx: AnyTransaction) -> datetime | None:
    if isinstance(tx, UnrecognizedTransaction):
        return None
    return tx.created_at or tx.updated_at


def personal_share_cents(tx: AnyTransaction) -> int:
    """
    The user's own part of a split.

    Uses the "you" participant amount; when the user paid and there is no
    participant breakdown, the whole total is theirs. Settlements are not
    spending and have no personal share.
    """
    if not isinstance(tx, SplitTransaction):
        return 0
    you = next((p for p in tx.participants if p.id == YOU), None)
    if you is not None and you.amount_cents > 0:
        return you.amount_cents
    has_breakdown = any(p.id != YOU for p in tx.participants)
    if tx.payer == YOU and not has_breakdown and tx.total_cents > 0:
        return tx.total_cents
    return 0


def transaction_volume_cents(tx: AnyTransaction) -> int:
    """
    Gross amount moved by a transaction.

    Prefers the recorded total; falls back to the effect shares (or absolute
    deltas) for records without one, such as settlements.
    """
    if isinstance(tx, UnrecognizedTransaction):
        return 0
    if isinstance(tx, SplitTransaction) and tx.total_cents != 0:
        return abs(tx.total_cents)
    amount = 0
    for effect in tx.effects:
        if effect.share_cents > 0:
            amount += effect.share_cents
        elif effect.delta_cents != 0:
            amount += abs(effect.delta_cents)
    return amount


def _category_name(tx: SplitTransaction) -> str:
    return tx.category.strip() or UNCATEGORIZED


def compute_analytics_overview(transactions: Iterable[AnyTransaction]) -> AnalyticsOverview:
    """
    Summarize a list of transactions.

    Unconfirmed settlements count toward volume but not toward what is owed.
    """
    count = 0
    total_volume = 0
    owed_to_you = 0
    you_owe = 0

    for tx in transactions:
        if isinstance(tx, UnrecognizedTransaction):
            continue
        count += 1
        total_volume += transaction_volume_cents(tx)
        if not is_confirmed_settlement(tx):
            continue
        for effect in tx.effects:
            if effect.delta_cents > 0:
                owed_to_you += effect.delta_cents
            elif effect.delta_cents < 0:
                you_owe += -effect.delta_cents

    return AnalyticsOverview(
        count=count,
        total_volume_cents=total_volume,
        owed_to_you_cents=owed_to_you,
        you_owe_cents=you_owe,
        net_balance_cents=owed_to_you - you_owe,
        average_cents=_divide_cents(total_volume, count) if count else 0,
    )


def _category_spend(
    transactions: Iterable[AnyTransaction],
) -> dict[str, tuple[int, int]]:
    """Category -> (count, personal share) over splits with a positive share."""
    spend: dict[str, tuple[int, int]] = {}
    for tx in transactions:
        if not isinstance(tx, SplitTransaction):
            continue
        share = personal_share_cents(tx)
        if share <= 0:
            continue
        category = _category_name(tx)
        count, total = spend.get(category, (0, 0))
        spend[category] = (count + 1, total + share)
    return spend


def compute_category_totals(transactions: Iterable[AnyTransaction]) -> list[CategoryTotal]:
    """Personal spend per category, largest first."""
    spend = _category_spend(transactions)
    totals = [CategoryTotal(category=c, amount_cents=t) for c, (_, t) in spend.items()]
    return sorted(totals, key=lambda entry: -entry.amount_cents)


def compute_category_breakdown(
    transactions: Iterable[AnyTransaction],
) -> list[CategoryBreakdown]:
    """
    Personal spend per category with its percentage of the grand total.

    Percentages are rounded to one decimal place, so they add up to 100
    within 0.1 per category.
    """
    spend = _category_spend(transactions)
    grand_total = sum(total for _, total in spend.values())

    breakdown = [
        CategoryBreakdown(
            category=category,
            count=count,
            total_cents=total,
            percentage=_ratio(total * 100, grand_total, "0.1") if grand_total > 0 else 0.0,
        )
        for category, (count, total) in spend.items()
    ]
    return sorted(breakdown, key=lambda entry: -entry.total_cents)


def compute_monthly_trend(
    transactions: Iterable[AnyTransaction], months: int = 6
) -> list[MonthlyDataPoint]:
    """
    Personal spend per month for the most recent months that have any.

    Args:
        transactions: Transactions to bucket
        months: How many of the latest non-empty months to keep

    Returns:
        Data points in chronological order
    """
    buckets: dict[str, int] = {}
    for tx in transactions:
        moment = _timestamp(tx)
        if moment is None:
            continue
        share = personal_share_cents(tx)
        if share <= 0:
            continue
        key = month_key(moment)
        buckets[key] = buckets.get(key, 0) + share

    recent = sorted(buckets)[-max(months, 1):]
    return [
        MonthlyDataPoint(key=key, label=month_label(key), amount_cents=buckets[key])
        for key in recent
    ]


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) - offset
    return index // 12, index % 12 + 1


def compute_monthly_volume(
    transactions: Iterable[AnyTransaction], months: int = 6
) -> list[MonthlyDataPoint]:
    """
    Gross volume for a contiguous window of months ending at the latest one.

    Months without activity appear with zero. An empty list means there was
    no activity at all.
    """
    buckets: dict[str, int] = {}
    latest: datetime | None = None
    for tx in transactions:
        moment = _timestamp(tx)
        if moment is None:
            continue
        volume = transaction_volume_cents(tx)
        if volume <= 0:
            continue
        key = month_key(moment)
        buckets[key] = buckets.get(key, 0) + volume
        if latest is None or moment > latest:
            latest = moment

    if latest is None:
        return []

    points = []
    for offset in range(max(months, 1) - 1, -1, -1):
        year, month = _shift_month(latest.year, latest.month, offset)
        key = f"{year:04d}-{month:02d}"
        points.append(
            MonthlyDataPoint(key=key, label=month_label(key), amount_cents=buckets.get(key, 0))
        )
    return points


def compute_friend_balances(transactions: Iterable[AnyTransaction]) -> list[FriendBalance]:
    """Confirmed balances per friend, non-zero only, largest magnitude first."""
    totals: dict[str, int] = {}
    for tx in transactions:
        if isinstance(tx, UnrecognizedTransaction) or not is_confirmed_settlement(tx):
            continue
        for effect in tx.effects:
            if effect.friend_id and effect.delta_cents:
                totals[effect.friend_id] = totals.get(effect.friend_id, 0) + effect.delta_cents

    balances = [
        FriendBalance(friend_id=friend_id, balance_cents=balance)
        for friend_id, balance in totals.items()
        if balance != 0
    ]
    return sorted(balances, key=lambda entry: -abs(entry.balance_cents))


def compute_budget_status(
    transactions: Iterable[AnyTransaction],
    monthly_budget_cents: int,
    today: date,
) -> BudgetStatus:
    """
    Measure this month's personal spend against a monthly budget.

    Args:
        transactions: Transactions to consider
        monthly_budget_cents: Budget ceiling; 0 means no budget
        today: Reference date selecting the current month

    Returns:
        Budget status; "over" at 100% utilization, "warning" from 90%
    """
    budget = max(monthly_budget_cents, 0)
    current_key = month_key(today)

    spent = 0
    for tx in transactions:
        moment = _timestamp(tx)
        if moment is None or month_key(moment) != current_key:
            continue
        spent += personal_share_cents(tx)

    utilization = spent / budget if budget > 0 else 0.0
    status = "on-track"
    if budget > 0:
        if utilization >= 1:
            status = "over"
        elif utilization >= WARNING_UTILIZATION:
            status = "warning"

    return BudgetStatus(
        budget_cents=budget,
        spent_cents=spent,
        remaining_cents=max(budget - spent, 0),
        utilization=utilization,
        status=status,
    )


def compute_budget_aggregates(
    transactions: Iterable[AnyTransaction],
    budgets: Mapping[str, int],
    categories: Iterable[str] = DEFAULT_CATEGORIES,
) -> list[BudgetAggregate]:
    """
    Per-category spend against the category budgets, sorted by name.

    Known categories are matched case-insensitively; categories without a
    budget are unlimited.
    """
    index = build_category_index(categories)

    def label(category: str | None) -> str:
        if not category or not category.strip():
            return UNCATEGORIZED
        return index.get(normalize_category_key(category), category.strip())

    spent: dict[str, int] = {}
    for tx in transactions:
        if isinstance(tx, SettlementTransaction | UnrecognizedTransaction):
            continue
        category = label(tx.category)
        spent[category] = spent.get(category, 0) + personal_share_cents(tx)

    budget_by_category = {label(name): amount for name, amount in budgets.items()}
    names = sorted(set(spent) | set(budget_by_category), key=str.casefold)

    aggregates = []
    for name in names:
        amount = spent.get(name, 0)
        budget = budget_by_category.get(name)
        aggregates.append(
            BudgetAggregate(
                category=name,
                budget_cents=budget,
                spent_cents=amount,
                remaining_cents=None if budget is None else budget - amount,
                is_over_budget=budget is not None and amount > budget,
                utilization=_ratio(amount, budget, "0.001") if budget else None,
            )
        )
    return aggregates


def compute_budget_totals(aggregates: Iterable[BudgetAggregate]) -> BudgetTotals:
    """Sum the categories that carry a budget."""
    budgeted = [a for a in aggregates if a.budget_cents is not None]
    total_budgeted = sum(a.budget_cents or 0 for a in budgeted)
    total_spent = sum(a.spent_cents for a in budgeted)
    return BudgetTotals(
        total_budgeted_cents=total_budgeted,
        total_spent_against_budget_cents=total_spent,
        total_remaining_cents=total_budgeted - total_spent,
        total_over_budget_cents=sum(
            max(a.spent_cents - (a.budget_cents or 0), 0) for a in budgeted
        ),
    )
