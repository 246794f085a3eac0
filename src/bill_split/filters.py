"""Category and date-range filtering applied before analytics."""

from collections.abc import Iterable
from datetime import UTC, date, datetime, time

from .categories import FALLBACK_CATEGORY
from .models import AnyTransaction, UnrecognizedTransaction
from .records import parse_timestamp

ALL_CATEGORIES = "All"


def _range_bound(value: date | datetime | str | None, end: bool) -> datetime | None:
    """
    Turn a filter bound into an aware datetime.

    Bare dates cover the whole day: a start begins at midnight, an end runs
    to the last microsecond of the day.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        if "T" in value:
            return parse_timestamp(value)
        try:
            value = date.fromisoformat(value.strip())
        except ValueError:
            return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return datetime.combine(value, time.max if end else time.min, tzinfo=UTC)


def matches_category(tx: AnyTransaction, category: str | None) -> bool:
    """True when the transaction belongs to ``category``; "All" matches everything."""
    if not category or category == ALL_CATEGORIES:
        return True
    if isinstance(tx, UnrecognizedTransaction):
        return False
    return (tx.category or FALLBACK_CATEGORY) == category


def matches_date_range(
    tx: AnyTransaction,
    start: date | datetime | str | None = None,
    end: date | datetime | str | None = None,
) -> bool:
    """
    True when the transaction falls inside the inclusive range.

    Transactions without a usable timestamp are kept.
    """
    start_at = _range_bound(start, end=False)
    end_at = _range_bound(end, end=True)
    if start_at is None and end_at is None:
        return True
    if isinstance(tx, UnrecognizedTransaction):
        return True
    moment = tx.created_at or tx.updated_at
    if moment is None:
        return True
    if start_at is not None and moment < start_at:
        return False
    if end_at is not None and moment > end_at:
        return False
    return True


def filter_transactions(
    transactions: Iterable[AnyTransaction],
    category: str | None = ALL_CATEGORIES,
    start: date | datetime | str | None = None,
    end: date | datetime | str | None = None,
) -> list[AnyTransaction]:
    """
    Select transactions by category and creation date.

    Args:
        transactions: Transactions to filter
        category: Category name, or "All" for no category filter
        start: Inclusive lower bound (date, datetime or ISO string)
        end: Inclusive upper bound (date, datetime or ISO string)

    Returns:
        Matching transactions in their original order
    """
    return [
        tx
        for tx in transactions
        if matches_category(tx, category) and matches_date_range(tx, start, end)
    ]
