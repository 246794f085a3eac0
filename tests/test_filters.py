"""Tests for analytics filters."""

from datetime import UTC, date, datetime

import pytest

from bill_split.filters import filter_transactions, matches_category, matches_date_range
from bill_split.models import UnrecognizedTransaction
from bill_split.settlements import create_settlement, plan_settlement
from bill_split.transactions import build_split_transaction


@pytest.fixture
def transactions():
    """Splits on three days plus a settlement and an unrecognized record."""
    return [
        build_split_transaction(
            10,
            "you",
            [{"id": "a", "amount": 5}],
            category="Food",
            transaction_id="food",
            now=datetime(2024, 3, 1, 0, 0, tzinfo=UTC),
        ),
        build_split_transaction(
            20,
            "you",
            [{"id": "a", "amount": 5}],
            category="Taxi",
            transaction_id="taxi",
            now=datetime(2024, 3, 10, 23, 59, tzinfo=UTC),
        ),
        build_split_transaction(
            30,
            "you",
            [{"id": "a", "amount": 5}],
            category="Food",
            transaction_id="late",
            now=datetime(2024, 4, 2, 8, 0, tzinfo=UTC),
        ),
        create_settlement(
            plan_settlement("a", 500),
            now=datetime(2024, 3, 5, tzinfo=UTC),
            transaction_id="settle",
        ),
        UnrecognizedTransaction(payload={"id": "odd"}),
    ]


def ids(transactions):
    return [tx.id for tx in transactions]


class TestCategoryFilter:
    """Test the category filter."""

    def test_all(self, transactions):
        """The All category keeps everything."""
        assert len(filter_transactions(transactions)) == 5
        assert len(filter_transactions(transactions, None)) == 5

    def test_specific(self, transactions):
        """A category keeps only its own transactions."""
        assert ids(filter_transactions(transactions, "Food")) == ["food", "late"]

    def test_settlement_without_category(self, transactions):
        """A settlement without a category counts as Other."""
        assert ids(filter_transactions(transactions, "Other")) == ["settle"]

    def test_unrecognized_never_matches_a_category(self):
        """Unrecognized records only pass the "All" filter."""
        tx = UnrecognizedTransaction(payload={"category": "Food"})
        assert not matches_category(tx, "Food")
        assert matches_category(tx, "All")


class TestDateRangeFilter:
    """Test the inclusive date range."""

    def test_bare_dates_cover_whole_days(self, transactions):
        """An end date includes everything up to midnight of that day."""
        result = filter_transactions(transactions, start=date(2024, 3, 1), end=date(2024, 3, 10))
        assert ids(result) == ["food", "taxi", "settle", "odd"]

    def test_iso_strings(self, transactions):
        """Date strings and timestamps both work as bounds."""
        assert ids(filter_transactions(transactions, "Food", start="2024-03-02")) == ["late"]
        assert ids(
            filter_transactions(transactions, "Taxi", end="2024-03-10T12:00:00Z")
        ) == []

    def test_invalid_bound_is_ignored(self, transactions):
        """An unparseable bound doesn't filter."""
        assert len(filter_transactions(transactions, start="not a date")) == 5

    def test_naive_datetime_is_utc(self, transactions):
        """Naive datetimes are taken as UTC."""
        tx = transactions[0]
        assert matches_date_range(tx, start=datetime(2024, 3, 1))
        assert not matches_date_range(tx, start=datetime(2024, 3, 1, 0, 1))

    def test_combined(self, transactions):
        """Category and range are applied together."""
        result = filter_transactions(
            transactions, "Food", start="2024-03-01", end="2024-03-31"
        )
        assert ids(result) == ["food"]
