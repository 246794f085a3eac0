"""Canonical expense categories."""

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Food",
    "Drinks",
    "Groceries",
    "Taxi",
    "Transport",
    "Entertainment",
    "Bills",
    "Shopping",
    "Other",
)

FALLBACK_CATEGORY = "Other"


def normalize_category_key(category: str) -> str:
    """
    Normalize a category name for case-insensitive matching.

    Args:
        category: The raw category string

    Returns:
        Normalized key (lowercase, stripped)
    """
    return category.strip().lower()


def build_category_index(categories: Iterable[str] = DEFAULT_CATEGORIES) -> dict[str, str]:
    """Map normalized keys to canonical category labels."""
    return {normalize_category_key(c): c.strip() for c in categories if c.strip()}


def resolve_category(
    value: object,
    index: dict[str, str] | None = None,
    fallback: str = FALLBACK_CATEGORY,
) -> str:
    """
    Resolve a raw category against the canonical list.

    Empty or missing values quietly become the fallback; unknown names also
    become the fallback but are logged.
    """
    if index is None:
        index = build_category_index()
    if not isinstance(value, str) or not value.strip():
        return fallback
    canonical = index.get(normalize_category_key(value))
    if canonical is None:
        logger.warning(f"Unknown category '{value.strip()}', defaulting to '{fallback}'")
        return fallback
    return canonical
