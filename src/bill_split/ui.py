"""Interactive prompts for the command line."""

import logging
from collections.abc import Iterable
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

logger = logging.getLogger(__name__)


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="gro" matches "groceries"
        query="ent" matches "entertainment"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


class CategoryCompleter(Completer):
    """Fuzzy search completer for expense categories."""

    def __init__(self, categories: Iterable[str]):
        """Initialize the completer with available categories."""
        self.categories = [c for c in categories if c.strip()]
        self.by_key = {c.lower(): c for c in self.categories}

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for category in self.categories:
            if not query or fuzzy_match(query, category.lower()):
                yield Completion(
                    text=category,
                    start_position=-len(document.text),
                    display=category,
                )

    def resolve(self, text: str) -> str | None:
        """Map typed text back to a category, ignoring case."""
        return self.by_key.get(text.strip().lower())


def select_category_interactive(
    categories: Iterable[str],
    description: str,
    suggested: str | None = None,
) -> str | None:
    """
    Interactive category selection with fuzzy search.

    Args:
        categories: Available category names
        description: What is being categorized
        suggested: Category to pre-fill

    Returns:
        Selected category, or None to skip
    """
    completer = CategoryCompleter(categories)

    print(f"\n📝 Categorize: {description}")
    print("   Type to search, press Enter to confirm, Ctrl+C to skip\n")

    session: PromptSession[str] = PromptSession(completer=completer)
    default_text = suggested if suggested and completer.resolve(suggested) else ""

    try:
        while True:
            result = session.prompt(
                "Category: ",
                default=default_text,
                complete_while_typing=True,
            )

            if not result:
                return None

            category = completer.resolve(result)
            if category:
                logger.info(f"User selected category: {category}")
                return category

            print("❌ Invalid category. Please select from the list or press Tab to complete.")
            default_text = ""

    except KeyboardInterrupt:
        print("\n⏭️  Skipped")
        return None
    except EOFError:
        return None


def confirm(message: str, default: bool = False) -> bool:
    """
    Simple yes/no confirmation.

    Args:
        message: Question to show
        default: Answer used for empty input

    Returns:
        True if confirmed
    """
    hint = "[Y/n]" if default else "[y/N]"
    try:
        response = input(f"{message} {hint} ").strip().lower()
    except EOFError:
        return default
    if not response:
        return default
    return response in ("y", "yes")
