"""Transaction templates.

A template is a saved split: total, payer, category and participant shares
under a name. New splits are built from it, and a recurring template moves
its next due date forward each time it is used.
"""

import calendar
import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any

from .exceptions import TemplateError
from .models import (
    YOU,
    Participant,
    RecurrenceFrequency,
    SplitTransaction,
    TemplateRecurrence,
    TransactionTemplate,
)
from .money import from_cents
from .transactions import build_split_transaction

logger = logging.getLogger(__name__)

RECURRENCE_FREQUENCIES: tuple[RecurrenceFrequency, ...] = ("weekly", "monthly", "yearly")


def generate_template_id() -> str:
    """Generate a new template id."""
    return str(uuid.uuid4())


def _shift_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def add_interval(day: date, frequency: RecurrenceFrequency) -> date:
    """
    Move a date forward by one recurrence period.

    Month and year steps keep the day of month, clamped to the end of a
    shorter month: Jan 31 -> Feb 28/29, Feb 29 -> Feb 28 next year.
    """
    if frequency == "weekly":
        return day + timedelta(days=7)
    if frequency == "monthly":
        return _shift_months(day, 1)
    return _shift_months(day, 12)


def make_recurrence(
    frequency: str,
    next_occurrence: date | str | None = None,
    reminder_days_before: int | None = None,
    *,
    today: date | None = None,
) -> TemplateRecurrence:
    """
    Build a recurrence from user input.

    Args:
        frequency: "weekly", "monthly" or "yearly" (any case)
        next_occurrence: First due date; defaults to today
        reminder_days_before: Days before the due date to start flagging it
        today: Current date

    Raises:
        TemplateError: If the frequency, date or reminder offset is invalid
    """
    normalized = frequency.strip().lower()
    if normalized not in RECURRENCE_FREQUENCIES:
        raise TemplateError(
            f"Unknown frequency '{frequency}' (expected one of "
            f"{', '.join(RECURRENCE_FREQUENCIES)})"
        )
    if isinstance(next_occurrence, str):
        try:
            next_occurrence = date.fromisoformat(next_occurrence.strip())
        except ValueError as e:
            raise TemplateError(f"Invalid date '{next_occurrence}'") from e
    if reminder_days_before is not None and reminder_days_before < 0:
        raise TemplateError("Reminder days must not be negative")
    return TemplateRecurrence(
        frequency=normalized,
        next_occurrence=next_occurrence or today or datetime.now(UTC).date(),
        reminder_days_before=reminder_days_before,
    )


def template_from_transaction(
    tx: SplitTransaction,
    name: str,
    *,
    recurrence: TemplateRecurrence | None = None,
    existing: TransactionTemplate | None = None,
    template_id: str | None = None,
    now: datetime | None = None,
) -> TransactionTemplate:
    """
    Save a split's amounts and participants as a template.

    Passing ``existing`` overwrites that template: it keeps its id and
    creation time and gets an update time.

    Raises:
        TemplateError: If the name is empty
    """
    if not name or not name.strip():
        raise TemplateError("Template name must not be empty")
    timestamp = now or datetime.now(UTC)
    return TransactionTemplate(
        id=existing.id if existing else template_id or generate_template_id(),
        name=name.strip(),
        total_cents=tx.total_cents,
        payer=tx.payer,
        category=tx.category,
        note=tx.note or None,
        participants=[p.model_copy() for p in tx.participants],
        created_at=existing.created_at if existing else timestamp,
        updated_at=timestamp if existing else None,
        recurrence=recurrence,
    )


def build_template(
    name: str,
    total: object,
    payer: str = YOU,
    participants: Iterable[Mapping[str, Any] | Participant] = (),
    *,
    category: str = "Other",
    note: str | None = None,
    recurrence: TemplateRecurrence | None = None,
    existing: TransactionTemplate | None = None,
    now: datetime | None = None,
) -> TransactionTemplate:
    """
    Build a template from raw split input.

    The shares are checked exactly like a split: the user's share is
    inferred when zero and everything must add up to the total.

    Raises:
        TemplateError: If the name is empty
        ShareMismatchError: If the shares don't match the total
    """
    preview = build_split_transaction(
        total, payer, participants, category=category, note=note or "", now=now
    )
    template = template_from_transaction(
        preview, name, recurrence=recurrence, existing=existing, now=now
    )
    logger.info(f"Built template '{template.name}' ({template.id})")
    return template


def apply_template(
    template: TransactionTemplate,
    *,
    note: str | None = None,
    now: datetime | None = None,
) -> SplitTransaction:
    """
    Build a split from a template.

    The split records the template id and name; its note defaults to the
    template's note, then to the template name.

    Raises:
        ShareMismatchError: If the stored shares no longer match the total
    """
    return build_split_transaction(
        from_cents(template.total_cents),
        template.payer,
        template.participants,
        category=template.category,
        note=note if note is not None else template.note or template.name,
        template_id=template.id,
        template_name=template.name,
        now=now,
    )


def advance_template(template: TransactionTemplate) -> TransactionTemplate:
    """Move a recurring template's next due date forward one period."""
    if template.recurrence is None:
        return template
    recurrence = template.recurrence.model_copy(
        update={
            "next_occurrence": add_interval(
                template.recurrence.next_occurrence, template.recurrence.frequency
            )
        }
    )
    return template.model_copy(update={"recurrence": recurrence})


def generate_from_template(
    template: TransactionTemplate, *, now: datetime | None = None
) -> tuple[SplitTransaction, TransactionTemplate]:
    """
    Record one occurrence of a template.

    Returns:
        Tuple of (new split, template with its recurrence advanced)
    """
    tx = apply_template(template, now=now)
    advanced = advance_template(template)
    if advanced.recurrence is not None:
        logger.info(
            f"Template '{template.name}' next due {advanced.recurrence.next_occurrence}"
        )
    return tx, advanced


def is_template_due(template: TransactionTemplate, today: date) -> bool:
    """True when a recurring template's due date has arrived."""
    return template.recurrence is not None and template.recurrence.next_occurrence <= today


def is_template_upcoming(template: TransactionTemplate, today: date) -> bool:
    """True inside the reminder window before a recurring template is due."""
    recurrence = template.recurrence
    if recurrence is None or recurrence.reminder_days_before is None:
        return False
    window_start = recurrence.next_occurrence - timedelta(days=recurrence.reminder_days_before)
    return window_start <= today < recurrence.next_occurrence


def due_templates(
    templates: Iterable[TransactionTemplate], today: date
) -> list[TransactionTemplate]:
    """Recurring templates that are due, earliest first."""
    due = [template for template in templates if is_template_due(template, today)]
    return sorted(due, key=lambda template: template.recurrence.next_occurrence)


def upcoming_templates(
    templates: Iterable[TransactionTemplate], today: date
) -> list[TransactionTemplate]:
    """Recurring templates inside their reminder window, earliest first."""
    upcoming = [template for template in templates if is_template_upcoming(template, today)]
    return sorted(upcoming, key=lambda template: template.recurrence.next_occurrence)
