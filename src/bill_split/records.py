"""Conversion between domain models and exchanged JSON records.

Records use the camelCase keys and decimal currency units of the snapshot
file format; models use snake_case and integer cents.
"""

import logging
import math
from collections.abc import Mapping
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .exceptions import TransactionRejectedError
from .models import (
    YOU,
    Effect,
    Friend,
    Participant,
    PaymentDetails,
    ReminderSettings,
    SettlementStatus,
    SettlementTransaction,
    SplitTransaction,
    TemplateRecurrence,
    TransactionTemplate,
    UnrecognizedTransaction,
)
from .money import cents_to_float, to_cents
from .reminders import REMINDER_CHANNELS, REMINDER_TRIGGER_PRESETS

logger = logging.getLogger(__name__)

SETTLEMENT_STATUSES: tuple[SettlementStatus, ...] = (
    "initiated",
    "pending",
    "confirmed",
    "cancelled",
)


def is_record(value: object) -> bool:
    """True for JSON objects (mappings), False for arrays and scalars."""
    return isinstance(value, Mapping)


def normalize_settlement_status(
    value: object, fallback: SettlementStatus
) -> SettlementStatus:
    """
    Coerce a raw status to a known settlement status.

    Matching is case-insensitive and accepts the American "canceled".
    """
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "canceled":
            return "cancelled"
        for status in SETTLEMENT_STATUSES:
            if lowered == status:
                return status
    return fallback


def clean_id(value: object) -> str | None:
    """Return a trimmed, non-empty string id or None."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_amount_cents(value: object) -> int | None:
    """
    Parse a non-negative amount given as a number or numeric string.

    Returns:
        Amount in cents, or None for booleans, garbage, negative and
        non-finite values
    """
    if isinstance(value, bool) or not isinstance(value, int | float | str | Decimal):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return to_cents(amount)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    """Render a timestamp as ISO-8601 with a trailing Z for UTC."""
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


# ============================================================================
# Decoding
# ============================================================================


def participant_from_record(raw: object) -> Participant | None:
    """Decode a participant record; None when it has no usable id."""
    if not is_record(raw):
        return None
    pid = clean_id(raw.get("id"))
    if pid is None:
        return None
    return Participant(id=pid, amount_cents=max(to_cents(raw.get("amount")), 0))


def effect_from_record(raw: object) -> Effect | None:
    """Decode an effect record; None when it has no friend id."""
    if not is_record(raw) or not isinstance(raw.get("friendId"), str):
        return None
    return Effect(
        friend_id=raw["friendId"],
        share_cents=to_cents(raw.get("share")),
        delta_cents=to_cents(raw.get("delta")),
    )


def effects_from_records(raw: object) -> list[Effect]:
    """Decode a list of effect records, dropping unusable entries."""
    if not isinstance(raw, list):
        return []
    effects = []
    for entry in raw:
        effect = effect_from_record(entry)
        if effect is not None:
            effects.append(effect)
    return effects


def participants_from_records(raw: object) -> list[Participant]:
    """Decode a list of participant records, dropping unusable entries."""
    if not isinstance(raw, list):
        return []
    participants = []
    for entry in raw:
        participant = participant_from_record(entry)
        if participant is not None:
            participants.append(participant)
    return participants


def payment_from_record(raw: object) -> PaymentDetails | None:
    """Decode payment metadata; anything but an object becomes None."""
    if not is_record(raw):
        return None

    def text(key: str) -> str | None:
        value = raw.get(key)
        return value.strip() if isinstance(value, str) and value.strip() else None

    return PaymentDetails(
        method=text("method"),
        due_date=text("dueDate"),
        reference=text("reference"),
        memo=text("memo"),
    )


def friend_from_record(raw: Mapping[str, Any]) -> Friend:
    """Decode a friend record from a trusted store."""
    email = raw.get("email")
    return Friend(
        id=str(raw["id"]),
        name=str(raw.get("name") or "Friend"),
        email=email.strip().lower() if isinstance(email, str) and email.strip() else None,
        tag=str(raw.get("tag") or "friend"),
    )


def _friend_ids_from_effects(effects: list[Effect]) -> list[str]:
    seen: list[str] = []
    for effect in effects:
        if effect.friend_id and effect.friend_id not in seen:
            seen.append(effect.friend_id)
    return seen


def transaction_from_record(
    raw: Mapping[str, Any], now: datetime | None = None
) -> SplitTransaction | SettlementTransaction:
    """
    Decode a record already in the normalized shape.

    Normalized records carry both ``participants`` and ``effects`` arrays.
    Friend ids are always re-derived from the effects.

    Args:
        raw: The record mapping
        now: Fallback creation time for records without a timestamp

    Returns:
        The decoded split or settlement

    Raises:
        TransactionRejectedError: If the record has no id, or a settlement
            has no friend
    """
    tx_id = clean_id(raw.get("id"))
    if tx_id is None:
        raise TransactionRejectedError("Transaction is missing an id")

    created_at = (
        parse_timestamp(raw.get("createdAt"))
        or parse_timestamp(raw.get("updatedAt"))
        or now
        or datetime.now(UTC)
    )
    updated_at = parse_timestamp(raw.get("updatedAt"))
    participants = participants_from_records(raw.get("participants"))
    effects = effects_from_records(raw.get("effects"))
    friend_ids = _friend_ids_from_effects(effects)
    note = raw.get("note") if isinstance(raw.get("note"), str) else ""

    if raw.get("type") == "settlement":
        friend_id = clean_id(raw.get("friendId")) or (friend_ids[0] if friend_ids else None)
        if friend_id is None:
            raise TransactionRejectedError("Settlement has no friend")
        status = normalize_settlement_status(raw.get("settlementStatus"), "confirmed")
        initiated_at = parse_timestamp(raw.get("settlementInitiatedAt")) or created_at
        confirmed_at = parse_timestamp(raw.get("settlementConfirmedAt"))
        cancelled_at = parse_timestamp(raw.get("settlementCancelledAt"))
        if status == "confirmed" and confirmed_at is None:
            confirmed_at = updated_at or initiated_at
        if status == "cancelled" and cancelled_at is None:
            cancelled_at = updated_at or initiated_at
        category = raw.get("category")
        return SettlementTransaction(
            id=tx_id,
            friend_id=friend_id,
            participants=participants,
            effects=effects,
            friend_ids=friend_ids or [friend_id],
            category=category if isinstance(category, str) else None,
            note=note,
            created_at=created_at,
            updated_at=updated_at,
            settlement_status=status,
            initiated_at=initiated_at,
            confirmed_at=confirmed_at,
            cancelled_at=cancelled_at,
            payment=payment_from_record(raw.get("payment")),
        )

    if not any(p.id == YOU for p in participants):
        participants.insert(0, Participant(id=YOU, amount_cents=0))
    total = raw.get("total")
    total_cents = (
        to_cents(total)
        if total is not None
        else sum(p.amount_cents for p in participants)
    )
    payer = clean_id(raw.get("payer")) or YOU
    category = raw.get("category")
    template_id = raw.get("templateId")
    template_name = raw.get("templateName")
    return SplitTransaction(
        id=tx_id,
        total_cents=total_cents,
        payer=payer,
        participants=participants,
        effects=effects,
        friend_id=friend_ids[0] if len(friend_ids) == 1 else None,
        friend_ids=friend_ids,
        category=category if isinstance(category, str) and category.strip() else "Other",
        note=note,
        created_at=created_at,
        updated_at=updated_at,
        template_id=template_id if isinstance(template_id, str) else None,
        template_name=template_name if isinstance(template_name, str) else None,
    )


def _participant_amounts_from_records(raw: object) -> list[Participant]:
    participants: list[Participant] = []
    seen: set[str] = set()
    for entry in raw if isinstance(raw, list) else []:
        if not is_record(entry):
            continue
        pid = clean_id(entry.get("id"))
        if pid is None or pid in seen:
            continue
        participants.append(
            Participant(id=pid, amount_cents=parse_amount_cents(entry.get("amount")) or 0)
        )
        seen.add(pid)
    if YOU not in seen:
        participants.insert(0, Participant(id=YOU, amount_cents=0))
    return participants


def _finite_number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def recurrence_from_record(raw: object) -> TemplateRecurrence | None:
    """Decode a template recurrence; None when the frequency or date is unusable."""
    if not is_record(raw):
        return None
    frequency = raw.get("frequency")
    if frequency not in ("weekly", "monthly", "yearly"):
        return None
    next_occurrence = raw.get("nextOccurrence")
    if not isinstance(next_occurrence, str) or not next_occurrence.strip():
        return None
    try:
        due = date.fromisoformat(next_occurrence.strip()[:10])
    except ValueError:
        return None
    days = _finite_number(raw.get("reminderDaysBefore"))
    return TemplateRecurrence(
        frequency=frequency,
        next_occurrence=due,
        reminder_days_before=math.floor(days) if days is not None and days >= 0 else None,
    )


def template_from_record(
    raw: object, now: datetime | None = None
) -> TransactionTemplate | None:
    """
    Decode a template record.

    Missing fields fall back to defaults; unusable participants are dropped
    and a zero "you" entry is added when absent.

    Returns:
        The template, or None when it has no id or name
    """
    if not is_record(raw):
        return None
    template_id = clean_id(raw.get("id"))
    name = clean_id(raw.get("name"))
    if template_id is None or name is None:
        return None
    note = clean_id(raw.get("note"))
    return TransactionTemplate(
        id=template_id,
        name=name,
        total_cents=parse_amount_cents(raw.get("total")) or 0,
        payer=clean_id(raw.get("payer")) or YOU,
        category=clean_id(raw.get("category")) or "Other",
        note=note,
        participants=_participant_amounts_from_records(raw.get("participants")),
        created_at=parse_timestamp(raw.get("createdAt")) or now or datetime.now(UTC),
        updated_at=parse_timestamp(raw.get("updatedAt")),
        recurrence=recurrence_from_record(raw.get("recurrence")),
    )


def reminders_from_record(raw: object) -> ReminderSettings:
    """
    Decode reminder settings, replacing anything invalid with its default.

    A missing threshold falls back to the preset of the trigger level.
    """
    defaults = ReminderSettings()
    if not is_record(raw):
        return defaults

    level = raw.get("triggerLevel")
    level = level.strip().lower() if isinstance(level, str) else ""
    if level not in REMINDER_TRIGGER_PRESETS:
        level = defaults.trigger_level
    threshold = parse_amount_cents(raw.get("threshold"))
    snooze = _finite_number(raw.get("snoozeHours"))
    snooze = round(snooze) if snooze is not None else None

    channels_raw = raw.get("channels")
    values = channels_raw if isinstance(channels_raw, list) else [channels_raw]
    selected = {value.strip().lower() for value in values if isinstance(value, str)}
    channels = [channel for channel in REMINDER_CHANNELS if channel in selected]

    last_sent: dict[str, datetime] = {}
    if is_record(raw.get("lastSent")):
        for key, value in raw["lastSent"].items():
            friend_id = clean_id(key)
            sent_at = parse_timestamp(value)
            if friend_id is not None and sent_at is not None:
                last_sent[friend_id] = sent_at

    return ReminderSettings(
        trigger_level=level,
        threshold_cents=threshold if threshold is not None else REMINDER_TRIGGER_PRESETS[level],
        snooze_hours=snooze if snooze is not None and snooze > 0 else defaults.snooze_hours,
        channels=channels or defaults.channels,
        last_sent=last_sent,
    )


# ============================================================================
# Encoding
# ============================================================================


def friend_to_record(friend: Friend) -> dict[str, Any]:
    """Encode a friend as a snapshot record."""
    record: dict[str, Any] = {"id": friend.id, "name": friend.name, "tag": friend.tag}
    if friend.email:
        record["email"] = friend.email
    return record


def _participants_to_records(participants: list[Participant]) -> list[dict[str, Any]]:
    return [{"id": p.id, "amount": cents_to_float(p.amount_cents)} for p in participants]


def _effects_to_records(effects: list[Effect]) -> list[dict[str, Any]]:
    return [
        {
            "friendId": e.friend_id,
            "share": cents_to_float(e.share_cents),
            "delta": cents_to_float(e.delta_cents),
        }
        for e in effects
    ]


def transaction_to_record(
    tx: SplitTransaction | SettlementTransaction | UnrecognizedTransaction,
) -> dict[str, Any]:
    """Encode a transaction as a snapshot record."""
    if isinstance(tx, UnrecognizedTransaction):
        return dict(tx.payload)

    if isinstance(tx, SettlementTransaction):
        return {
            "id": tx.id,
            "type": "settlement",
            "friendId": tx.friend_id,
            "total": None,
            "payer": None,
            "participants": _participants_to_records(tx.participants),
            "effects": _effects_to_records(tx.effects),
            "friendIds": list(tx.friend_ids),
            "category": tx.category,
            "note": tx.note,
            "createdAt": format_timestamp(tx.created_at),
            "updatedAt": format_timestamp(tx.updated_at),
            "settlementStatus": tx.settlement_status,
            "settlementInitiatedAt": format_timestamp(tx.initiated_at),
            "settlementConfirmedAt": format_timestamp(tx.confirmed_at),
            "settlementCancelledAt": format_timestamp(tx.cancelled_at),
            "payment": (
                {
                    "method": tx.payment.method,
                    "dueDate": tx.payment.due_date,
                    "reference": tx.payment.reference,
                    "memo": tx.payment.memo,
                }
                if tx.payment
                else None
            ),
        }

    return {
        "id": tx.id,
        "type": "split",
        "total": cents_to_float(tx.total_cents),
        "payer": tx.payer,
        "participants": _participants_to_records(tx.participants),
        "effects": _effects_to_records(tx.effects),
        "friendId": tx.friend_id,
        "friendIds": list(tx.friend_ids),
        "category": tx.category,
        "note": tx.note,
        "createdAt": format_timestamp(tx.created_at),
        "updatedAt": format_timestamp(tx.updated_at),
        "templateId": tx.template_id,
        "templateName": tx.template_name,
    }


def template_to_record(template: TransactionTemplate) -> dict[str, Any]:
    """Encode a template as a snapshot record."""
    recurrence = template.recurrence
    return {
        "id": template.id,
        "name": template.name,
        "total": cents_to_float(template.total_cents),
        "payer": template.payer,
        "category": template.category,
        "note": template.note,
        "participants": _participants_to_records(template.participants),
        "createdAt": format_timestamp(template.created_at),
        "updatedAt": format_timestamp(template.updated_at),
        "recurrence": (
            {
                "frequency": recurrence.frequency,
                "nextOccurrence": recurrence.next_occurrence.isoformat(),
                "reminderDaysBefore": recurrence.reminder_days_before,
            }
            if recurrence
            else None
        ),
    }


def reminders_to_record(settings: ReminderSettings) -> dict[str, Any]:
    """Encode reminder settings as a snapshot record."""
    return {
        "triggerLevel": settings.trigger_level,
        "threshold": cents_to_float(settings.threshold_cents),
        "snoozeHours": settings.snooze_hours,
        "channels": list(settings.channels),
        "lastSent": {
            friend_id: format_timestamp(sent_at)
            for friend_id, sent_at in settings.last_sent.items()
        },
    }
