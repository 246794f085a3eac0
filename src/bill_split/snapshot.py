"""Snapshot import, export and migration.

``restore_snapshot`` is the untrusted path: it validates a JSON value from an
arbitrary file, repairs what it can and reports what it had to drop.
``decode_snapshot`` is the trusted path used for the app's own store.
"""

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from .categories import DEFAULT_CATEGORIES, build_category_index, normalize_category_key
from .exceptions import ShareMismatchError, SnapshotValidationError, TransactionRejectedError
from .models import (
    YOU,
    AnyTransaction,
    Effect,
    Friend,
    Participant,
    ReminderSettings,
    RestoreResult,
    SkippedTransaction,
    Snapshot,
    SettlementTransaction,
    SplitTransaction,
    TransactionTemplate,
)
from .money import MAX_CENTS, cents_to_float, from_cents, to_cents
from .records import (
    clean_id,
    friend_from_record,
    friend_to_record,
    is_record,
    normalize_settlement_status,
    parse_amount_cents,
    parse_timestamp,
    payment_from_record,
    reminders_from_record,
    reminders_to_record,
    template_from_record,
    template_to_record,
    transaction_to_record,
)
from .settlements import extract_settlement_delta
from .transactions import build_split_transaction, generate_transaction_id, upgrade_transactions

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

RecordFormat = Literal["settlement", "split-v2", "split-v1"]


# ============================================================================
# Import helpers
# ============================================================================


class _IdArena:
    """Stable replacement ids for non-string ids, local to one import.

    Equal hashable values share an id; unhashable values are keyed by
    identity, which holds because the input outlives the import call.
    """

    def __init__(self):
        self._ids: dict[tuple[str, Any], str] = {}

    @staticmethod
    def _key(value: Any) -> tuple[str, Any]:
        try:
            hash(value)
        except TypeError:
            return ("ref", id(value))
        return (type(value).__name__, value)

    def resolve(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        key = self._key(value)
        if key not in self._ids:
            self._ids[key] = str(uuid.uuid4())
            logger.debug(f"Assigned id {self._ids[key]} to non-string id {value!r}")
        return self._ids[key]


@dataclass
class _ImportContext:
    arena: _IdArena
    friend_ids: set[str]
    now: datetime


@dataclass
class _RecordBase:
    id: str
    category: str
    note: str
    created_at: datetime
    updated_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def unwrap_envelope(data: Any) -> tuple[int, Any]:
    """
    Split a snapshot into its format version and payload.

    Accepts the current ``{"version", "payload"}`` envelope and the legacy
    bare root, which is version 1.

    Raises:
        SnapshotValidationError: If the envelope version is not an integer
    """
    if is_record(data) and "payload" in data and "version" in data:
        version = data["version"]
        if not isinstance(version, int) or isinstance(version, bool):
            raise SnapshotValidationError("Snapshot version must be an integer")
        if version > SNAPSHOT_VERSION:
            logger.warning(
                f"Snapshot version {version} is newer than {SNAPSHOT_VERSION}; "
                f"reading it best-effort"
            )
        return version, data["payload"]
    return SNAPSHOT_VERSION, data


def _validate_root(data: Any) -> Mapping[str, Any]:
    if not is_record(data):
        raise SnapshotValidationError("Invalid JSON root")
    if not isinstance(data.get("friends"), list):
        raise SnapshotValidationError("Missing friends[]")
    if not isinstance(data.get("transactions"), list):
        raise SnapshotValidationError("Missing transactions[]")
    selected = data.get("selectedId")
    if selected is not None and not isinstance(selected, str):
        raise SnapshotValidationError("selectedId must be null or string")
    return data


def sanitize_friend(
    raw: Any, arena: _IdArena, emails: dict[str, Friend]
) -> Friend | None:
    """
    Clean one imported friend record.

    Returns None for non-objects and for friends whose email was already
    taken by an earlier friend (the earlier one wins).
    """
    if not is_record(raw):
        return None

    name = raw.get("name")
    email = raw.get("email")
    tag = raw.get("tag")
    friend = Friend(
        id=arena.resolve(raw.get("id")),
        name=name.strip() if isinstance(name, str) and name.strip() else "Friend",
        email=email.strip().lower() if isinstance(email, str) and email.strip() else None,
        tag=tag if isinstance(tag, str) and tag.strip() else "friend",
    )

    if friend.email and friend.email in emails:
        kept = emails[friend.email]
        logger.warning(
            f"Merging duplicate friend by email during restore: "
            f"kept {kept.id} ({kept.name}), dropped {friend.id} ({friend.name})"
        )
        return None
    if friend.email:
        emails[friend.email] = friend
    return friend


def sanitize_budgets(raw: Any, categories: Iterable[str] = DEFAULT_CATEGORIES) -> dict[str, int]:
    """
    Clean an imported budget mapping.

    Negative, non-finite and non-numeric values are dropped; numeric strings
    are accepted. Known category names are canonicalized.

    Returns:
        Mapping of category to budget in cents
    """
    if not is_record(raw):
        return {}
    index = build_category_index(categories)
    budgets: dict[str, int] = {}
    for category, value in raw.items():
        if not isinstance(category, str) or not category.strip():
            continue
        if isinstance(value, bool):
            continue
        if isinstance(value, str):
            try:
                amount = Decimal(value.strip())
            except InvalidOperation:
                continue
        elif isinstance(value, int | float | Decimal):
            amount = Decimal(str(value))
        else:
            continue
        if not amount.is_finite() or amount < 0:
            continue
        label = index.get(normalize_category_key(category), category.strip())
        budgets[label] = to_cents(amount)
    return budgets


def sanitize_templates(
    raw: Any,
    friend_ids: set[str],
    category_index: dict[str, str],
    now: datetime,
) -> list[TransactionTemplate]:
    """
    Clean imported templates.

    Participants that name unknown friends are dropped and their shares come
    off the total; an unknown payer becomes the user. A template left without
    any friend, or whose shares don't add up, is dropped with a warning.
    Categories resolve like transaction categories.
    """
    if not isinstance(raw, list):
        return []
    templates: list[TransactionTemplate] = []
    seen: set[str] = set()
    for entry in raw:
        template = template_from_record(entry, now)
        if template is None or template.id in seen:
            logger.warning("Dropping unreadable or duplicate template during restore")
            continue
        participants = [p for p in template.participants if p.id == YOU or p.id in friend_ids]
        if not any(p.id != YOU for p in participants):
            logger.warning(f"Dropping template '{template.name}' without known friends")
            continue
        dropped_cents = sum(p.amount_cents for p in template.participants) - sum(
            p.amount_cents for p in participants
        )
        payer = template.payer if template.payer == YOU or template.payer in friend_ids else YOU
        try:
            preview = build_split_transaction(
                from_cents(max(template.total_cents - dropped_cents, 0)),
                payer,
                participants,
                now=now,
            )
        except ShareMismatchError as e:
            logger.warning(f"Dropping template '{template.name}' during restore: {e}")
            continue
        category = category_index.get(normalize_category_key(template.category), "Other")
        templates.append(
            template.model_copy(
                update={
                    "total_cents": preview.total_cents,
                    "participants": preview.participants,
                    "payer": payer,
                    "category": category,
                }
            )
        )
        seen.add(template.id)
    return templates


def sanitize_reminders(raw: Any, friend_ids: set[str]) -> ReminderSettings:
    """Clean imported reminder settings; last-sent times are kept for known friends only."""
    settings = reminders_from_record(raw)
    last_sent = {
        friend_id: sent_at
        for friend_id, sent_at in settings.last_sent.items()
        if friend_id in friend_ids
    }
    return settings.model_copy(update={"last_sent": last_sent})


def detect_record_format(raw: Mapping[str, Any]) -> RecordFormat:
    """Classify an imported transaction record."""
    if raw.get("type") == "settlement":
        return "settlement"
    if isinstance(raw.get("participants"), list):
        return "split-v2"
    return "split-v1"


def _positive_total_cents(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    cents = to_cents(value)
    return cents if cents > 0 else None


def _check_amount_range(cents: int, label: str) -> None:
    if abs(cents) > MAX_CENTS:
        raise TransactionRejectedError(f"{label} is out of range")


# ============================================================================
# Per-format parsers
# ============================================================================


def _parse_split_v2(
    raw: Mapping[str, Any], base: _RecordBase, ctx: _ImportContext
) -> SplitTransaction:
    participants: list[Participant] = []
    seen: set[str] = set()
    for part in raw["participants"]:
        if not is_record(part):
            continue
        pid = clean_id(part.get("id"))
        if pid is None:
            continue
        if pid != YOU:
            pid = ctx.arena.resolve(pid)
            if pid not in ctx.friend_ids:
                logger.warning("Skipping participant with unknown friend id during restore")
                continue
        if pid in seen:
            continue
        participants.append(Participant(id=pid, amount_cents=max(to_cents(part.get("amount")), 0)))
        seen.add(pid)

    friend_parts = [p for p in participants if p.id != YOU]
    if not friend_parts:
        raise TransactionRejectedError("Split is missing friend participants")

    total_cents = _positive_total_cents(raw.get("total"))
    friends_cents = sum(p.amount_cents for p in friend_parts)
    your_cents = total_cents - friends_cents if total_cents is not None else 0
    if your_cents < 0:
        raise TransactionRejectedError("Participant shares exceed total amount")
    computed_cents = friends_cents + your_cents
    if total_cents is None:
        total_cents = computed_cents
    if computed_cents != total_cents:
        raise TransactionRejectedError("Participant shares do not match total")
    _check_amount_range(total_cents, "Split total")

    payer = YOU
    raw_payer = raw.get("payer")
    if isinstance(raw_payer, str) and raw_payer.strip():
        if raw_payer == "friend" and len(friend_parts) == 1:
            payer = friend_parts[0].id
        elif raw_payer != YOU:
            mapped = ctx.arena.resolve(raw_payer)
            if any(p.id == mapped for p in friend_parts):
                payer = mapped
    if len(friend_parts) > 1:
        payer = YOU

    return build_split_transaction(
        from_cents(total_cents),
        payer,
        [Participant(id=YOU, amount_cents=your_cents), *friend_parts],
        category=base.category,
        note=base.note,
        created_at=base.created_at,
        updated_at=base.updated_at,
        transaction_id=base.id,
        **base.extra,
    )


def _parse_split_v1(
    raw: Mapping[str, Any], base: _RecordBase, ctx: _ImportContext
) -> SplitTransaction:
    friend_id = ctx.arena.resolve(raw["friendId"]) if isinstance(raw.get("friendId"), str) else None
    if friend_id is None or friend_id not in ctx.friend_ids:
        raise TransactionRejectedError("Split references an unknown friend")

    total_cents = _positive_total_cents(raw.get("total"))
    if total_cents is None:
        raise TransactionRejectedError("Split total must be positive")
    _check_amount_range(total_cents, "Split total")

    half_cents = parse_amount_cents(raw.get("half"))
    friend_cents = half_cents if half_cents is not None else to_cents(from_cents(total_cents) / 2)
    your_cents = max(total_cents - friend_cents, 0)

    raw_payer = raw.get("payer")
    payer = friend_id if isinstance(raw_payer, str) and raw_payer.strip() == "friend" else YOU

    return build_split_transaction(
        from_cents(total_cents),
        payer,
        [
            Participant(id=YOU, amount_cents=your_cents),
            Participant(id=friend_id, amount_cents=friend_cents),
        ],
        category=base.category,
        note=base.note,
        created_at=base.created_at,
        updated_at=base.updated_at,
        transaction_id=base.id,
        **base.extra,
    )


def _parse_settlement(
    raw: Mapping[str, Any], base: _RecordBase, ctx: _ImportContext
) -> SettlementTransaction:
    friend_id = ctx.arena.resolve(raw["friendId"]) if isinstance(raw.get("friendId"), str) else None
    if friend_id is None or friend_id not in ctx.friend_ids:
        raise TransactionRejectedError("Settlement references an unknown friend")

    delta_cents = extract_settlement_delta(raw)
    _check_amount_range(delta_cents, "Settlement amount")
    status = normalize_settlement_status(raw.get("settlementStatus"), "confirmed")
    initiated_at = parse_timestamp(raw.get("settlementInitiatedAt")) or base.created_at
    confirmed_at = parse_timestamp(raw.get("settlementConfirmedAt"))
    cancelled_at = parse_timestamp(raw.get("settlementCancelledAt"))
    if status == "confirmed" and confirmed_at is None:
        confirmed_at = base.updated_at or initiated_at
    if status == "cancelled" and cancelled_at is None:
        cancelled_at = base.updated_at or initiated_at

    return SettlementTransaction(
        id=base.id,
        friend_id=friend_id,
        participants=[
            Participant(id=YOU, amount_cents=max(-delta_cents, 0)),
            Participant(id=friend_id, amount_cents=max(delta_cents, 0)),
        ],
        effects=[
            Effect(friend_id=friend_id, share_cents=abs(delta_cents), delta_cents=delta_cents)
        ],
        friend_ids=[friend_id],
        category=base.category,
        note=base.note,
        created_at=base.created_at,
        updated_at=base.updated_at,
        settlement_status=status,
        initiated_at=initiated_at,
        confirmed_at=confirmed_at,
        cancelled_at=cancelled_at,
        payment=payment_from_record(raw.get("payment")),
    )


_RecordParser = Callable[[Mapping[str, Any], _RecordBase, _ImportContext], AnyTransaction]

_PARSERS: dict[RecordFormat, _RecordParser] = {
    "settlement": _parse_settlement,
    "split-v2": _parse_split_v2,
    "split-v1": _parse_split_v1,
}


def _record_base(
    raw: Mapping[str, Any], ctx: _ImportContext, category_index: dict[str, str]
) -> _RecordBase:
    category = "Other"
    raw_category = raw.get("category").strip() if isinstance(raw.get("category"), str) else ""
    if raw_category:
        canonical = category_index.get(normalize_category_key(raw_category))
        if canonical is None:
            logger.warning(
                f"Unknown category during restore, defaulting to 'Other': {raw_category}"
            )
        else:
            category = canonical

    raw_id = raw.get("id")
    tx_id = ctx.arena.resolve(raw_id) if raw_id is not None else generate_transaction_id()
    note = raw.get("note")

    extra: dict[str, Any] = {}
    if raw.get("type") != "settlement":
        for key, name in (("templateId", "template_id"), ("templateName", "template_name")):
            if isinstance(raw.get(key), str):
                extra[name] = raw[key]

    return _RecordBase(
        id=tx_id,
        category=category,
        note=note if isinstance(note, str) else "",
        created_at=parse_timestamp(raw.get("createdAt")) or ctx.now,
        updated_at=parse_timestamp(raw.get("updatedAt")),
        extra=extra,
    )


# ============================================================================
# Public API
# ============================================================================


def restore_snapshot(
    data: Any,
    *,
    categories: Iterable[str] = DEFAULT_CATEGORIES,
    now: datetime | None = None,
) -> RestoreResult:
    """
    Import an untrusted snapshot.

    Structural problems reject the whole import. Everything below that is
    repaired or skipped per record, so one bad transaction never aborts the
    rest.

    Args:
        data: Parsed JSON value, enveloped or bare
        categories: Canonical category list
        now: Clock value for records without a timestamp

    Returns:
        The cleaned snapshot plus the list of skipped transactions

    Raises:
        SnapshotValidationError: If the root, the friends or transactions
            arrays, or selectedId are malformed
    """
    version, payload = unwrap_envelope(data)
    root = _validate_root(payload)

    arena = _IdArena()
    emails: dict[str, Friend] = {}
    friends: list[Friend] = []
    for raw_friend in root["friends"]:
        friend = sanitize_friend(raw_friend, arena, emails)
        if friend is None:
            continue
        if any(existing.id == friend.id for existing in friends):
            logger.warning(f"Dropping duplicate friend id during restore: {friend.id}")
            continue
        friends.append(friend)

    ctx = _ImportContext(
        arena=arena,
        friend_ids={friend.id for friend in friends},
        now=now or datetime.now(UTC),
    )
    category_index = build_category_index(categories)

    parsed: list[AnyTransaction] = []
    skipped: list[SkippedTransaction] = []
    for raw_tx in root["transactions"]:
        if not is_record(raw_tx):
            skipped.append(
                SkippedTransaction(
                    transaction=raw_tx, reason="Transaction entry was not an object"
                )
            )
            continue

        record_format = detect_record_format(raw_tx)
        try:
            base = _record_base(raw_tx, ctx, category_index)
            parsed.append(_PARSERS[record_format](raw_tx, base, ctx))
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.warning(
                f"Skipping transaction during restore ({record_format}, "
                f"id={raw_tx.get('id')!r}): {reason}"
            )
            skipped.append(SkippedTransaction(transaction=raw_tx, reason=reason))

    selected_id = root.get("selectedId")
    if isinstance(selected_id, str):
        selected_id = arena.resolve(selected_id)
        if selected_id not in ctx.friend_ids:
            selected_id = None

    result = RestoreResult(
        friends=friends,
        transactions=upgrade_transactions(parsed),
        selected_id=selected_id,
        skipped_transactions=skipped,
        budgets=sanitize_budgets(root.get("budgets"), categories),
        templates=sanitize_templates(
            root.get("templates"), ctx.friend_ids, category_index, ctx.now
        ),
        reminders=sanitize_reminders(root.get("reminders"), ctx.friend_ids),
        version=version,
    )
    logger.info(
        f"Restored {len(result.friends)} friend(s) and {len(result.transactions)} "
        f"transaction(s); skipped {len(skipped)}"
    )
    return result


def decode_snapshot(data: Any) -> Snapshot:
    """
    Decode a snapshot from the app's own store.

    The store is trusted, so records are only upgraded, not re-validated.
    Unreadable friend and template entries are dropped.
    """
    _, payload = unwrap_envelope(data)
    if not is_record(payload):
        raise SnapshotValidationError("Stored snapshot is not an object")

    friends = [
        friend_from_record(raw)
        for raw in payload.get("friends") or []
        if is_record(raw) and raw.get("id") is not None
    ]
    friend_ids = {friend.id for friend in friends}
    templates = []
    for raw in payload.get("templates") or []:
        template = template_from_record(raw)
        if template is not None:
            templates.append(template)
    selected_id = payload.get("selectedId")
    return Snapshot(
        friends=friends,
        selected_id=(
            selected_id
            if isinstance(selected_id, str) and selected_id in friend_ids
            else None
        ),
        transactions=upgrade_transactions(payload.get("transactions") or []),
        budgets=sanitize_budgets(payload.get("budgets")),
        templates=templates,
        reminders=reminders_from_record(payload.get("reminders")),
    )


def export_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Encode a snapshot in the current envelope format."""
    return {
        "version": SNAPSHOT_VERSION,
        "payload": {
            "friends": [friend_to_record(friend) for friend in snapshot.friends],
            "selectedId": snapshot.selected_id,
            "transactions": [transaction_to_record(tx) for tx in snapshot.transactions],
            "budgets": {
                category: cents_to_float(cents) for category, cents in snapshot.budgets.items()
            },
            "templates": [template_to_record(template) for template in snapshot.templates],
            "reminders": reminders_to_record(snapshot.reminders),
        },
    }
