"""Transaction/effect engine.

Builds canonical split transactions from user input, derives the per-friend
balance effects, and upgrades records written by older versions of the app.
"""

import logging
import random
import time
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, Literal

from .exceptions import ShareMismatchError, TransactionRejectedError
from .models import (
    YOU,
    AnyTransaction,
    Effect,
    Participant,
    SettlementTransaction,
    SplitTransaction,
    UnrecognizedTransaction,
)
from .money import from_cents, to_cents
from .records import (
    clean_id,
    is_record,
    normalize_settlement_status,
    parse_amount_cents,
    parse_timestamp,
    payment_from_record,
    transaction_from_record,
)

logger = logging.getLogger(__name__)

StoredShape = Literal["normalized", "legacy-split", "legacy-settlement", "unrecognized"]


def generate_transaction_id() -> str:
    """
    Generate a new transaction id.

    Uses a random UUID; falls back to a timestamp + random composite when the
    OS provides no randomness source.
    """
    try:
        return str(uuid.uuid4())
    except NotImplementedError:
        return f"tx-{time.time_ns():x}-{random.getrandbits(64):016x}"


def normalize_participants(
    raw_participants: Iterable[Mapping[str, Any] | Participant] = (),
) -> list[Participant]:
    """
    Normalize raw participant input.

    - trims ids and skips entries without a usable id
    - keeps the first occurrence of each id
    - rounds amounts to cents (mapping amounts are currency units);
      invalid or negative amounts become 0
    - guarantees a "you" entry, inserted first when missing

    Args:
        raw_participants: Mappings with ``id``/``amount`` or Participant models

    Returns:
        Normalized participant list
    """
    seen: set[str] = set()
    participants: list[Participant] = []
    for raw in raw_participants:
        if isinstance(raw, Participant):
            pid = clean_id(raw.id)
            amount_cents = raw.amount_cents
        elif is_record(raw):
            pid = clean_id(raw.get("id"))
            amount_cents = to_cents(raw.get("amount"))
        else:
            continue
        if pid is None or pid in seen:
            continue
        participants.append(Participant(id=pid, amount_cents=max(amount_cents, 0)))
        seen.add(pid)

    if YOU not in seen:
        participants.insert(0, Participant(id=YOU, amount_cents=0))
    return participants


def compute_split_effects(
    payer: str,
    participants: Iterable[Mapping[str, Any] | Participant],
) -> tuple[list[Participant], list[Effect]]:
    """
    Compute who owes whom for a split, from the user's point of view.

    For each friend participant:
    - the user paid: the friend owes their share (positive delta)
    - that friend paid: the user owes their own share (negative delta)
    - someone else paid: no balance between the user and this friend

    Args:
        payer: "you" or the id of the paying friend
        participants: Raw or normalized participants

    Returns:
        Tuple of (normalized participants, effects)
    """
    normalized = normalize_participants(participants)
    you_share = next(p.amount_cents for p in normalized if p.id == YOU)

    effects = []
    for p in normalized:
        if p.id == YOU:
            continue
        if payer == YOU:
            delta = p.amount_cents
        elif payer == p.id:
            delta = -you_share
        else:
            delta = 0
        effects.append(Effect(friend_id=p.id, share_cents=p.amount_cents, delta_cents=delta))

    return normalized, effects


def _friend_ids(effects: list[Effect]) -> list[str]:
    friend_ids: list[str] = []
    for effect in effects:
        if effect.friend_id and effect.friend_id not in friend_ids:
            friend_ids.append(effect.friend_id)
    return friend_ids


def build_split_transaction(
    total: object,
    payer: str = YOU,
    participants: Iterable[Mapping[str, Any] | Participant] = (),
    *,
    category: str = "Other",
    note: str = "",
    created_at: datetime | None = None,
    updated_at: datetime | None = None,
    transaction_id: str | None = None,
    template_id: str | None = None,
    template_name: str | None = None,
    now: datetime | None = None,
) -> SplitTransaction:
    """
    Build a canonical split transaction.

    When the user's own amount is zero it is inferred as whatever the friends
    don't cover. The result always satisfies sum(participants) == total.

    Args:
        total: Split total in currency units
        payer: "you" or a friend id
        participants: Participant input; amounts in currency units
        category: Expense category
        note: Free-form note
        created_at: Creation time (defaults to now)
        updated_at: Last edit time
        transaction_id: Existing id; generated when absent
        template_id: Id of the template the split came from
        template_name: Name of that template
        now: Clock value used for defaults

    Returns:
        The split transaction

    Raises:
        ShareMismatchError: If the shares exceed or don't match the total
    """
    total_cents = to_cents(total)
    payer = clean_id(payer) or YOU
    normalized = normalize_participants(participants)

    friends_cents = sum(p.amount_cents for p in normalized if p.id != YOU)
    you_index = next(i for i, p in enumerate(normalized) if p.id == YOU)
    if normalized[you_index].amount_cents == 0:
        inferred = total_cents - friends_cents
        if inferred < 0:
            raise ShareMismatchError(
                total_cents, friends_cents, "Participant shares exceed total amount"
            )
        normalized[you_index] = Participant(id=YOU, amount_cents=inferred)

    shares_cents = sum(p.amount_cents for p in normalized)
    if shares_cents != total_cents:
        raise ShareMismatchError(total_cents, shares_cents)

    normalized, effects = compute_split_effects(payer, normalized)
    friend_ids = _friend_ids(effects)
    timestamp = now or datetime.now(UTC)

    tx = SplitTransaction(
        id=transaction_id or generate_transaction_id(),
        total_cents=total_cents,
        payer=payer,
        participants=normalized,
        effects=effects,
        friend_id=friend_ids[0] if len(friend_ids) == 1 else None,
        friend_ids=friend_ids,
        category=category,
        note=note,
        created_at=created_at or timestamp,
        updated_at=updated_at,
        template_id=template_id,
        template_name=template_name,
    )
    logger.debug(
        f"Built split {tx.id}: total {total_cents} cents, payer {payer}, "
        f"{len(friend_ids)} friend(s)"
    )
    return tx


def update_transaction_metadata(
    tx: SplitTransaction | SettlementTransaction,
    *,
    category: str | None = None,
    note: str | None = None,
    now: datetime | None = None,
) -> SplitTransaction | SettlementTransaction:
    """Return a copy with a new category and/or note; amounts never change."""
    update: dict[str, Any] = {"updated_at": now or datetime.now(UTC)}
    if category is not None:
        update["category"] = category
    if note is not None:
        update["note"] = note
    return tx.model_copy(update=update)


# ============================================================================
# Effect access
# ============================================================================


def get_transaction_effects(tx: AnyTransaction) -> list[Effect]:
    """Effects of a transaction; unrecognized records have none."""
    if isinstance(tx, UnrecognizedTransaction):
        return []
    return list(tx.effects)


def get_transaction_friend_ids(tx: AnyTransaction) -> list[str]:
    """Friend ids involved in a transaction."""
    if isinstance(tx, UnrecognizedTransaction):
        return []
    if tx.friend_ids:
        return list(tx.friend_ids)
    return _friend_ids(tx.effects)


def transaction_includes_friend(tx: AnyTransaction, friend_id: str | None) -> bool:
    """Check whether a transaction involves the given friend."""
    if not friend_id:
        return False
    return friend_id in get_transaction_friend_ids(tx)


# ============================================================================
# Legacy upgrade
# ============================================================================


def detect_stored_shape(tx: Mapping[str, Any] | AnyTransaction) -> StoredShape:
    """
    Classify a stored transaction by shape.

    - normalized: has both effects and participants (or is already a model)
    - legacy-split: single-friend split with ``friendId``/``half``
    - legacy-settlement: settlement with a bare ``friendId``/``delta``
    - unrecognized: anything else
    """
    if isinstance(tx, SplitTransaction | SettlementTransaction):
        return "normalized"
    if isinstance(tx, UnrecognizedTransaction):
        return "unrecognized"
    if isinstance(tx.get("effects"), list) and isinstance(tx.get("participants"), list):
        return "normalized"
    if tx.get("type") == "split":
        return "legacy-split"
    if tx.get("type") == "settlement" and isinstance(tx.get("friendId"), str):
        return "legacy-settlement"
    return "unrecognized"


def _upgrade_normalized(tx: Mapping[str, Any] | AnyTransaction) -> AnyTransaction | None:
    if is_record(tx):
        try:
            tx = transaction_from_record(tx)
        except TransactionRejectedError as e:
            logger.warning(f"Keeping unreadable transaction as-is: {e.reason}")
            return UnrecognizedTransaction(payload=dict(tx))

    friend_ids = _friend_ids(tx.effects)
    if isinstance(tx, SettlementTransaction):
        return tx.model_copy(update={"friend_ids": friend_ids or [tx.friend_id]})
    friend_id = tx.friend_id or (friend_ids[0] if len(friend_ids) == 1 else None)
    return tx.model_copy(update={"friend_id": friend_id, "friend_ids": friend_ids})


def _upgrade_legacy_split(tx: Mapping[str, Any]) -> SplitTransaction | None:
    total_cents = to_cents(tx.get("total"))
    if total_cents <= 0:
        logger.warning(f"Dropping legacy split {tx.get('id')!r} without a positive total")
        return None

    friend_id = tx.get("friendId") if isinstance(tx.get("friendId"), str) else None
    friend_cents = parse_amount_cents(tx.get("half"))
    if friend_cents is None:
        friend_cents = to_cents(from_cents(total_cents) / 2)
    you_cents = max(total_cents - friend_cents, 0)

    raw_payer = tx.get("payer").strip() if isinstance(tx.get("payer"), str) else YOU
    if raw_payer == "friend" and friend_id:
        payer = friend_id
    else:
        payer = raw_payer or YOU

    participants = [Participant(id=YOU, amount_cents=you_cents)]
    if friend_id:
        participants.append(Participant(id=friend_id, amount_cents=friend_cents))
    participants, effects = compute_split_effects(payer, participants)

    created_at = parse_timestamp(tx.get("createdAt")) or datetime.now(UTC)
    category = tx.get("category")
    note = tx.get("note")
    return SplitTransaction(
        id=clean_id(tx.get("id")) or generate_transaction_id(),
        total_cents=total_cents,
        payer=payer,
        participants=participants,
        effects=effects,
        friend_id=friend_id,
        friend_ids=[friend_id] if friend_id else _friend_ids(effects),
        category=category if isinstance(category, str) and category.strip() else "Other",
        note=note if isinstance(note, str) else "",
        created_at=created_at,
        updated_at=parse_timestamp(tx.get("updatedAt")),
    )


def _upgrade_legacy_settlement(tx: Mapping[str, Any]) -> SettlementTransaction:
    friend_id = tx["friendId"]
    delta_cents = to_cents(tx.get("delta"))
    created_at = parse_timestamp(tx.get("createdAt")) or datetime.now(UTC)
    status = normalize_settlement_status(tx.get("settlementStatus"), "confirmed")
    note = tx.get("note")
    return SettlementTransaction(
        id=clean_id(tx.get("id")) or generate_transaction_id(),
        friend_id=friend_id,
        participants=[
            Participant(id=YOU, amount_cents=max(-delta_cents, 0)),
            Participant(id=friend_id, amount_cents=max(delta_cents, 0)),
        ],
        effects=[
            Effect(friend_id=friend_id, share_cents=abs(delta_cents), delta_cents=delta_cents)
        ],
        friend_ids=[friend_id],
        note=note if isinstance(note, str) else "",
        created_at=created_at,
        updated_at=parse_timestamp(tx.get("updatedAt")),
        settlement_status=status,
        initiated_at=created_at,
        confirmed_at=created_at if status == "confirmed" else None,
        cancelled_at=created_at if status == "cancelled" else None,
        payment=payment_from_record(tx.get("payment")),
    )


def _keep_unrecognized(tx: Mapping[str, Any] | AnyTransaction) -> UnrecognizedTransaction:
    if isinstance(tx, UnrecognizedTransaction):
        return tx
    return UnrecognizedTransaction(payload=dict(tx))


_UPGRADERS = {
    "normalized": _upgrade_normalized,
    "legacy-split": _upgrade_legacy_split,
    "legacy-settlement": _upgrade_legacy_settlement,
    "unrecognized": _keep_unrecognized,
}


def upgrade_transaction(tx: object) -> AnyTransaction | None:
    """
    Upgrade a stored transaction to the current shape.

    Args:
        tx: A record mapping or an already-decoded transaction

    Returns:
        The upgraded transaction, an UnrecognizedTransaction carrying the
        record unchanged, or None when the record is unusable (not an object,
        or a legacy split without a positive total)
    """
    if not is_record(tx) and not isinstance(
        tx, SplitTransaction | SettlementTransaction | UnrecognizedTransaction
    ):
        return None
    return _UPGRADERS[detect_stored_shape(tx)](tx)


def upgrade_transactions(transactions: Iterable[object]) -> list[AnyTransaction]:
    """Upgrade a list of stored transactions, dropping unusable ones."""
    upgraded = []
    for tx in transactions:
        result = upgrade_transaction(tx)
        if result is not None:
            upgraded.append(result)
    return upgraded
