"""Settlement lifecycle management.

A settlement is an ordinary transaction whose single effect cancels the
balance it was created to clear. Its delta is fixed at creation; the
lifecycle only moves the status between these states:

    initiated ──┬──> confirmed ──┐
    pending ────┤                ├──> pending (reopen)
                └──> cancelled ──┘

confirmed and cancelled never move directly into each other.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from .exceptions import (
    InvalidSettlementTransitionError,
    NothingToSettleError,
    SettlementError,
    TransactionNotFoundError,
)
from .models import (
    YOU,
    AnyTransaction,
    Effect,
    Participant,
    PaymentDetails,
    SettlementRequest,
    SettlementStatus,
    SettlementSummary,
    SettlementTransaction,
)
from .money import to_cents
from .records import is_record
from .transactions import generate_transaction_id

logger = logging.getLogger(__name__)

SETTLEMENT_TRANSITIONS: dict[SettlementStatus, frozenset[SettlementStatus]] = {
    "initiated": frozenset({"confirmed", "cancelled"}),
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"pending"}),
    "cancelled": frozenset({"pending"}),
}


def can_transition(current: SettlementStatus, target: SettlementStatus) -> bool:
    """Check whether a settlement may move from one status to another."""
    return target in SETTLEMENT_TRANSITIONS[current]


def plan_settlement(
    friend_id: str,
    balance_cents: int,
    amount: object = None,
    *,
    mark_paid: bool = False,
    payment: PaymentDetails | None = None,
) -> SettlementRequest:
    """
    Turn a settle-up action into a settlement request.

    The amount carries the sign of the balance being cleared: a negative
    balance (the user owes the friend) gives a negative amount.

    Args:
        friend_id: The friend being settled with
        balance_cents: Current balance with that friend
        amount: Amount to record in currency units; the full balance if None
        mark_paid: Record the payment as already confirmed
        payment: Optional payment metadata

    Returns:
        The settlement request

    Raises:
        SettlementError: If no friend is given or the amount is not positive
        NothingToSettleError: If the balance is already even
    """
    friend_id = friend_id.strip() if isinstance(friend_id, str) else ""
    if not friend_id:
        raise SettlementError("Select a friend before settling the balance")
    if balance_cents == 0:
        raise NothingToSettleError(friend_id)

    amount_cents = abs(balance_cents) if amount is None else to_cents(amount)
    if amount_cents <= 0:
        raise SettlementError("Enter a positive amount to settle")

    return SettlementRequest(
        friend_id=friend_id,
        amount_cents=-amount_cents if balance_cents < 0 else amount_cents,
        status="confirmed" if mark_paid else "initiated",
        payment=payment,
    )


def create_settlement(
    request: SettlementRequest,
    *,
    now: datetime | None = None,
    transaction_id: str | None = None,
    note: str = "",
) -> SettlementTransaction:
    """
    Build the settlement transaction for a request.

    The effect delta is the negated request amount, so once it is folded into
    the balances the cleared amount nets out.
    """
    timestamp = now or datetime.now(UTC)
    amount_cents = request.amount_cents
    status = request.status

    settlement = SettlementTransaction(
        id=transaction_id or generate_transaction_id(),
        friend_id=request.friend_id,
        participants=[
            Participant(id=YOU, amount_cents=max(-amount_cents, 0)),
            Participant(id=request.friend_id, amount_cents=max(amount_cents, 0)),
        ],
        effects=[
            Effect(
                friend_id=request.friend_id,
                share_cents=abs(amount_cents),
                delta_cents=-amount_cents,
            )
        ],
        friend_ids=[request.friend_id],
        note=note,
        created_at=timestamp,
        updated_at=timestamp,
        settlement_status=status,
        initiated_at=timestamp,
        confirmed_at=timestamp if status == "confirmed" else None,
        cancelled_at=timestamp if status == "cancelled" else None,
        payment=request.payment,
    )
    logger.info(
        f"Created {status} settlement {settlement.id} with {request.friend_id} "
        f"for {amount_cents} cents"
    )
    return settlement


def transition_settlement(
    settlement: SettlementTransaction,
    target: SettlementStatus,
    now: datetime | None = None,
) -> SettlementTransaction:
    """
    Move a settlement to a new status.

    Re-applying the current status returns the settlement unchanged. Only the
    status and its timestamps change; the delta never does.

    Raises:
        InvalidSettlementTransitionError: If the move is not allowed
    """
    current = settlement.settlement_status
    if current == target:
        return settlement
    if not can_transition(current, target):
        raise InvalidSettlementTransitionError(settlement.id, current, target)

    timestamp = now or datetime.now(UTC)
    update: dict[str, object] = {"settlement_status": target, "updated_at": timestamp}
    if target == "confirmed":
        update.update(confirmed_at=timestamp, cancelled_at=None)
    elif target == "cancelled":
        update.update(cancelled_at=timestamp, confirmed_at=None)
    else:
        update.update(confirmed_at=None, cancelled_at=None)

    logger.info(f"Settlement {settlement.id}: {current} -> {target}")
    return settlement.model_copy(update=update)


def confirm_settlement(
    settlement: SettlementTransaction, now: datetime | None = None
) -> SettlementTransaction:
    """Mark an open settlement as paid."""
    return transition_settlement(settlement, "confirmed", now)


def cancel_settlement(
    settlement: SettlementTransaction, now: datetime | None = None
) -> SettlementTransaction:
    """Cancel an open settlement."""
    return transition_settlement(settlement, "cancelled", now)


def reopen_settlement(
    settlement: SettlementTransaction, now: datetime | None = None
) -> SettlementTransaction:
    """Move a confirmed or cancelled settlement back to pending."""
    return transition_settlement(settlement, "pending", now)


def apply_settlement_transition(
    transactions: Iterable[AnyTransaction],
    transaction_id: str,
    target: SettlementStatus,
    now: datetime | None = None,
) -> list[AnyTransaction]:
    """
    Return a new transaction list with one settlement moved to ``target``.

    Raises:
        TransactionNotFoundError: If no settlement has that id
        InvalidSettlementTransitionError: If the move is not allowed
    """
    result: list[AnyTransaction] = []
    found = False
    for tx in transactions:
        if isinstance(tx, SettlementTransaction) and tx.id == transaction_id:
            tx = transition_settlement(tx, target, now)
            found = True
        result.append(tx)
    if not found:
        raise TransactionNotFoundError(f"No settlement with id {transaction_id}")
    return result


def extract_settlement_delta(raw: Mapping[str, Any]) -> int:
    """
    Read the signed delta of a settlement record, in cents.

    Looks at an explicit ``delta`` first, then the first effect carrying one,
    then the participant amounts: a friend amount means the friend paid the
    user back, a "you" amount means the user paid the friend.
    """
    if raw.get("delta") is not None:
        return to_cents(raw["delta"])

    effects = raw.get("effects")
    if isinstance(effects, list):
        for effect in effects:
            if is_record(effect) and effect.get("delta") is not None:
                return to_cents(effect["delta"])

    participants = raw.get("participants")
    if isinstance(participants, list):
        records = [p for p in participants if is_record(p)]
        friend = next((p for p in records if p.get("id") != YOU), None)
        you = next((p for p in records if p.get("id") == YOU), None)
        if friend is not None and to_cents(friend.get("amount")) > 0:
            return -to_cents(friend.get("amount"))
        if you is not None:
            return max(to_cents(you.get("amount")), 0)
    return 0


def build_settlement_context(settlement: SettlementTransaction) -> tuple[str, int]:
    """Friend id and the balance the settlement clears (the negated delta)."""
    return settlement.friend_id, -settlement.delta_cents


def is_confirmed_settlement(tx: AnyTransaction | None) -> bool:
    """True for confirmed settlements and for anything that isn't a settlement."""
    if not isinstance(tx, SettlementTransaction):
        return True
    return tx.settlement_status == "confirmed"


def _summary_timestamp(settlement: SettlementTransaction) -> datetime | None:
    return settlement.updated_at or settlement.initiated_at or settlement.created_at


def latest_settlements(
    transactions: Iterable[AnyTransaction],
) -> dict[str, SettlementSummary]:
    """
    Summarize the most recent settlement per friend.

    Args:
        transactions: Any transaction list

    Returns:
        Mapping of friend id to the latest settlement summary
    """
    summaries: dict[str, SettlementSummary] = {}
    for tx in transactions:
        if not isinstance(tx, SettlementTransaction):
            continue
        friend_id, balance = build_settlement_context(tx)
        summary = SettlementSummary(
            transaction_id=tx.id,
            friend_id=friend_id,
            status=tx.settlement_status,
            balance_cents=balance,
            timestamp=_summary_timestamp(tx),
            payment=tx.payment,
        )
        existing = summaries.get(friend_id)
        if existing is None or _later_or_equal(summary.timestamp, existing.timestamp):
            summaries[friend_id] = summary
    return summaries


def _later_or_equal(candidate: datetime | None, current: datetime | None) -> bool:
    if candidate is None:
        return current is None
    if current is None:
        return True
    return candidate >= current
