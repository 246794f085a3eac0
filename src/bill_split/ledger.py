"""Per-friend balance aggregation."""

from collections.abc import Iterable

from .models import AnyTransaction
from .transactions import get_transaction_effects

# A friend can be removed once their balance is within one cent of zero
REMOVAL_TOLERANCE_CENTS = 1


def compute_balances(transactions: Iterable[AnyTransaction]) -> dict[str, int]:
    """
    Fold transaction effects into a signed balance per friend.

    Positive means the friend owes the user; negative means the user owes the
    friend. The fold is a plain integer sum, so the result does not depend on
    transaction order. Friends without effects are absent from the result.

    Args:
        transactions: Upgraded transactions

    Returns:
        Mapping of friend id to balance in cents
    """
    balances: dict[str, int] = {}
    for tx in transactions:
        for effect in get_transaction_effects(tx):
            if not effect.friend_id:
                continue
            balances[effect.friend_id] = balances.get(effect.friend_id, 0) + effect.delta_cents
    return balances


def balance_for(balances: dict[str, int], friend_id: str) -> int:
    """Balance for one friend; friends absent from the map are even."""
    return balances.get(friend_id, 0)


def can_remove_friend(transactions: Iterable[AnyTransaction], friend_id: str) -> bool:
    """Check whether a friend's balance is close enough to zero to remove them."""
    balance = balance_for(compute_balances(transactions), friend_id)
    return abs(balance) <= REMOVAL_TOLERANCE_CENTS
