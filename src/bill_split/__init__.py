"""Bill Split - Track shared expenses with friends and settle up."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .ledger import compute_balances
from .models import (
    Friend,
    RestoreResult,
    SettlementTransaction,
    Snapshot,
    SplitTransaction,
)
from .service import LedgerService
from .snapshot import export_snapshot, restore_snapshot
from .state import LedgerState
from .transactions import build_split_transaction, upgrade_transactions

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "compute_balances",
    "Friend",
    "RestoreResult",
    "SettlementTransaction",
    "Snapshot",
    "SplitTransaction",
    "LedgerService",
    "export_snapshot",
    "restore_snapshot",
    "LedgerState",
    "build_split_transaction",
    "upgrade_transactions",
]
