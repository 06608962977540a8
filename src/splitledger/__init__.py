"""SplitLedger - Shared expense ledger with group debt simplification."""

__version__ = "0.1.0"

from .balance_sheet import BalanceSheet
from .config import Settings, load_settings
from .db import Database
from .group import Group
from .ledger import Ledger
from .models import (
    EPSILON,
    Expense,
    LedgerEvent,
    Payment,
    Split,
    SplitType,
    User,
)
from .notifications import LoggingNotifier, NotificationHub, Notifier
from .registry import Registry
from .simplifier import compute_net_positions, propose_payments, simplify_debts
from .splits import calculate_splits

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "BalanceSheet",
    "Group",
    "Ledger",
    "Registry",
    "EPSILON",
    "Expense",
    "LedgerEvent",
    "Payment",
    "Split",
    "SplitType",
    "User",
    "LoggingNotifier",
    "NotificationHub",
    "Notifier",
    "calculate_splits",
    "compute_net_positions",
    "propose_payments",
    "simplify_debts",
]
