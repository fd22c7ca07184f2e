"""
Core components of the solar ledger.

- autonomy: The self-growing scalar and its timer
- ledger: Accounts, transfers and tension
"""

from .autonomy import Autonomy, AutonomyConfig
from .ledger import (
    Ledger,
    LedgerState,
    TensionRecord,
    LedgerError,
    UnknownUserError,
    InsufficientBalanceError,
    InvalidAmountError,
)

__all__ = [
    "Autonomy",
    "AutonomyConfig",
    "Ledger",
    "LedgerState",
    "TensionRecord",
    "LedgerError",
    "UnknownUserError",
    "InsufficientBalanceError",
    "InvalidAmountError",
]
