"""
Paper ledger: balance, open lots, trade log and resting limit orders.
Pure in-memory state machine. No I/O, no persistence.
"""

from ledger.engine import LedgerEngine, to_decimal
from ledger.errors import (
    InsufficientBalance,
    InsufficientPosition,
    InvalidQuantity,
    LedgerError,
    MissingLimitPrice,
    NoMatchingPosition,
)
from ledger.models import (
    AccountSnapshot,
    BalanceSnapshot,
    LimitOrder,
    OrderCommand,
    OrderKind,
    Position,
    ResolutionResult,
    Side,
    Trade,
)

__all__ = [
    "AccountSnapshot",
    "BalanceSnapshot",
    "InsufficientBalance",
    "InsufficientPosition",
    "InvalidQuantity",
    "LedgerEngine",
    "LedgerError",
    "LimitOrder",
    "MissingLimitPrice",
    "NoMatchingPosition",
    "OrderCommand",
    "OrderKind",
    "Position",
    "ResolutionResult",
    "Side",
    "Trade",
    "to_decimal",
]
