"""Position, Trade, LimitOrder, OrderCommand and AccountSnapshot for the paper ledger.

Plain dataclasses, no I/O. Money and quantities are Decimal so that
reservations and refunds cancel out exactly.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum


class Side(str, Enum):
    """Direction of an order or fill."""

    BUY = "BUY"
    SELL = "SELL"


class OrderKind(str, Enum):
    """MARKET fills immediately; LIMIT rests until a price tick crosses it."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"


@dataclass
class Position:
    """One open lot. Created by a BUY fill, never merged with other lots."""

    symbol: str
    entry_price: Decimal
    quantity: Decimal
    opened_at: datetime
    strategy: str

    def copy(self) -> "Position":
        return replace(self)


@dataclass(frozen=True)
class Trade:
    """Immutable record of a completed fill."""

    symbol: str
    side: Side
    price: Decimal
    quantity: Decimal
    executed_at: datetime
    strategy: str
    commission: Decimal
    order_kind: OrderKind = OrderKind.MARKET

    @property
    def notional(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class LimitOrder:
    """Resting conditional order awaiting a price tick."""

    id: str
    symbol: str
    side: Side
    quantity: Decimal
    limit_price: Decimal
    created_at: datetime
    strategy: str

    def is_triggered(self, price: Decimal) -> bool:
        """BUY fires at or below the limit, SELL at or above it."""
        if self.side is Side.BUY:
            return price <= self.limit_price
        return price >= self.limit_price


@dataclass(frozen=True)
class OrderCommand:
    """Narrow, typed order instruction accepted by LedgerEngine.submit()."""

    symbol: str
    side: Side
    market_price: Decimal
    quantity: Decimal
    strategy: str
    timestamp: datetime
    kind: OrderKind = OrderKind.MARKET
    limit_price: Decimal | None = None


@dataclass(frozen=True)
class BalanceSnapshot:
    """Account value after a SELL fill (and once at account creation).

    ``portfolio_value`` is cash plus cash reserved for resting BUYs plus open
    lots; lots of the symbol just sold are marked at the fill price, other
    lots at their entry price.
    """

    timestamp: datetime
    balance: Decimal
    portfolio_value: Decimal
    profit: Decimal
    profit_pct: Decimal


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one price tick against the pending book for a symbol."""

    executed_count: int
    remaining_count: int


@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time copy of the account. Mutating it never touches the engine."""

    balance: Decimal
    positions: list[Position] = field(default_factory=list)
    trades: list[Trade] = field(default_factory=list)
    pending_orders: list[LimitOrder] = field(default_factory=list)
    balance_history: list[BalanceSnapshot] = field(default_factory=list)
