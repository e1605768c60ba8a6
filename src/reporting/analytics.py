"""
Trade-history analytics: FIFO round trips, win rate, per-strategy performance.

Read-only over an AccountSnapshot; never touches the engine.
BUY and SELL fills are paired oldest-first within each (symbol, strategy).
"""

from __future__ import annotations

import math
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from ledger import AccountSnapshot, BalanceSnapshot, Position, Side, Trade


@dataclass(frozen=True)
class RoundTrip:
    """One BUY fill matched with the SELL fill that closed it."""

    symbol: str
    strategy: str
    entry_price: float
    exit_price: float
    quantity: float
    entry_time: datetime
    exit_time: datetime
    profit: float
    profit_pct: float
    commission: float

    @property
    def holding_seconds(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds()


@dataclass(frozen=True)
class TradeAnalytics:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_profit: float = 0.0
    total_loss: float = 0.0
    net_profit_loss: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    total_commission: float = 0.0


@dataclass(frozen=True)
class StrategyPerformance:
    strategy: str
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    net_profit: float = 0.0
    win_rate: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    total_commissions: float = 0.0


@dataclass(frozen=True)
class PortfolioPerformance:
    initial_balance: float
    current_balance: float
    total_return: float
    total_return_pct: float
    total_trades: int
    open_positions: int
    total_commissions: float
    strategies: list[StrategyPerformance] = field(default_factory=list)


@dataclass(frozen=True)
class TradeHistory:
    trades: list[Trade]
    positions: list[Position]
    analytics: TradeAnalytics
    balance: float
    balance_history: list[BalanceSnapshot] = field(default_factory=list)


def _cents(value: float | Decimal) -> float:
    return round(float(value), 2)


def round_trips(trades: list[Trade]) -> list[RoundTrip]:
    """Match SELL quantity against the oldest open BUY quantity of the same symbol and strategy.

    Trades are walked in ledger order, not by ``executed_at``: webhook fills
    carry the alert's timestamp while tick fills are stamped on arrival.
    A SELL larger than the remaining BUY splits across several BUYs; each
    piece carries its pro-rata share of both commissions.
    """
    open_buys: dict[tuple[str, str], deque[list]] = defaultdict(deque)
    trips: list[RoundTrip] = []
    for t in trades:
        queue = open_buys[(t.symbol, t.strategy)]
        if t.side is Side.BUY:
            queue.append([t, t.quantity])
            continue
        left = t.quantity
        while left > 0 and queue:
            buy, open_qty = queue[0]
            piece = min(left, open_qty)
            commission = buy.commission * piece / buy.quantity + t.commission * piece / t.quantity
            profit = (t.price - buy.price) * piece - commission
            pct = (t.price - buy.price) / buy.price * 100 if buy.price else Decimal(0)
            trips.append(
                RoundTrip(
                    symbol=t.symbol,
                    strategy=t.strategy,
                    entry_price=float(buy.price),
                    exit_price=float(t.price),
                    quantity=float(piece),
                    entry_time=buy.executed_at,
                    exit_time=t.executed_at,
                    profit=float(profit),
                    profit_pct=float(pct),
                    commission=float(commission),
                )
            )
            left -= piece
            if piece == open_qty:
                queue.popleft()
            else:
                queue[0][1] = open_qty - piece
    return trips


def trade_analytics(trades: list[Trade]) -> TradeAnalytics:
    if not trades:
        return TradeAnalytics()
    trips = round_trips(trades)
    wins = [r.profit for r in trips if r.profit > 0]
    losses = [-r.profit for r in trips if r.profit < 0]
    total_profit = sum(wins)
    total_loss = sum(losses)
    return TradeAnalytics(
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=_cents(len(wins) / len(trips) * 100) if trips else 0.0,
        total_profit=_cents(total_profit),
        total_loss=_cents(total_loss),
        net_profit_loss=_cents(total_profit - total_loss),
        average_win=_cents(total_profit / len(wins)) if wins else 0.0,
        average_loss=_cents(total_loss / len(losses)) if losses else 0.0,
        total_commission=_cents(sum((t.commission for t in trades), Decimal(0))),
    )


def strategy_performance(trades: list[Trade], strategy: str) -> StrategyPerformance:
    trips = [r for r in round_trips(trades) if r.strategy == strategy]
    if not trips:
        return StrategyPerformance(strategy=strategy)
    wins = [r.profit for r in trips if r.profit > 0]
    losses = [r.profit for r in trips if r.profit < 0]
    total_profit = sum(wins)
    total_loss = abs(sum(losses))
    if total_loss > 0:
        profit_factor = total_profit / total_loss
    else:
        profit_factor = math.inf if total_profit > 0 else 0.0
    return StrategyPerformance(
        strategy=strategy,
        total_trades=len(trips),
        winning_trades=len(wins),
        losing_trades=len(losses),
        total_profit=total_profit,
        total_loss=total_loss,
        net_profit=total_profit - total_loss,
        win_rate=len(wins) / len(trips) * 100,
        average_win=total_profit / len(wins) if wins else 0.0,
        average_loss=total_loss / len(losses) if losses else 0.0,
        profit_factor=profit_factor,
        largest_win=max(wins) if wins else 0.0,
        largest_loss=min(losses) if losses else 0.0,
        total_commissions=sum(r.commission for r in trips),
    )


def portfolio_performance(snapshot: AccountSnapshot, initial_balance: float | Decimal) -> PortfolioPerformance:
    initial = float(initial_balance)
    current = float(snapshot.balance)
    total_return = current - initial
    strategies = sorted({r.strategy for r in round_trips(snapshot.trades)})
    return PortfolioPerformance(
        initial_balance=initial,
        current_balance=current,
        total_return=total_return,
        total_return_pct=total_return / initial * 100 if initial else 0.0,
        total_trades=len(snapshot.trades),
        open_positions=len(snapshot.positions),
        total_commissions=float(sum((t.commission for t in snapshot.trades), Decimal(0))),
        strategies=[strategy_performance(snapshot.trades, s) for s in strategies],
    )


def trade_history(snapshot: AccountSnapshot) -> TradeHistory:
    return TradeHistory(
        trades=list(snapshot.trades),
        positions=list(snapshot.positions),
        analytics=trade_analytics(snapshot.trades),
        balance=_cents(snapshot.balance),
        balance_history=list(snapshot.balance_history),
    )
