"""
Human-readable account and performance output for the terminal.

Every CLI command uses these formatters.
"""

from __future__ import annotations

import math

from ledger import AccountSnapshot, LimitOrder, Trade
from reporting import PortfolioPerformance


def _fmt_qty(qty) -> str:
    return f"{qty.normalize():f}" if hasattr(qty, "normalize") else str(qty)


def format_trade(trade: Trade) -> str:
    return (
        f"{trade.executed_at.isoformat()}  {trade.order_kind.value:<6} {trade.side.value:<4} "
        f"{_fmt_qty(trade.quantity)} {trade.symbol} @ {trade.price:.2f}  fee {trade.commission:.2f}  [{trade.strategy}]"
    )


def format_limit_order(order: LimitOrder) -> str:
    return (
        f"{order.id}  LIMIT {order.side.value:<4} {_fmt_qty(order.quantity)} {order.symbol} "
        f"@ {order.limit_price:.2f}  [{order.strategy}]"
    )


def format_account(snapshot: AccountSnapshot, *, recent_trades: int = 10) -> str:
    """Format balance, open lots, resting orders and the latest fills."""
    lines = [
        "=== Account Status ===",
        f"Balance      : ${snapshot.balance:,.2f}",
    ]
    if snapshot.positions:
        lines.append(f"Positions    : {len(snapshot.positions)} open lot(s)")
        for p in snapshot.positions:
            lines.append(f"  {p.symbol} {_fmt_qty(p.quantity)} @ {p.entry_price:.2f}  opened {p.opened_at.isoformat()}  [{p.strategy}]")
    else:
        lines.append("Positions    : flat (no open positions)")

    if snapshot.pending_orders:
        lines.append(f"Limit orders : {len(snapshot.pending_orders)} pending")
        for o in snapshot.pending_orders:
            lines.append(f"  {format_limit_order(o)}")
    else:
        lines.append("Limit orders : none")

    lines.append(f"Trades       : {len(snapshot.trades)}")
    for t in snapshot.trades[-recent_trades:]:
        lines.append(f"  {format_trade(t)}")
    lines.append("===")
    return "\n".join(lines)


def _fmt_factor(value: float) -> str:
    return "inf" if math.isinf(value) else f"{value:.2f}"


def format_performance_report(perf: PortfolioPerformance) -> str:
    """Format overall and per-strategy performance."""
    lines = [
        "=== PORTFOLIO PERFORMANCE REPORT ===",
        f"Initial Balance  : ${perf.initial_balance:,.2f}",
        f"Current Balance  : ${perf.current_balance:,.2f}",
        f"Total Return     : ${perf.total_return:,.2f} ({perf.total_return_pct:+.2f}%)",
        f"Total Trades     : {perf.total_trades}",
        f"Open Positions   : {perf.open_positions}",
        f"Total Commissions: ${perf.total_commissions:,.2f}",
    ]
    if perf.strategies:
        lines.append("")
        lines.append("=== STRATEGY PERFORMANCES ===")
        for s in perf.strategies:
            lines.append(f"Strategy: {s.strategy}")
            lines.append(f"  Round trips  : {s.total_trades} (W:{s.winning_trades} / L:{s.losing_trades})")
            lines.append(f"  Win Rate     : {s.win_rate:.2f}%")
            lines.append(f"  Net Profit   : ${s.net_profit:,.2f}")
            lines.append(f"  Profit Factor: {_fmt_factor(s.profit_factor)}")
            lines.append(f"  Average Win  : ${s.average_win:,.2f}")
            lines.append(f"  Average Loss : ${s.average_loss:,.2f}")
            lines.append(f"  Largest Win  : ${s.largest_win:,.2f}")
            lines.append(f"  Largest Loss : ${s.largest_loss:,.2f}")
            lines.append(f"  Commissions  : ${s.total_commissions:,.2f}")
    lines.append("===")
    return "\n".join(lines)
