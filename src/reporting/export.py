"""
Trade-history export: CSV or JSON text for download or the dashboard.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone

from reporting.analytics import TradeHistory
from reporting.serialize import to_jsonable

FORMATS = ("csv", "json")

_MIME_TYPES = {"csv": "text/csv", "json": "application/json"}

_TRADE_HEADER = ["Timestamp", "Symbol", "Side", "Kind", "Price", "Quantity", "Strategy", "Commission", "Total Value"]
_POSITION_HEADER = ["Opened", "Symbol", "Entry Price", "Quantity", "Strategy", "Total Value"]
_BALANCE_HEADER = ["Timestamp", "Balance", "Portfolio Value", "Profit", "Profit %"]


class ExportError(Exception):
    """Raised for an unsupported export format."""


def _check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt not in FORMATS:
        raise ExportError(f"Unsupported export format: {fmt}")
    return fmt


def _csv_rows(header: list[str], rows: list[list]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buf.getvalue().rstrip("\n")


def trades_to_csv(history: TradeHistory) -> str:
    if not history.trades:
        return "No trades to export"
    return _csv_rows(
        _TRADE_HEADER,
        [
            [
                t.executed_at.isoformat(),
                t.symbol,
                t.side.value,
                t.order_kind.value,
                f"{t.price:.2f}",
                str(t.quantity),
                t.strategy,
                f"{t.commission:.2f}",
                f"{t.notional:.2f}",
            ]
            for t in history.trades
        ],
    )


def positions_to_csv(history: TradeHistory) -> str:
    if not history.positions:
        return "No open positions"
    return _csv_rows(
        _POSITION_HEADER,
        [
            [
                p.opened_at.isoformat(),
                p.symbol,
                f"{p.entry_price:.2f}",
                str(p.quantity),
                p.strategy,
                f"{p.entry_price * p.quantity:.2f}",
            ]
            for p in history.positions
        ],
    )


def balance_history_to_csv(history: TradeHistory) -> str:
    return _csv_rows(
        _BALANCE_HEADER,
        [
            [
                s.timestamp.isoformat(),
                f"{s.balance:.2f}",
                f"{s.portfolio_value:.2f}",
                f"{s.profit:.2f}",
                f"{s.profit_pct:.2f}",
            ]
            for s in history.balance_history
        ],
    )


def export_trade_data(
    history: TradeHistory,
    fmt: str = "json",
    *,
    include_positions: bool = False,
    include_analytics: bool = False,
    include_balance_history: bool = False,
) -> str:
    """Render history as CSV or JSON text. Raises ExportError for other formats."""
    fmt = _check_format(fmt)

    if fmt == "json":
        data: dict = {"trades": to_jsonable(history.trades), "balance": history.balance}
        if include_positions:
            data["positions"] = to_jsonable(history.positions)
        if include_analytics:
            data["analytics"] = to_jsonable(history.analytics)
        if include_balance_history:
            data["balance_history"] = to_jsonable(history.balance_history)
        return json.dumps(data, indent=2)

    a = history.analytics
    parts = ["=== TRADING DATA EXPORT ===", "", f"Balance: {history.balance}", ""]
    if include_analytics:
        parts += [
            "=== ANALYTICS ===",
            f"Total Trades: {a.total_trades}",
            f"Winning Trades: {a.winning_trades}",
            f"Losing Trades: {a.losing_trades}",
            f"Win Rate: {a.win_rate}%",
            f"Net Profit/Loss: {a.net_profit_loss}",
            f"Total Profit: {a.total_profit}",
            f"Total Loss: {a.total_loss}",
            f"Average Win: {a.average_win}",
            f"Average Loss: {a.average_loss}",
            f"Total Commission: {a.total_commission}",
            "",
        ]
    parts += ["=== TRADES ===", trades_to_csv(history)]
    if include_positions and history.positions:
        parts += ["", "=== OPEN POSITIONS ===", positions_to_csv(history)]
    if include_balance_history and history.balance_history:
        parts += ["", "=== BALANCE HISTORY ===", balance_history_to_csv(history)]
    return "\n".join(parts)


def export_mime_type(fmt: str) -> str:
    return _MIME_TYPES[_check_format(fmt)]


def export_filename(fmt: str, now: datetime | None = None) -> str:
    """e.g. trading-data-2024-01-02T09-30-00.json"""
    fmt = _check_format(fmt)
    now = now or datetime.now(timezone.utc)
    return f"trading-data-{now.strftime('%Y-%m-%dT%H-%M-%S')}.{fmt}"
