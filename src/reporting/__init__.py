"""
Reporting over ledger snapshots: analytics, exports, JSON conversion.
"""

from reporting.analytics import (
    PortfolioPerformance,
    RoundTrip,
    StrategyPerformance,
    TradeAnalytics,
    TradeHistory,
    portfolio_performance,
    round_trips,
    strategy_performance,
    trade_analytics,
    trade_history,
)
from reporting.export import ExportError, export_filename, export_mime_type, export_trade_data
from reporting.serialize import to_jsonable

__all__ = [
    "ExportError",
    "PortfolioPerformance",
    "RoundTrip",
    "StrategyPerformance",
    "TradeAnalytics",
    "TradeHistory",
    "export_filename",
    "export_mime_type",
    "export_trade_data",
    "portfolio_performance",
    "round_trips",
    "strategy_performance",
    "to_jsonable",
    "trade_analytics",
    "trade_history",
]
