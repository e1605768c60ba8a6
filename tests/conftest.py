"""Pytest fixtures: fresh ledgers and webhook payloads for deterministic tests."""

from datetime import datetime, timezone

import pytest

from ledger import LedgerEngine


def _ts(year: int, month: int, day: int, hour: int = 9, minute: int = 30) -> datetime:
    return datetime(year, month, day, hour, minute, 0, tzinfo=timezone.utc)


@pytest.fixture
def symbol() -> str:
    return "BTCUSDT"


@pytest.fixture
def engine() -> LedgerEngine:
    """10,000 starting balance, 0.1% commission."""
    return LedgerEngine(initial_balance=10_000, commission_rate=0.1)


@pytest.fixture
def long_engine(engine: LedgerEngine, symbol: str) -> LedgerEngine:
    """Engine holding one 0.2 BTCUSDT lot bought at 40,000 (1,992 cash left)."""
    engine.submit_order(symbol, "BUY", 40_000, 0.2, "TEST", _ts(2024, 1, 2))
    return engine


@pytest.fixture
def buy_payload(symbol: str) -> dict:
    return {
        "symbol": symbol,
        "action": "BUY",
        "price": 50000,
        "quantity": 0.1,
        "strategy": "RSI_DIVERGENCE",
        "timestamp": 1704187800000,  # 2024-01-02T09:30:00Z
    }
