"""
LedgerService: single owner of a LedgerEngine inside a concurrent host.

Routes reach the service from FastAPI's thread pool (plain ``def`` routes
or ``run_in_threadpool``), so every engine call goes through one lock.
Queries take the lock too so a snapshot never observes a half-applied order.
"""

from __future__ import annotations

import threading
from typing import Any

from cli.structured_log import StructuredEventLogger
from config import AppConfig
from ledger import AccountSnapshot, LedgerEngine, LimitOrder, OrderCommand, ResolutionResult
from reporting import TradeHistory, trade_history


class LedgerService:
    def __init__(self, engine: LedgerEngine, events: StructuredEventLogger | None = None) -> None:
        self._engine = engine
        self._events = events
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: AppConfig, events: StructuredEventLogger | None = None) -> "LedgerService":
        engine = LedgerEngine(
            cfg.ledger.initial_balance,
            cfg.ledger.commission_rate,
            listener=events.handle if events else None,
        )
        return cls(engine, events)

    @property
    def engine(self) -> LedgerEngine:
        return self._engine

    @property
    def events(self) -> StructuredEventLogger | None:
        return self._events

    def submit(self, command: OrderCommand) -> AccountSnapshot:
        with self._lock:
            return self._engine.submit(command)

    def check_price(self, symbol: str, price: Any) -> ResolutionResult:
        with self._lock:
            return self._engine.resolve_pending_orders(symbol, price)

    def cancel(self, order_id: str) -> bool:
        with self._lock:
            return self._engine.cancel_order(order_id)

    def account(self) -> AccountSnapshot:
        with self._lock:
            return self._engine.get_account()

    def pending_orders(self, symbol: str | None = None) -> list[LimitOrder]:
        with self._lock:
            return self._engine.get_pending_orders(symbol)

    def history(self) -> TradeHistory:
        return trade_history(self.account())
