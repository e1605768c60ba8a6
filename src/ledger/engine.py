"""
Ledger engine: single-owner, in-memory account state for paper trading.

Owns balance, open lots, the trade log and the pending limit book.
Every public operation validates first and mutates only after all checks
pass, so a raised LedgerError always leaves the account untouched.
Not thread-safe: callers serialise access (see api.service.LedgerService).
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

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

logger = logging.getLogger("paper.ledger")

EventListener = Callable[[str, dict[str, Any]], None]

_HUNDRED = Decimal(100)


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_decimal(value: Any) -> Decimal:
    """Convert int/float/str/Decimal to a finite Decimal. Floats go through str()."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"not a number: {value!r}") from exc
    else:
        raise ValueError(f"not a number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


class LedgerEngine:
    """
    Paper account with market execution and a resting limit book.

    Parameters
    ----------
    initial_balance:
        Starting cash.
    commission_rate:
        Fee as a percentage of notional (``0.1`` means 0.1%).
    listener:
        Optional ``(event_type, payload)`` callback invoked after each state change.
    """

    def __init__(
        self,
        initial_balance: Any = 10_000,
        commission_rate: Any = Decimal("0.1"),
        *,
        listener: EventListener | None = None,
    ) -> None:
        self._initial_balance = to_decimal(initial_balance)
        self._rate = to_decimal(commission_rate)
        if self._initial_balance < 0:
            raise ValueError("initial_balance must be >= 0")
        if self._rate < 0:
            raise ValueError("commission_rate must be >= 0")
        self._balance = self._initial_balance
        self._positions: list[Position] = []
        self._trades: list[Trade] = []
        self._pending: list[LimitOrder] = []
        self._listener = listener
        self._order_seq = 0
        self._id_salt = uuid.uuid4().hex[:8]
        self._balance_history: list[BalanceSnapshot] = []
        self._snapshot_balance(datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def initial_balance(self) -> Decimal:
        return self._initial_balance

    @property
    def commission_rate(self) -> Decimal:
        return self._rate

    @property
    def balance(self) -> Decimal:
        return self._balance

    @property
    def reserved_balance(self) -> Decimal:
        """Cash currently withheld for pending LIMIT BUY orders."""
        return sum(
            (self.reserved_amount(o) for o in self._pending if o.side is Side.BUY),
            Decimal(0),
        )

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def commission(self, price: Decimal, quantity: Decimal) -> Decimal:
        return price * quantity * self._rate / _HUNDRED

    def _cost_with_fees(self, price: Decimal, quantity: Decimal) -> Decimal:
        return price * quantity * (1 + self._rate / _HUNDRED)

    def reserved_amount(self, order: LimitOrder) -> Decimal:
        """Cash set aside at creation for a LIMIT BUY (zero for SELL)."""
        if order.side is not Side.BUY:
            return Decimal(0)
        return self._cost_with_fees(order.limit_price, order.quantity)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_order(
        self,
        symbol: str,
        side: Side | str,
        market_price: Any,
        quantity: Any,
        strategy: str = "",
        timestamp: datetime | None = None,
        kind: OrderKind | str = OrderKind.MARKET,
        limit_price: Any = None,
    ) -> AccountSnapshot:
        """Validate and route an order. Returns the account after the order.

        Raises InvalidQuantity, MissingLimitPrice, InsufficientBalance,
        InsufficientPosition or NoMatchingPosition without touching state.
        """
        order_side = Side(side.upper()) if isinstance(side, str) else side
        order_kind = OrderKind(kind.upper()) if isinstance(kind, str) else kind
        limit: Decimal | None = None
        try:
            try:
                qty = to_decimal(quantity)
            except ValueError as exc:
                raise InvalidQuantity(f"Quantity must be a positive number, got {quantity!r}") from exc
            if qty <= 0:
                raise InvalidQuantity(f"Quantity must be greater than zero, got {qty}")
            if order_kind is OrderKind.LIMIT:
                try:
                    limit = to_decimal(limit_price)
                except ValueError as exc:
                    raise MissingLimitPrice("Limit price is required and must be a number for limit orders") from exc
        except LedgerError as exc:
            self._log_rejection(symbol, order_side, order_kind, quantity, exc)
            raise

        command = OrderCommand(
            symbol=symbol,
            side=order_side,
            market_price=to_decimal(market_price),
            quantity=qty,
            strategy=strategy,
            timestamp=_utc(timestamp) if timestamp else datetime.now(timezone.utc),
            kind=order_kind,
            limit_price=limit,
        )
        return self.submit(command)

    def submit(self, command: OrderCommand) -> AccountSnapshot:
        """Execute a typed command: MARKET fills then resolves the book, LIMIT rests."""
        try:
            self._validate(command)
            if command.kind is OrderKind.LIMIT:
                self._place_limit(command)
                return self.get_account()
            if command.side is Side.BUY:
                self._market_buy(command)
            else:
                self._market_sell(command)
        except LedgerError as exc:
            self._log_rejection(command.symbol, command.side, command.kind, command.quantity, exc)
            raise
        self.resolve_pending_orders(command.symbol, command.market_price, timestamp=command.timestamp)
        return self.get_account()

    def _log_rejection(self, symbol: str, side: Side, kind: OrderKind, quantity: Any, exc: LedgerError) -> None:
        logger.info("Rejected %s %s %s %s: %s", kind.value, side.value, quantity, symbol, exc)
        self._emit("order_rejected", symbol=symbol, side=side.value, kind=kind.value, code=exc.code, reason=exc.message)

    def _validate(self, command: OrderCommand) -> None:
        if command.quantity <= 0:
            raise InvalidQuantity(f"Quantity must be greater than zero, got {command.quantity}")
        if command.kind is OrderKind.MARKET:
            if command.side is Side.BUY:
                cost = command.market_price * command.quantity
                needed = cost + self.commission(command.market_price, command.quantity)
                if self._balance < needed:
                    raise InsufficientBalance(
                        f"Insufficient balance to execute buy order: need {needed}, have {self._balance}"
                    )
            elif self._find_lot(command.symbol, command.quantity) is None:
                raise NoMatchingPosition(f"No matching position found for {command.symbol}")
            return

        limit = command.limit_price
        if limit is None:
            raise MissingLimitPrice("Limit price is required and must be a number for limit orders")
        if command.side is Side.BUY:
            reserve = self._cost_with_fees(limit, command.quantity)
            if self._balance < reserve:
                raise InsufficientBalance(
                    f"Insufficient balance for limit buy order: need {reserve}, have {self._balance}"
                )
        else:
            available = self.available_quantity(command.symbol)
            if available < command.quantity:
                raise InsufficientPosition(
                    f"Insufficient position for limit sell order: {available} {command.symbol} available, "
                    f"{command.quantity} requested"
                )

    def available_quantity(self, symbol: str) -> Decimal:
        """Held quantity of symbol not already committed to resting SELL orders."""
        held = sum((p.quantity for p in self._positions if p.symbol == symbol), Decimal(0))
        committed = sum(
            (o.quantity for o in self._pending if o.symbol == symbol and o.side is Side.SELL),
            Decimal(0),
        )
        return held - committed

    def _find_lot(self, symbol: str, quantity: Decimal) -> int | None:
        # First lot in insertion order that covers the whole quantity; lots are never aggregated.
        for idx, pos in enumerate(self._positions):
            if pos.symbol == symbol and pos.quantity >= quantity:
                return idx
        return None

    # ------------------------------------------------------------------
    # Fills
    # ------------------------------------------------------------------

    def _market_buy(self, command: OrderCommand) -> None:
        self._balance -= self._cost_with_fees(command.market_price, command.quantity)
        self._fill_buy(command.symbol, command.market_price, command.quantity, command.strategy, command.timestamp, OrderKind.MARKET)

    def _market_sell(self, command: OrderCommand) -> None:
        idx = self._find_lot(command.symbol, command.quantity)
        if idx is None:
            raise NoMatchingPosition(f"No matching position found for {command.symbol}")
        self._fill_sell(idx, command.market_price, command.quantity, command.strategy, command.timestamp, OrderKind.MARKET)

    def _fill_buy(self, symbol: str, price: Decimal, quantity: Decimal, strategy: str, ts: datetime, kind: OrderKind) -> Trade:
        self._positions.append(
            Position(symbol=symbol, entry_price=price, quantity=quantity, opened_at=ts, strategy=strategy)
        )
        return self._record(symbol, Side.BUY, price, quantity, strategy, ts, kind)

    def _fill_sell(self, idx: int, price: Decimal, quantity: Decimal, strategy: str, ts: datetime, kind: OrderKind) -> Trade:
        lot = self._positions[idx]
        self._balance += price * quantity - self.commission(price, quantity)
        if lot.quantity == quantity:
            del self._positions[idx]
        else:
            lot.quantity -= quantity
        trade = self._record(lot.symbol, Side.SELL, price, quantity, strategy, ts, kind)
        self._snapshot_balance(ts, lot.symbol, price)
        return trade

    def _snapshot_balance(self, ts: datetime, symbol: str | None = None, price: Decimal | None = None) -> None:
        lots = sum(
            (
                p.quantity * (price if price is not None and p.symbol == symbol else p.entry_price)
                for p in self._positions
            ),
            Decimal(0),
        )
        value = self._balance + self.reserved_balance + lots
        profit = value - self._initial_balance
        pct = profit / self._initial_balance * _HUNDRED if self._initial_balance else Decimal(0)
        self._balance_history.append(
            BalanceSnapshot(timestamp=ts, balance=self._balance, portfolio_value=value, profit=profit, profit_pct=pct)
        )

    def _record(self, symbol: str, side: Side, price: Decimal, quantity: Decimal, strategy: str, ts: datetime, kind: OrderKind) -> Trade:
        trade = Trade(
            symbol=symbol,
            side=side,
            price=price,
            quantity=quantity,
            executed_at=ts,
            strategy=strategy,
            commission=self.commission(price, quantity),
            order_kind=kind,
        )
        self._trades.append(trade)
        logger.info("Filled %s %s %s %s @ %s", kind.value, side.value, quantity, symbol, price)
        self._emit(
            "order_filled",
            symbol=symbol,
            side=side.value,
            kind=kind.value,
            qty=str(quantity),
            price=str(price),
            commission=str(trade.commission),
            balance=str(self._balance),
        )
        return trade

    # ------------------------------------------------------------------
    # Limit book
    # ------------------------------------------------------------------

    def _next_order_id(self) -> str:
        self._order_seq += 1
        return f"LO-{self._order_seq}-{self._id_salt}"

    def _place_limit(self, command: OrderCommand) -> LimitOrder:
        if command.limit_price is None:
            raise MissingLimitPrice("Limit price is required and must be a number for limit orders")
        order = LimitOrder(
            id=self._next_order_id(),
            symbol=command.symbol,
            side=command.side,
            quantity=command.quantity,
            limit_price=command.limit_price,
            created_at=command.timestamp,
            strategy=command.strategy,
        )
        reserve = self.reserved_amount(order)
        self._balance -= reserve
        self._pending.append(order)
        logger.info("Placed limit %s %s %s @ %s (id=%s, reserved=%s)", order.side.value, order.quantity, order.symbol, order.limit_price, order.id, reserve)
        self._emit(
            "limit_order_placed",
            symbol=order.symbol,
            order_id=order.id,
            side=order.side.value,
            qty=str(order.quantity),
            limit_price=str(order.limit_price),
            reserved=str(reserve),
        )
        return order

    def resolve_pending_orders(
        self,
        symbol: str,
        current_price: Any,
        *,
        timestamp: datetime | None = None,
    ) -> ResolutionResult:
        """Fire every pending order for symbol whose limit is crossed by current_price.

        Orders fire in creation order. An order that cannot fill is dropped
        from the book and logged; it never blocks the rest of the pass.
        """
        price = to_decimal(current_price)
        ts = _utc(timestamp) if timestamp else datetime.now(timezone.utc)
        triggered = [o for o in self._pending if o.symbol == symbol and o.is_triggered(price)]

        executed = 0
        for order in triggered:
            self._pending.remove(order)
            try:
                self._execute_limit(order, price, ts)
            except LedgerError as exc:
                logger.warning("Dropped limit order %s for %s: %s", order.id, order.symbol, exc)
                self._emit("error", message=f"Limit order {order.id} dropped", detail=exc.message)
                continue
            executed += 1

        remaining = sum(1 for o in self._pending if o.symbol == symbol)
        if triggered:
            self._emit("limit_orders_resolved", symbol=symbol, price=str(price), executed=executed, remaining=remaining)
        return ResolutionResult(executed_count=executed, remaining_count=remaining)

    def _execute_limit(self, order: LimitOrder, price: Decimal, ts: datetime) -> Trade:
        if order.side is Side.BUY:
            # Funds were reserved at limit_price; a worse fill is not re-checked.
            refund = self.reserved_amount(order) - self._cost_with_fees(price, order.quantity)
            if refund > 0:
                self._balance += refund
            return self._fill_buy(order.symbol, price, order.quantity, order.strategy, ts, OrderKind.LIMIT)

        idx = self._find_lot(order.symbol, order.quantity)
        if idx is None:
            raise NoMatchingPosition(f"No matching position found for {order.symbol}")
        return self._fill_sell(idx, price, order.quantity, order.strategy, ts, OrderKind.LIMIT)

    def cancel_order(self, order_id: str) -> bool:
        """Remove a pending order. LIMIT BUY reservations are refunded in full."""
        for idx, order in enumerate(self._pending):
            if order.id == order_id:
                break
        else:
            return False
        del self._pending[idx]
        refund = self.reserved_amount(order)
        self._balance += refund
        logger.info("Cancelled limit order %s (refund=%s)", order_id, refund)
        self._emit("limit_order_cancelled", symbol=order.symbol, order_id=order_id, refund=str(refund))
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_account(self) -> AccountSnapshot:
        return AccountSnapshot(
            balance=self._balance,
            positions=[p.copy() for p in self._positions],
            trades=list(self._trades),
            pending_orders=list(self._pending),
            balance_history=list(self._balance_history),
        )

    def get_balance_history(self) -> list[BalanceSnapshot]:
        return list(self._balance_history)

    def get_pending_orders(self, symbol: str | None = None) -> list[LimitOrder]:
        if symbol is None:
            return list(self._pending)
        return [o for o in self._pending if o.symbol == symbol]

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self._listener is not None:
            self._listener(event_type, payload)
