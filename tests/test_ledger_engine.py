"""Tests for the ledger engine: market fills, limit book, resolution, cancellation, invariants."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledger import (
    InsufficientBalance,
    InsufficientPosition,
    InvalidQuantity,
    LedgerEngine,
    MissingLimitPrice,
    NoMatchingPosition,
    OrderCommand,
    OrderKind,
    Side,
)


def _ts(day: int, hour: int = 9) -> datetime:
    return datetime(2024, 1, day, hour, 30, tzinfo=timezone.utc)


def _limit(engine: LedgerEngine, side: str, limit_price, qty, symbol: str = "BTCUSDT", strategy: str = "TEST"):
    return engine.submit_order(symbol, side, 50_000, qty, strategy, _ts(3), kind="LIMIT", limit_price=limit_price)


def _assert_invariants(engine: LedgerEngine) -> None:
    snap = engine.get_account()
    assert snap.balance >= 0
    assert all(p.quantity > 0 for p in snap.positions)
    ids = [o.id for o in snap.pending_orders]
    assert len(ids) == len(set(ids))


# ---------------------------------------------------------------------------
# Worked scenarios (10,000 balance, 0.1% commission)
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_market_buy(self, engine: LedgerEngine) -> None:
        snap = engine.submit_order("BTCUSDT", Side.BUY, 50_000, 0.1, "TEST", _ts(2))
        assert snap.balance == Decimal("4995")
        assert len(snap.positions) == 1
        pos = snap.positions[0]
        assert pos.symbol == "BTCUSDT"
        assert pos.entry_price == Decimal("50000")
        assert pos.quantity == Decimal("0.1")
        assert len(snap.trades) == 1
        assert snap.trades[0].commission == Decimal("5")
        assert snap.trades[0].order_kind is OrderKind.MARKET

    def test_market_sell_round_trip(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", Side.BUY, 50_000, 0.1, "TEST", _ts(2))
        snap = engine.submit_order("BTCUSDT", Side.SELL, 55_000, 0.1, "TEST", _ts(3))
        assert snap.balance == Decimal("10489.5")
        assert snap.positions == []
        assert len(snap.trades) == 2
        assert snap.trades[1].side is Side.SELL

    def test_limit_buy_reserves_funds(self, engine: LedgerEngine) -> None:
        snap = _limit(engine, "BUY", 49_000, 0.1)
        assert snap.balance == Decimal("5095.1")
        assert len(snap.pending_orders) == 1
        assert snap.trades == []
        assert snap.positions == []

    def test_limit_buy_fills_with_price_improvement(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 49_000, 0.1)
        result = engine.resolve_pending_orders("BTCUSDT", 48_000)
        assert result.executed_count == 1
        assert result.remaining_count == 0

        snap = engine.get_account()
        assert snap.positions[0].entry_price == Decimal("48000")
        assert snap.positions[0].quantity == Decimal("0.1")
        assert snap.balance == Decimal("5195.2")
        assert snap.pending_orders == []
        assert len(snap.trades) == 1
        assert snap.trades[0].order_kind is OrderKind.LIMIT
        assert snap.trades[0].price == Decimal("48000")

    def test_sell_without_position_rejected(self, engine: LedgerEngine) -> None:
        with pytest.raises(NoMatchingPosition):
            engine.submit_order("ETHUSDT", "SELL", 3_000, 1, "TEST", _ts(2))
        snap = engine.get_account()
        assert snap.balance == Decimal("10000")
        assert snap.trades == []

    def test_second_limit_sell_exceeds_availability(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", "BUY", 50_000, 0.1, "TEST", _ts(2))
        _limit(engine, "SELL", 55_000, 0.1)
        with pytest.raises(InsufficientPosition):
            _limit(engine, "SELL", 56_000, 0.1)
        assert len(engine.get_pending_orders()) == 1


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize("qty", [0, -1, "-0.5", "abc", None])
    def test_invalid_quantity(self, engine: LedgerEngine, qty) -> None:
        with pytest.raises(InvalidQuantity):
            engine.submit_order("BTCUSDT", "BUY", 50_000, qty, "TEST", _ts(2))
        assert engine.balance == Decimal("10000")

    @pytest.mark.parametrize("limit_price", [None, "not-a-number", float("nan")])
    def test_limit_requires_price(self, engine: LedgerEngine, limit_price) -> None:
        with pytest.raises(MissingLimitPrice):
            _limit(engine, "BUY", limit_price, 0.1)
        assert engine.get_pending_orders() == []
        assert engine.balance == Decimal("10000")

    def test_quantity_checked_before_limit_price(self, engine: LedgerEngine) -> None:
        with pytest.raises(InvalidQuantity):
            _limit(engine, "BUY", None, 0)

    def test_typed_command_with_missing_limit_price(self, engine: LedgerEngine) -> None:
        cmd = OrderCommand(
            symbol="BTCUSDT",
            side=Side.BUY,
            market_price=Decimal("50000"),
            quantity=Decimal("0.1"),
            strategy="TEST",
            timestamp=_ts(2),
            kind=OrderKind.LIMIT,
        )
        with pytest.raises(MissingLimitPrice):
            engine.submit(cmd)

    def test_market_buy_insufficient_balance(self, engine: LedgerEngine) -> None:
        # 10,000 notional + 10 commission > 10,000 balance
        with pytest.raises(InsufficientBalance):
            engine.submit_order("BTCUSDT", "BUY", 10_000, 1, "TEST", _ts(2))
        snap = engine.get_account()
        assert snap.balance == Decimal("10000")
        assert snap.positions == []
        assert snap.trades == []

    def test_market_buy_exact_balance(self) -> None:
        engine = LedgerEngine(initial_balance="1001", commission_rate="0.1")
        snap = engine.submit_order("X", "BUY", 1_000, 1, "TEST", _ts(2))
        assert snap.balance == Decimal("0")

    def test_limit_buy_insufficient_balance(self, engine: LedgerEngine) -> None:
        with pytest.raises(InsufficientBalance):
            _limit(engine, "BUY", 100_000, 1)
        assert engine.balance == Decimal("10000")
        assert engine.get_pending_orders() == []

    def test_limit_sell_without_holdings(self, engine: LedgerEngine) -> None:
        with pytest.raises(InsufficientPosition):
            _limit(engine, "SELL", 55_000, 0.1)

    def test_lowercase_side_and_kind(self, engine: LedgerEngine) -> None:
        snap = engine.submit_order("BTCUSDT", "buy", 50_000, 0.1, "TEST", _ts(2), kind="market")
        assert snap.trades[0].side is Side.BUY

    def test_error_codes(self, engine: LedgerEngine) -> None:
        with pytest.raises(NoMatchingPosition) as info:
            engine.submit_order("BTCUSDT", "SELL", 50_000, 1, "TEST", _ts(2))
        assert info.value.code == "NoMatchingPosition"
        assert "BTCUSDT" in info.value.message


# ---------------------------------------------------------------------------
# Market sell lot matching
# ---------------------------------------------------------------------------


class TestLotMatching:
    def test_full_sell_removes_lot(self, long_engine: LedgerEngine) -> None:
        snap = long_engine.submit_order("BTCUSDT", "SELL", 51_000, 0.2, "TEST", _ts(3))
        assert snap.positions == []

    def test_partial_sell_reduces_lot(self, long_engine: LedgerEngine) -> None:
        snap = long_engine.submit_order("BTCUSDT", "SELL", 51_000, "0.05", "TEST", _ts(3))
        assert len(snap.positions) == 1
        assert snap.positions[0].quantity == Decimal("0.15")

    def test_lots_are_not_aggregated(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", "BUY", 20_000, 0.1, "A", _ts(2))
        engine.submit_order("BTCUSDT", "BUY", 20_000, 0.1, "B", _ts(2))
        with pytest.raises(NoMatchingPosition):
            engine.submit_order("BTCUSDT", "SELL", 21_000, 0.15, "A", _ts(3))
        assert len(engine.get_account().positions) == 2

    def test_first_covering_lot_is_used(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", "BUY", 10_000, 0.05, "small", _ts(2))
        engine.submit_order("BTCUSDT", "BUY", 10_000, 0.2, "big", _ts(2))
        engine.submit_order("BTCUSDT", "BUY", 10_000, 0.3, "bigger", _ts(2))
        snap = engine.submit_order("BTCUSDT", "SELL", 21_000, 0.1, "X", _ts(3))
        quantities = [(p.strategy, p.quantity) for p in snap.positions]
        assert quantities == [("small", Decimal("0.05")), ("big", Decimal("0.1")), ("bigger", Decimal("0.3"))]

    def test_buys_append_separate_lots(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", "BUY", 20_000, 0.1, "A", _ts(2))
        snap = engine.submit_order("BTCUSDT", "BUY", 21_000, 0.1, "A", _ts(3))
        assert [p.entry_price for p in snap.positions] == [Decimal("20000"), Decimal("21000")]


# ---------------------------------------------------------------------------
# Limit book and resolution
# ---------------------------------------------------------------------------


class TestLimitResolution:
    def test_limit_buy_not_triggered_above_limit(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 50_000, 0.1)
        result = engine.resolve_pending_orders("BTCUSDT", 51_000)
        assert result.executed_count == 0
        assert result.remaining_count == 1
        assert engine.get_account().positions == []

    def test_limit_buy_triggers_at_limit(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 50_000, 0.1)
        engine.resolve_pending_orders("BTCUSDT", 50_000)
        snap = engine.get_account()
        assert snap.pending_orders == []
        assert len(snap.positions) == 1
        # Reservation matched the fill exactly: no refund
        assert snap.balance == Decimal("4995")

    def test_limit_sell_triggers_at_or_above(self, long_engine: LedgerEngine) -> None:
        _limit(long_engine, "SELL", 55_000, 0.1)
        before = long_engine.balance
        assert long_engine.resolve_pending_orders("BTCUSDT", 54_999).executed_count == 0
        result = long_engine.resolve_pending_orders("BTCUSDT", 56_000)
        assert result.executed_count == 1
        snap = long_engine.get_account()
        assert snap.positions[0].quantity == Decimal("0.1")
        assert snap.balance == before + Decimal("5600") - Decimal("5.6")
        assert snap.trades[-1].order_kind is OrderKind.LIMIT
        assert snap.trades[-1].side is Side.SELL

    def test_limit_sell_does_not_touch_balance_or_lots(self, long_engine: LedgerEngine) -> None:
        before = long_engine.get_account()
        snap = _limit(long_engine, "SELL", 55_000, 0.1)
        assert snap.balance == before.balance
        assert snap.positions == before.positions

    def test_all_triggered_orders_fire_fifo(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 49_000, 0.01, strategy="first")
        _limit(engine, "BUY", 48_500, 0.01, strategy="second")
        _limit(engine, "BUY", 47_000, 0.01, strategy="too-low")
        result = engine.resolve_pending_orders("BTCUSDT", 48_000)
        assert result.executed_count == 2
        assert result.remaining_count == 1
        snap = engine.get_account()
        assert [t.strategy for t in snap.trades] == ["first", "second"]
        assert [o.strategy for o in snap.pending_orders] == ["too-low"]

    def test_other_symbols_untouched(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 3_000, 1, symbol="ETHUSDT")
        result = engine.resolve_pending_orders("BTCUSDT", 1)
        assert result.executed_count == 0
        assert result.remaining_count == 0
        assert len(engine.get_pending_orders("ETHUSDT")) == 1

    def test_unfillable_sell_is_dropped_and_scan_continues(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", "BUY", 20_000, 0.1, "A", _ts(2))
        engine.submit_order("BTCUSDT", "BUY", 20_000, 0.1, "B", _ts(2))
        # Availability is aggregated at creation, but the fill needs one covering lot.
        _limit(engine, "SELL", 25_000, 0.15, strategy="too-big")
        _limit(engine, "SELL", 25_000, 0.05, strategy="fits")
        before = engine.balance

        result = engine.resolve_pending_orders("BTCUSDT", 25_000)

        assert result.executed_count == 1
        assert result.remaining_count == 0
        snap = engine.get_account()
        assert snap.pending_orders == []
        assert snap.trades[-1].strategy == "fits"
        assert snap.balance == before + Decimal("1250") - Decimal("1.25")
        assert [p.quantity for p in snap.positions] == [Decimal("0.05"), Decimal("0.1")]

    def test_market_order_resolves_same_symbol(self, long_engine: LedgerEngine) -> None:
        _limit(long_engine, "SELL", 55_000, 0.1)
        snap = long_engine.submit_order("BTCUSDT", "BUY", 56_000, 0.01, "TEST", _ts(4))
        assert snap.pending_orders == []
        kinds = [(t.side, t.order_kind) for t in snap.trades]
        assert kinds[-2:] == [(Side.BUY, OrderKind.MARKET), (Side.SELL, OrderKind.LIMIT)]

    def test_limit_submission_never_fills_immediately(self, engine: LedgerEngine) -> None:
        # Market price already below the limit: still rests until a tick arrives.
        snap = engine.submit_order("BTCUSDT", "BUY", 40_000, 0.1, "TEST", _ts(2), kind=OrderKind.LIMIT, limit_price=49_000)
        assert snap.trades == []
        assert len(snap.pending_orders) == 1

    def test_filled_limit_uses_tick_timestamp(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 49_000, 0.1)
        engine.resolve_pending_orders("BTCUSDT", 48_000, timestamp=_ts(9))
        snap = engine.get_account()
        assert snap.trades[0].executed_at == _ts(9)
        assert snap.positions[0].opened_at == _ts(9)


# ---------------------------------------------------------------------------
# Cancellation and queries
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancel_limit_buy_restores_balance(self, engine: LedgerEngine) -> None:
        snap = _limit(engine, "BUY", 49_000, 0.1)
        assert engine.cancel_order(snap.pending_orders[0].id) is True
        after = engine.get_account()
        assert after.balance == Decimal("10000")
        assert after.pending_orders == []
        assert after.positions == []
        assert after.trades == []

    def test_cancel_limit_sell_round_trip(self, long_engine: LedgerEngine) -> None:
        before = long_engine.get_account()
        snap = _limit(long_engine, "SELL", 55_000, 0.2)
        assert long_engine.cancel_order(snap.pending_orders[0].id) is True
        after = long_engine.get_account()
        assert after.balance == before.balance
        assert after.positions == before.positions
        # Holdings are available again
        _limit(long_engine, "SELL", 55_000, 0.2)

    def test_cancel_unknown(self, engine: LedgerEngine) -> None:
        assert engine.cancel_order("LO-404") is False

    def test_cancel_twice(self, engine: LedgerEngine) -> None:
        order_id = _limit(engine, "BUY", 49_000, 0.1).pending_orders[0].id
        assert engine.cancel_order(order_id) is True
        assert engine.cancel_order(order_id) is False
        assert engine.balance == Decimal("10000")

    def test_executed_order_cannot_be_cancelled(self, engine: LedgerEngine) -> None:
        order_id = _limit(engine, "BUY", 49_000, 0.1).pending_orders[0].id
        engine.resolve_pending_orders("BTCUSDT", 48_000)
        balance = engine.balance
        assert engine.cancel_order(order_id) is False
        assert engine.balance == balance

    def test_pending_filter_by_symbol(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 49_000, 0.01)
        _limit(engine, "BUY", 3_000, 0.1, symbol="ETHUSDT")
        assert len(engine.get_pending_orders()) == 2
        assert [o.symbol for o in engine.get_pending_orders("ETHUSDT")] == ["ETHUSDT"]
        assert engine.get_pending_orders("DOGEUSDT") == []

    def test_snapshots_are_defensive_copies(self, long_engine: LedgerEngine) -> None:
        _limit(long_engine, "SELL", 55_000, 0.1)
        snap = long_engine.get_account()
        snap.positions[0].quantity = Decimal("999")
        snap.positions.clear()
        snap.trades.clear()
        snap.pending_orders.clear()
        long_engine.get_pending_orders().clear()

        fresh = long_engine.get_account()
        assert fresh.positions[0].quantity == Decimal("0.2")
        assert len(fresh.trades) == 1
        assert len(fresh.pending_orders) == 1

    def test_order_ids_unique(self, engine: LedgerEngine) -> None:
        for price in (49_000, 48_000, 47_000):
            _limit(engine, "BUY", price, 0.01)
        ids = [o.id for o in engine.get_pending_orders()]
        assert len(set(ids)) == 3
        other = LedgerEngine(10_000, 0.1)
        other_id = _limit(other, "BUY", 49_000, 0.01).pending_orders[0].id
        assert other_id not in ids


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


class TestBalanceHistory:
    def test_starts_with_initial_snapshot(self, engine: LedgerEngine) -> None:
        (start,) = engine.get_balance_history()
        assert start.balance == start.portfolio_value == Decimal("10000")
        assert start.profit == 0
        assert start.profit_pct == 0

    def test_sell_records_snapshot(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", Side.BUY, 50_000, 0.1, "TEST", _ts(2))
        assert len(engine.get_balance_history()) == 1
        engine.submit_order("BTCUSDT", Side.SELL, 55_000, 0.1, "TEST", _ts(3))
        snap = engine.get_balance_history()[-1]
        assert snap.timestamp == _ts(3)
        assert snap.balance == Decimal("10489.5")
        assert snap.portfolio_value == Decimal("10489.5")
        assert snap.profit == Decimal("489.5")
        assert snap.profit_pct == Decimal("4.895")

    def test_portfolio_value_marks_sold_symbol_and_counts_reserve(self) -> None:
        engine = LedgerEngine(10_000, 0)
        engine.submit_order("X", "BUY", 100, 1, "A", _ts(2))
        engine.submit_order("X", "BUY", 100, 1, "A", _ts(2))
        engine.submit_order("Y", "BUY", 50, 1, "A", _ts(2))
        engine.submit_order("Z", "BUY", 12, 1, "A", _ts(2), kind="LIMIT", limit_price=10)
        engine.submit_order("X", "SELL", 150, 1, "A", _ts(3))
        snap = engine.get_balance_history()[-1]
        assert snap.balance == Decimal("9890")
        # cash 9890 + reserved 10 + X lot at 150 + Y lot at entry 50
        assert snap.portfolio_value == Decimal("10100")
        assert snap.profit == Decimal("100")

    def test_limit_sell_fill_records_snapshot(self, long_engine: LedgerEngine) -> None:
        before = len(long_engine.get_balance_history())
        _limit(long_engine, "SELL", 45_000, 0.1)
        long_engine.resolve_pending_orders("BTCUSDT", 45_000, timestamp=_ts(4))
        history = long_engine.get_balance_history()
        assert len(history) == before + 1
        assert history[-1].timestamp == _ts(4)

    def test_zero_initial_balance(self) -> None:
        (start,) = LedgerEngine(0, 0).get_balance_history()
        assert start.profit_pct == 0

    def test_account_carries_a_copy(self, engine: LedgerEngine) -> None:
        engine.get_account().balance_history.clear()
        assert len(engine.get_account().balance_history) == 1


class TestInvariants:
    def test_reserved_balance_equals_cancel_refunds(self, engine: LedgerEngine) -> None:
        _limit(engine, "BUY", 49_000, 0.05)
        _limit(engine, "BUY", 30_000, 0.1)
        assert engine.initial_balance - engine.balance == engine.reserved_balance
        for order in engine.get_pending_orders():
            engine.cancel_order(order.id)
        assert engine.balance == engine.initial_balance
        assert engine.reserved_balance == 0

    def test_invariants_hold_through_mixed_sequence(self, engine: LedgerEngine) -> None:
        engine.submit_order("BTCUSDT", "BUY", 40_000, 0.1, "A", _ts(2))
        _assert_invariants(engine)
        _limit(engine, "BUY", 39_000, 0.05)
        _limit(engine, "SELL", 45_000, 0.1)
        _assert_invariants(engine)
        with pytest.raises(InsufficientBalance):
            engine.submit_order("BTCUSDT", "BUY", 40_000, 1, "A", _ts(3))
        engine.resolve_pending_orders("BTCUSDT", 38_000)
        _assert_invariants(engine)
        engine.resolve_pending_orders("BTCUSDT", 46_000)
        _assert_invariants(engine)
        snap = engine.get_account()
        assert snap.pending_orders == []
        assert [p.quantity for p in snap.positions] == [Decimal("0.05")]

    def test_commission_helpers(self, engine: LedgerEngine) -> None:
        assert engine.commission(Decimal("50000"), Decimal("0.1")) == Decimal("5")
        order = _limit(engine, "BUY", 49_000, 0.1).pending_orders[0]
        assert engine.reserved_amount(order) == Decimal("4904.9")

    def test_available_quantity(self, long_engine: LedgerEngine) -> None:
        assert long_engine.available_quantity("BTCUSDT") == Decimal("0.2")
        _limit(long_engine, "SELL", 55_000, 0.15)
        assert long_engine.available_quantity("BTCUSDT") == Decimal("0.05")

    def test_rejects_negative_configuration(self) -> None:
        with pytest.raises(ValueError):
            LedgerEngine(initial_balance=-1)
        with pytest.raises(ValueError):
            LedgerEngine(commission_rate=-0.1)


# ---------------------------------------------------------------------------
# Listener events
# ---------------------------------------------------------------------------


def test_listener_receives_events(symbol: str) -> None:
    events: list[tuple[str, dict]] = []
    engine = LedgerEngine(10_000, 0.1, listener=lambda kind, payload: events.append((kind, payload)))
    engine.submit_order(symbol, "BUY", 50_000, 0.1, "TEST", _ts(2))
    order_id = _limit(engine, "BUY", 49_000, 0.01).pending_orders[0].id
    engine.cancel_order(order_id)
    with pytest.raises(NoMatchingPosition):
        engine.submit_order("ETHUSDT", "SELL", 3_000, 1, "TEST", _ts(2))

    kinds = [k for k, _ in events]
    assert kinds == ["order_filled", "limit_order_placed", "limit_order_cancelled", "order_rejected"]
    assert Decimal(events[0][1]["balance"]) == Decimal("4995")
    assert events[-1][1]["code"] == "NoMatchingPosition"
