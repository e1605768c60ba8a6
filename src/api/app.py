"""
FastAPI application: webhook intake, limit-order management, history and export.

Engine calls block (service lock, alert forwarding), so they never run on
the event loop: plain ``def`` routes go to FastAPI's threadpool, and the
two routes that parse a raw body hand the service call to
``run_in_threadpool``.

Usage:
    paper serve --config config.yaml
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from fastapi import FastAPI, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from api.service import LedgerService
from api.webhook import PayloadError, parse_webhook
from ledger import LedgerError
from reporting import ExportError, export_filename, export_mime_type, export_trade_data, to_jsonable

logger = logging.getLogger("paper.api")


def _fail(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


def _ok(message: str | None = None, data: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _price_check_args(body: Any) -> tuple[str, float] | None:
    if not isinstance(body, dict):
        return None
    symbol, price = body.get("symbol"), body.get("price")
    if not symbol or not isinstance(symbol, str):
        return None
    if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price):
        return None
    return symbol, price


def create_app(service: LedgerService) -> FastAPI:
    """Build the API around one LedgerService (one account per process)."""
    app = FastAPI(title="Paper Ledger", version="0.1.0")
    app.state.service = service

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(_request: Request, exc: LedgerError) -> JSONResponse:
        return _fail(status.HTTP_400_BAD_REQUEST, exc.message, code=exc.code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error: %s", exc)
        if service.events:
            await run_in_threadpool(service.events.error, "Unhandled API error", str(exc))
        return _fail(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # ---------- webhook ----------

    @app.post("/api/webhook")
    async def webhook(request: Request) -> Any:
        payload = await _json_body(request)
        try:
            command = parse_webhook(payload)
        except PayloadError as exc:
            if service.events:
                service.events.payload_invalid(exc.errors)
            return _fail(status.HTTP_400_BAD_REQUEST, "Invalid webhook payload", errors=exc.errors)

        logger.info("Processing webhook for %s: %s %s at %s", command.symbol, command.kind.value, command.side.value, command.market_price)
        if service.events:
            service.events.webhook_received(command.symbol, f"{command.kind.value}_{command.side.value}", str(command.market_price))
        snapshot = await run_in_threadpool(service.submit, command)
        return _ok("Webhook processed successfully", to_jsonable(snapshot))

    # ---------- account ----------

    @app.get("/api/account")
    def account() -> Any:
        return _ok(data=to_jsonable(service.account()))

    # ---------- limit orders ----------

    @app.get("/api/limit-orders")
    def list_limit_orders() -> Any:
        orders = service.pending_orders()
        return _ok(data={"count": len(orders), "orders": to_jsonable(orders)})

    @app.post("/api/limit-orders/check-price")
    async def check_price(request: Request) -> Any:
        args = _price_check_args(await _json_body(request))
        if args is None:
            return _fail(status.HTTP_400_BAD_REQUEST, "Symbol and price are required")
        symbol, price = args
        result = await run_in_threadpool(service.check_price, symbol, price)
        return _ok(
            f"Checked limit orders for {symbol} at price {price}",
            {"executed": result.executed_count, "remaining": result.remaining_count},
        )

    @app.get("/api/limit-orders/{symbol}")
    def list_limit_orders_for_symbol(symbol: str) -> Any:
        orders = service.pending_orders(symbol)
        return _ok(data={"symbol": symbol, "count": len(orders), "orders": to_jsonable(orders)})

    @app.delete("/api/limit-orders/{order_id}")
    def cancel_limit_order(order_id: str) -> Any:
        if not service.cancel(order_id):
            return _fail(status.HTTP_404_NOT_FOUND, f"Limit order {order_id} not found")
        return _ok(f"Limit order {order_id} cancelled successfully")

    # ---------- trades ----------

    @app.get("/api/trades/history")
    def history() -> Any:
        return _ok(data=to_jsonable(service.history()))

    @app.get("/api/trades/export")
    def export(
        fmt: str = Query("json", alias="format"),
        positions: bool = Query(False),
        analytics: bool = Query(False),
        balance_history: bool = Query(False),
    ) -> Any:
        try:
            content = export_trade_data(
                service.history(),
                fmt,
                include_positions=positions,
                include_analytics=analytics,
                include_balance_history=balance_history,
            )
        except ExportError as exc:
            return _fail(status.HTTP_400_BAD_REQUEST, str(exc))
        return Response(
            content=content,
            media_type=export_mime_type(fmt),
            headers={"Content-Disposition": f'attachment; filename="{export_filename(fmt)}"'},
        )

    return app
