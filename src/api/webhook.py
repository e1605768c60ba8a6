"""
Webhook payload adapter: loose alert JSON -> validated OrderCommand.

Payloads come from charting alerts and carry a flexible field set.
Aliases (ticker, contracts) are folded in first, then the payload is
validated against webhook.schema.json. All schema errors are collected.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import jsonschema

from ledger import OrderCommand, OrderKind, Side, to_decimal

SCHEMA_PATH = Path(__file__).resolve().with_name("webhook.schema.json")

_ALIASES = {"ticker": "symbol", "contracts": "quantity"}
_UPPERCASE_FIELDS = ("action", "orderType")
_NUMERIC_FIELDS = ("price", "quantity", "limitPrice", "timestamp")


class PayloadError(Exception):
    """Raised when a webhook payload fails validation."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


_validator: jsonschema.Draft7Validator | None = None


def _get_validator() -> jsonschema.Draft7Validator:
    global _validator
    if _validator is None:
        with open(SCHEMA_PATH) as f:
            schema = json.load(f)
        _validator = jsonschema.Draft7Validator(schema)
    return _validator


def normalize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy payload, fold aliases into canonical keys and uppercase enum fields."""
    data = dict(payload)
    for alias, canonical in _ALIASES.items():
        if canonical not in data and alias in data:
            data[canonical] = data[alias]
    for key in _UPPERCASE_FIELDS:
        if isinstance(data.get(key), str):
            data[key] = data[key].upper()
    return data


def _describe(error: jsonschema.ValidationError) -> str:
    if error.path:
        field = ".".join(str(p) for p in error.path)
        return f"{field}: {error.message}"
    return error.message


def validate_webhook(payload: Any) -> list[str]:
    """Return a list of validation errors; empty when the payload is usable."""
    if not isinstance(payload, dict):
        return ["Payload must be an object"]
    data = normalize_payload(payload)
    errors = sorted(_get_validator().iter_errors(data), key=lambda e: list(e.path))
    messages = [_describe(e) for e in errors]
    if messages:
        return messages

    # JSON parsers accept NaN/Infinity and the schema's "number" lets them through.
    for key in _NUMERIC_FIELDS:
        value = data.get(key)
        if isinstance(value, float) and not math.isfinite(value):
            messages.append(f"{key}: must be a finite number")
    if not messages:
        try:
            _timestamp(data["timestamp"])
        except PayloadError as exc:
            messages.extend(exc.errors)
    return messages


def _timestamp(epoch_ms: float) -> datetime:
    try:
        return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise PayloadError([f"timestamp: {epoch_ms!r} is out of range"]) from exc


def to_command(payload: dict[str, Any]) -> OrderCommand:
    """Build an OrderCommand from a payload that already passed validate_webhook().

    LIMIT_BUY / LIMIT_SELL actions imply a LIMIT order whose limit price
    defaults to ``price`` when ``limitPrice`` is absent.
    """
    data = normalize_payload(payload)
    action = data["action"]
    kind = OrderKind(data.get("orderType", "MARKET"))
    if action.startswith("LIMIT_"):
        kind = OrderKind.LIMIT
        side = Side(action[len("LIMIT_"):])
    else:
        side = Side(action)

    limit_price = None
    if kind is OrderKind.LIMIT:
        limit_price = to_decimal(data.get("limitPrice", data["price"]))

    return OrderCommand(
        symbol=data["symbol"],
        side=side,
        market_price=to_decimal(data["price"]),
        quantity=to_decimal(data["quantity"]),
        strategy=data["strategy"],
        timestamp=_timestamp(data["timestamp"]),
        kind=kind,
        limit_price=limit_price,
    )


def parse_webhook(payload: Any) -> OrderCommand:
    """Validate and convert in one step. Raises PayloadError on invalid input."""
    errors = validate_webhook(payload)
    if errors:
        raise PayloadError(errors)
    return to_command(payload)
