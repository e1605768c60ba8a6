"""
Ledger events as JSON lines.

Each event is one object per line on stderr (or the given stream), shaped
for log shippers. Alert events are also forwarded to a webhook URL when
one is configured; forwarding failures are logged and never raised.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.error
import urllib.request
from datetime import datetime, timezone
from typing import Any, TextIO

from reporting.serialize import to_jsonable

logger = logging.getLogger("paper.events")

ALERT_EVENTS = frozenset({"order_filled", "order_rejected", "error"})


class StructuredEventLogger:
    """Event sink for the ledger, the API server and replay runs.

    ``handle`` has the LedgerEngine listener signature, so an instance is
    wired in with ``LedgerEngine(..., listener=events.handle)``.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: TextIO | None = None,
        alert_events: frozenset[str] = ALERT_EVENTS,
    ) -> None:
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr
        self._alert_events = alert_events

    def handle(self, event_type: str, payload: dict[str, Any]) -> dict:
        record = {"ts": datetime.now(timezone.utc).isoformat(), "event": event_type}
        record.update(to_jsonable(payload))
        if self._enabled:
            print(json.dumps(record), file=self._stream, flush=True)
        if self._webhook_url and event_type in self._alert_events:
            self._forward(record)
        return record

    def _forward(self, record: dict) -> None:
        req = urllib.request.Request(
            self._webhook_url,
            data=json.dumps(record).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=5):
                pass
        except (urllib.error.URLError, OSError, ValueError) as exc:
            logger.warning("Alert forward to %s failed: %s", self._webhook_url, exc)

    # Server-side events; engine events arrive through handle().

    def server_start(self, host: str, port: int, initial_balance: float, commission_rate: float) -> dict:
        return self.handle(
            "server_start",
            {"host": host, "port": port, "initial_balance": initial_balance, "commission_rate": commission_rate},
        )

    def webhook_received(self, symbol: str, action: str, price: Any) -> dict:
        return self.handle("webhook_received", {"symbol": symbol, "action": action, "price": price})

    def payload_invalid(self, errors: list[str]) -> dict:
        return self.handle("payload_invalid", {"errors": errors})

    def error(self, message: str, detail: str = "") -> dict:
        return self.handle("error", {"message": message, "detail": detail})
