"""
HTTP adapter around the ledger: webhook intake, limit-order endpoints, exports.
"""

from api.app import create_app
from api.service import LedgerService
from api.webhook import PayloadError, parse_webhook, validate_webhook

__all__ = ["LedgerService", "PayloadError", "create_app", "parse_webhook", "validate_webhook"]
