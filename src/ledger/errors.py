"""
Ledger rejection errors.

Every error here means the operation was refused and the account is
exactly as it was before the call. None of them are transient.
"""


class LedgerError(Exception):
    """Base class for rejected ledger operations."""

    code = "LedgerError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidQuantity(LedgerError):
    """Quantity is zero or negative."""

    code = "InvalidQuantity"


class MissingLimitPrice(LedgerError):
    """LIMIT order submitted without a numeric limit price."""

    code = "MissingLimitPrice"


class InsufficientBalance(LedgerError):
    """BUY (market or limit) would overdraw the account."""

    code = "InsufficientBalance"


class InsufficientPosition(LedgerError):
    """LIMIT SELL exceeds holdings not already committed to resting sells."""

    code = "InsufficientPosition"


class NoMatchingPosition(LedgerError):
    """No single open lot of the symbol covers the requested SELL quantity."""

    code = "NoMatchingPosition"
