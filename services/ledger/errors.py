from __future__ import annotations


class LedgerError(Exception):
    """Domain-level error for the position ledger. The message is shown to the user as-is."""


class LedgerValidationError(LedgerError):
    """Bad input, rejected before anything is written."""


class RecordNotFound(LedgerError):
    """Missing, or owned by somebody else. The two cases are indistinguishable on purpose."""


class NoActivePosition(LedgerError):
    def __init__(self, symbol: str, strategy: str):
        self.symbol = symbol
        self.strategy = strategy
        super().__init__(f"No active position found for {symbol} ({strategy})")


class InsufficientShares(LedgerError):
    def __init__(self, symbol: str, available, requested):
        self.symbol = symbol
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient shares. Available: {available}, Trying to sell: {requested}"
        )


class TransactionLocked(LedgerError):
    """The transaction already moved a position; removing it would desync the ledger."""
