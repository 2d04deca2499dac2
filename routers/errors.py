from fastapi import HTTPException

from services.ledger.errors import (
    InsufficientShares,
    LedgerError,
    LedgerValidationError,
    NoActivePosition,
    RecordNotFound,
    TransactionLocked,
)


def to_http_exception(exc: LedgerError) -> HTTPException:
    """Map a ledger error onto a status code, keeping its message for the UI."""
    if isinstance(exc, LedgerValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, RecordNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (NoActivePosition, InsufficientShares, TransactionLocked)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
