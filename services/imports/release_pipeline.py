"""
Release of staged broker fills into the ledger.

Each staging id is processed on its own, in order, in its own unit of work:
insert the transaction, apply it to the position (when the owner aggregates),
delete the staging row, commit. A failure rolls back that one id and is
written back onto the staging row as a rejection; the batch keeps going.
Processing is deliberately sequential so a fill that duplicates one released
earlier in the same batch is caught against already-committed state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.enums import AccountingMode, StagingStatus
from models.import_staging import StagingRecord
from services.imports.staging_service import get_record
from services.ledger.transaction_recorder import TransactionEntry, validate_entry, write_transaction

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Record not found"
REASON_STRATEGY_REQUIRED = "Strategy required"
REASON_DUPLICATE = "Duplicate entry found in transactions table"

_UNIQUE_VIOLATION_MARKERS = ("unique constraint failed", "duplicate key value", "unique violation")


@dataclass
class ReleaseReport:
    total: int = 0
    released: List[int] = field(default_factory=list)
    rejected: List[Dict[str, Any]] = field(default_factory=list)

    def reject(self, staging_id: int, reason: str) -> None:
        self.rejected.append({"id": staging_id, "reason": reason})

    def as_dict(self) -> Dict[str, Any]:
        return {
            "message": f"Released {len(self.released)} of {self.total} records",
            "released": list(self.released),
            "rejected": list(self.rejected),
            "summary": {
                "total": self.total,
                "success": len(self.released),
                "failed": len(self.rejected),
            },
        }


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == "23505" or getattr(orig, "sqlstate", None) == "23505":
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in _UNIQUE_VIOLATION_MARKERS)


def _entry_from_staging(record: StagingRecord) -> TransactionEntry:
    return TransactionEntry(
        symbol=record.symbol,
        side=record.side,
        transaction_date=record.transaction_date,
        quantity=record.quantity,
        price=record.price,
        fees=record.fees,
        currency=record.currency,
        notes=record.notes,
        strategy=record.strategy,
        name=record.name,
        broker_fill_id=record.broker_fill_id,
        broker_order_id=record.broker_order_id,
    )


def _mark_rejected(
    db: Session,
    owner_id: int,
    staging_id: int,
    status: StagingStatus,
    reason: str,
) -> None:
    try:
        record = get_record(db, owner_id, staging_id)
        if record is None:
            return
        record.status = status
        record.rejection_reason = reason
        db.commit()
    except SQLAlchemyError:
        # the rejection still goes into the report
        db.rollback()
        logger.exception("could not persist rejection for staging record %s", staging_id)


def _release_one(
    db: Session,
    owner_id: int,
    staging_id: int,
    report: ReleaseReport,
    *,
    accounting_mode: AccountingMode,
    price_oracle=None,
) -> None:
    record = get_record(db, owner_id, staging_id)
    if record is None:
        report.reject(staging_id, REASON_NOT_FOUND)
        return

    if record.status != StagingStatus.imported:
        report.reject(staging_id, f"Record is not pending release (status: {record.status.value})")
        return

    if not (record.strategy or "").strip():
        _mark_rejected(db, owner_id, staging_id, StagingStatus.rejected_error, REASON_STRATEGY_REQUIRED)
        report.reject(staging_id, REASON_STRATEGY_REQUIRED)
        return

    try:
        entry = validate_entry(_entry_from_staging(record), accounting_mode)
        write_transaction(
            db, owner_id, entry, accounting_mode=accounting_mode, price_oracle=price_oracle
        )
        db.delete(record)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_unique_violation(exc):
            logger.info("staging record %s duplicates an existing transaction", staging_id)
            _mark_rejected(db, owner_id, staging_id, StagingStatus.rejected_duplicate, REASON_DUPLICATE)
            report.reject(staging_id, REASON_DUPLICATE)
        else:
            reason = str(exc.orig) if exc.orig is not None else str(exc)
            logger.warning("staging record %s failed with integrity error: %s", staging_id, reason)
            _mark_rejected(db, owner_id, staging_id, StagingStatus.rejected_error, reason)
            report.reject(staging_id, reason)
        return
    except Exception as exc:
        db.rollback()
        reason = str(exc) or exc.__class__.__name__
        logger.warning("staging record %s rejected: %s", staging_id, reason)
        _mark_rejected(db, owner_id, staging_id, StagingStatus.rejected_error, reason)
        report.reject(staging_id, reason)
        return

    report.released.append(staging_id)


def release_staged_records(
    db: Session,
    owner_id: int,
    staging_ids: Iterable[int],
    *,
    accounting_mode: AccountingMode,
    price_oracle: Optional[Any] = None,
) -> ReleaseReport:
    ids = list(staging_ids)
    report = ReleaseReport(total=len(ids))

    for staging_id in ids:
        try:
            _release_one(
                db,
                owner_id,
                staging_id,
                report,
                accounting_mode=accounting_mode,
                price_oracle=price_oracle,
            )
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("release of staging record %s failed before its unit of work", staging_id)
            report.reject(staging_id, str(exc))

    logger.info(
        "release finished: %d released, %d rejected of %d",
        len(report.released), len(report.rejected), report.total,
    )
    return report
