"""
Import staging buffer.

Broker fills land here first. Nothing in this module touches positions or
transactions; a staged row only becomes a transaction through the release
pipeline.
"""
from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from models.enums import StagingStatus, TradeSide
from models.import_staging import StagingRecord
from services.ledger.errors import LedgerValidationError, RecordNotFound
from utils.common_helpers import ZERO, normalize_currency, normalize_symbol, quantize_amount

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = {
    "strategy",
    "quantity",
    "price",
    "fees",
    "currency",
    "notes",
    "transaction_date",
    "status",
}

REJECTED_STATUSES = (StagingStatus.rejected_duplicate, StagingStatus.rejected_error)


@dataclass(frozen=True)
class FillRecord:
    """A normalized broker fill, ready to be staged."""

    symbol: str
    side: TradeSide
    transaction_date: date
    quantity: Decimal
    price: Decimal
    fees: Decimal = ZERO
    currency: str = "USD"
    broker_fill_id: Optional[str] = None
    broker_order_id: Optional[str] = None
    name: Optional[str] = None
    strategy: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class StageBatchResult:
    batch_id: str
    inserted_ids: List[int] = field(default_factory=list)
    skipped_duplicates: int = 0

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)


def _amount(value: Any, field_name: str) -> Decimal:
    try:
        return quantize_amount(value)
    except ValueError as e:
        raise LedgerValidationError(f"{field_name} must be a number") from e


def _positive(value: Any, field_name: str) -> Decimal:
    amount = _amount(value, field_name)
    if amount <= 0:
        raise LedgerValidationError(f"{field_name} must be greater than 0")
    return amount


def _non_negative(value: Any, field_name: str) -> Decimal:
    amount = _amount(value if value is not None else ZERO, field_name)
    if amount < 0:
        raise LedgerValidationError(f"{field_name} cannot be negative")
    return amount


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise LedgerValidationError(f"invalid transaction_date: {value!r}") from e


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def derived_fill_id(symbol: str, side: TradeSide, trade_date: date, quantity: Decimal, price: Decimal) -> str:
    """Stable id for a fill the broker sent without one, keyed like the staging dedup."""
    raw = f"{symbol}|{trade_date.isoformat()}|{side.value}|{quantity}|{price}"
    return "fk_" + hashlib.sha1(raw.encode("utf-8")).hexdigest()


def _normalize_fill(fill: FillRecord) -> FillRecord:
    try:
        symbol = normalize_symbol(fill.symbol)
        currency = normalize_currency(fill.currency)
        side = TradeSide(fill.side)
    except ValueError as e:
        raise LedgerValidationError(str(e)) from e

    trade_date = _as_date(fill.transaction_date)
    quantity = _positive(fill.quantity, "quantity")
    price = _positive(fill.price, "price")

    return FillRecord(
        symbol=symbol,
        side=side,
        transaction_date=trade_date,
        quantity=quantity,
        price=price,
        fees=_non_negative(fill.fees, "fees"),
        currency=currency,
        # every staged fill carries a key, so a re-release hits uq_transactions_user_fill
        broker_fill_id=_clean_text(fill.broker_fill_id)
        or derived_fill_id(symbol, side, trade_date, quantity, price),
        broker_order_id=_clean_text(fill.broker_order_id),
        name=_clean_text(fill.name),
        strategy=_clean_text(fill.strategy),
        notes=fill.notes,
    )


def find_staged_duplicate(db: Session, owner_id: int, fill: FillRecord) -> Optional[StagingRecord]:
    return (
        db.query(StagingRecord)
        .filter(
            StagingRecord.user_id == owner_id,
            StagingRecord.symbol == fill.symbol,
            StagingRecord.transaction_date == fill.transaction_date,
            StagingRecord.side == fill.side,
            StagingRecord.quantity == fill.quantity,
            StagingRecord.price == fill.price,
        )
        .first()
    )


def stage_batch(
    db: Session,
    owner_id: int,
    fills: Iterable[FillRecord],
    *,
    batch_id: Optional[str] = None,
) -> StageBatchResult:
    # validate everything before the first insert
    normalized = [_normalize_fill(f) for f in fills]

    result = StageBatchResult(batch_id=batch_id or f"batch_{uuid.uuid4().hex}")
    imported_at = datetime.now(timezone.utc)

    try:
        for fill in normalized:
            if find_staged_duplicate(db, owner_id, fill) is not None:
                logger.info("skipping duplicate fill %s %s on %s", fill.side.value, fill.symbol, fill.transaction_date)
                result.skipped_duplicates += 1
                continue

            record = StagingRecord(
                user_id=owner_id,
                import_batch_id=result.batch_id,
                import_timestamp=imported_at,
                status=StagingStatus.imported,
                broker_fill_id=fill.broker_fill_id,
                broker_order_id=fill.broker_order_id,
                symbol=fill.symbol,
                name=fill.name,
                side=fill.side,
                transaction_date=fill.transaction_date,
                quantity=fill.quantity,
                price=fill.price,
                trade_value=quantize_amount(fill.quantity * fill.price),
                fees=fill.fees,
                currency=fill.currency,
                strategy=fill.strategy,
                notes=fill.notes,
            )
            db.add(record)
            # flush so later fills in the same batch see this one
            db.flush()
            result.inserted_ids.append(record.id)

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "staged batch %s: %d inserted, %d duplicates skipped",
        result.batch_id, result.inserted_count, result.skipped_duplicates,
    )
    return result


def get_record(db: Session, owner_id: int, staging_id: int) -> Optional[StagingRecord]:
    return (
        db.query(StagingRecord)
        .filter(StagingRecord.id == staging_id, StagingRecord.user_id == owner_id)
        .first()
    )


def _require_record(db: Session, owner_id: int, staging_id: int) -> StagingRecord:
    record = get_record(db, owner_id, staging_id)
    if record is None:
        raise RecordNotFound("Staging record not found")
    return record


def list_staging(db: Session, owner_id: int, status: Optional[StagingStatus] = None) -> List[StagingRecord]:
    query = db.query(StagingRecord).filter(StagingRecord.user_id == owner_id)
    if status is not None:
        query = query.filter(StagingRecord.status == status)
    return query.order_by(StagingRecord.created_at.desc(), StagingRecord.id.desc()).all()


def update_record(db: Session, owner_id: int, staging_id: int, patch: Dict[str, Any]) -> StagingRecord:
    unknown = set(patch) - MUTABLE_FIELDS
    if unknown:
        raise LedgerValidationError(f"fields cannot be edited: {', '.join(sorted(unknown))}")
    if not patch:
        raise LedgerValidationError("No fields to update")

    record = _require_record(db, owner_id, staging_id)

    if "strategy" in patch:
        record.strategy = _clean_text(patch["strategy"])
    if "quantity" in patch:
        record.quantity = _positive(patch["quantity"], "quantity")
    if "price" in patch:
        record.price = _positive(patch["price"], "price")
    if "fees" in patch:
        record.fees = _non_negative(patch["fees"], "fees")
    if "currency" in patch:
        try:
            record.currency = normalize_currency(patch["currency"])
        except ValueError as e:
            raise LedgerValidationError(str(e)) from e
    if "notes" in patch:
        record.notes = patch["notes"]
    if "transaction_date" in patch:
        record.transaction_date = _as_date(patch["transaction_date"])
    if "status" in patch:
        try:
            status = StagingStatus(patch["status"])
        except ValueError as e:
            raise LedgerValidationError(f"unknown status: {patch['status']!r}") from e
        if status == StagingStatus.released:
            raise LedgerValidationError("records are released through the release endpoint")
        record.status = status
        if status == StagingStatus.imported:
            record.rejection_reason = None

    if "quantity" in patch or "price" in patch:
        record.trade_value = quantize_amount(record.quantity * record.price)

    db.commit()
    db.refresh(record)
    return record


def delete_record(db: Session, owner_id: int, staging_id: int) -> None:
    record = _require_record(db, owner_id, staging_id)
    db.delete(record)
    db.commit()
    logger.info("discarded staging record %s", staging_id)


def clear_rejected(db: Session, owner_id: int) -> int:
    deleted = (
        db.query(StagingRecord)
        .filter(StagingRecord.user_id == owner_id, StagingRecord.status.in_(REJECTED_STATUSES))
        .delete(synchronize_session="fetch")
    )
    db.commit()
    logger.info("cleared %d rejected staging records", deleted)
    return deleted
