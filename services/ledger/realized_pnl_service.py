from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.realized_pnl import RealizedPnlRecord
from utils.common_helpers import ZERO, quantize_amount


def append_realized_pnl(db: Session, record: RealizedPnlRecord) -> RealizedPnlRecord:
    db.add(record)
    db.flush()
    return record


def list_realized_pnl(db: Session, owner_id: int, *, symbol: Optional[str] = None) -> List[RealizedPnlRecord]:
    query = db.query(RealizedPnlRecord).filter(RealizedPnlRecord.user_id == owner_id)
    if symbol:
        query = query.filter(RealizedPnlRecord.symbol == symbol)
    return query.order_by(RealizedPnlRecord.sale_date.desc(), RealizedPnlRecord.id.desc()).all()


def list_for_position(db: Session, owner_id: int, position_id: int) -> List[RealizedPnlRecord]:
    return (
        db.query(RealizedPnlRecord)
        .filter(RealizedPnlRecord.user_id == owner_id, RealizedPnlRecord.position_id == position_id)
        .order_by(RealizedPnlRecord.sale_date.asc(), RealizedPnlRecord.id.asc())
        .all()
    )


def capital_deployed(db: Session, owner_id: int, position_id: int) -> Decimal:
    """Sum of cost basis released by sells of this position, active or not."""
    total = (
        db.query(func.coalesce(func.sum(RealizedPnlRecord.total_cost), 0))
        .filter(RealizedPnlRecord.user_id == owner_id, RealizedPnlRecord.position_id == position_id)
        .scalar()
    )
    return quantize_amount(total if total is not None else ZERO)


def mirror_transaction_correction(
    db: Session,
    transaction_id: int,
    *,
    fees: Optional[Decimal] = None,
    notes: Optional[str] = None,
) -> Optional[RealizedPnlRecord]:
    record = (
        db.query(RealizedPnlRecord)
        .filter(RealizedPnlRecord.transaction_id == transaction_id)
        .first()
    )
    if record is None:
        return None
    if fees is not None:
        record.fees = fees
    if notes is not None:
        record.notes = notes
    return record
