"""
Transaction recording: the only way trade events enter the ledger.

`write_transaction` is the shared core used both by manual entry
(`record_transaction`) and by the staging release pipeline. It inserts the
transaction and, when the owner aggregates positions, applies the buy/sell to
the position engine inside the same session, without committing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models.enums import AccountingMode, TradeSide
from models.transaction import Transaction
from services.ledger.errors import LedgerValidationError, RecordNotFound, TransactionLocked
from services.ledger.position_engine import apply_buy, apply_sell
from services.ledger.realized_pnl_service import mirror_transaction_correction
from utils.common_helpers import ZERO, normalize_currency, normalize_symbol, quantize_amount

logger = logging.getLogger(__name__)

SUMMARY_PERIODS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


@dataclass(frozen=True)
class TransactionEntry:
    symbol: str
    side: TradeSide
    transaction_date: date
    quantity: Decimal
    price: Decimal
    fees: Decimal = ZERO
    currency: str = "USD"
    notes: Optional[str] = None
    strategy: Optional[str] = None
    name: Optional[str] = None
    broker_fill_id: Optional[str] = None
    broker_order_id: Optional[str] = None


def _amount(value: Any, field: str) -> Decimal:
    try:
        return quantize_amount(value)
    except ValueError as e:
        raise LedgerValidationError(f"{field} must be a number") from e


def validate_entry(entry: TransactionEntry, accounting_mode: AccountingMode) -> TransactionEntry:
    """Normalize an entry, or raise LedgerValidationError before anything is written."""
    try:
        symbol = normalize_symbol(entry.symbol)
        currency = normalize_currency(entry.currency)
    except ValueError as e:
        raise LedgerValidationError(str(e)) from e

    try:
        side = TradeSide(entry.side)
    except ValueError as e:
        raise LedgerValidationError(f"side must be one of: buy, sell (got {entry.side!r})") from e

    if not isinstance(entry.transaction_date, date):
        raise LedgerValidationError("transaction_date is required")

    quantity = _amount(entry.quantity, "quantity")
    price = _amount(entry.price, "price")
    fees = _amount(entry.fees if entry.fees is not None else ZERO, "fees")
    if quantity <= 0:
        raise LedgerValidationError("quantity must be greater than 0")
    if price <= 0:
        raise LedgerValidationError("price must be greater than 0")
    if fees < 0:
        raise LedgerValidationError("fees cannot be negative")

    strategy = (entry.strategy or "").strip() or None
    if accounting_mode == AccountingMode.aggregated and strategy is None:
        raise LedgerValidationError("strategy is required")

    return replace(
        entry,
        symbol=symbol,
        side=side,
        currency=currency,
        quantity=quantity,
        price=price,
        fees=fees,
        strategy=strategy,
    )


def write_transaction(
    db: Session,
    owner_id: int,
    entry: TransactionEntry,
    *,
    accounting_mode: AccountingMode,
    price_oracle=None,
) -> Transaction:
    """Insert + ledger effect in the caller's unit of work. Expects a validated entry."""
    txn = Transaction(
        user_id=owner_id,
        symbol=entry.symbol,
        side=entry.side,
        transaction_date=entry.transaction_date,
        quantity=entry.quantity,
        price=entry.price,
        trade_value=quantize_amount(entry.quantity * entry.price),
        fees=entry.fees,
        currency=entry.currency,
        notes=entry.notes,
        strategy=entry.strategy,
        broker_fill_id=entry.broker_fill_id,
        broker_order_id=entry.broker_order_id,
    )
    db.add(txn)
    db.flush()

    if accounting_mode != AccountingMode.aggregated:
        return txn

    if entry.side == TradeSide.buy:
        position = apply_buy(
            db,
            owner_id,
            entry.symbol,
            entry.strategy,
            entry.quantity,
            entry.price,
            entry.transaction_date,
            entry.currency,
            entry.name,
            price_oracle=price_oracle,
        )
    else:
        position = apply_sell(
            db,
            owner_id,
            entry.symbol,
            entry.strategy,
            entry.quantity,
            entry.price,
            entry.transaction_date,
            entry.fees,
            entry.notes,
            transaction_id=txn.id,
        ).position

    txn.position_id = position.id
    db.flush()
    return txn


def record_transaction(
    db: Session,
    owner_id: int,
    entry: TransactionEntry,
    *,
    accounting_mode: AccountingMode,
    price_oracle=None,
) -> Transaction:
    entry = validate_entry(entry, accounting_mode)
    try:
        txn = write_transaction(
            db, owner_id, entry, accounting_mode=accounting_mode, price_oracle=price_oracle
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("transaction for %s %s rolled back", entry.side.value, entry.symbol)
        raise

    db.refresh(txn)
    logger.info("recorded transaction %s (%s %s x %s)", txn.id, txn.side.value, txn.symbol, txn.quantity)
    return txn


def get_transaction(db: Session, owner_id: int, transaction_id: int) -> Transaction:
    txn = (
        db.query(Transaction)
        .filter(Transaction.id == transaction_id, Transaction.user_id == owner_id)
        .first()
    )
    if txn is None:
        raise RecordNotFound("Transaction not found")
    return txn


def list_transactions(
    db: Session,
    owner_id: int,
    *,
    symbol: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    side: Optional[TradeSide] = None,
    strategy: Optional[str] = None,
) -> List[Transaction]:
    query = db.query(Transaction).filter(Transaction.user_id == owner_id)
    if symbol:
        query = query.filter(Transaction.symbol == symbol.strip().upper())
    if start_date:
        query = query.filter(Transaction.transaction_date >= start_date)
    if end_date:
        query = query.filter(Transaction.transaction_date <= end_date)
    if side:
        query = query.filter(Transaction.side == side)
    if strategy:
        query = query.filter(Transaction.strategy == strategy)
    return query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).all()


def update_transaction(
    db: Session,
    owner_id: int,
    transaction_id: int,
    *,
    fees: Any = None,
    notes: Optional[str] = None,
) -> Transaction:
    """Fee/annotation correction. Never recomputes positions."""
    txn = get_transaction(db, owner_id, transaction_id)

    fee_amount: Optional[Decimal] = None
    if fees is not None:
        fee_amount = _amount(fees, "fees")
        if fee_amount < 0:
            raise LedgerValidationError("fees cannot be negative")
        txn.fees = fee_amount
    if notes is not None:
        txn.notes = notes

    mirrored = mirror_transaction_correction(db, txn.id, fees=fee_amount, notes=notes)
    db.commit()
    db.refresh(txn)
    if mirrored is not None:
        logger.info("transaction %s correction mirrored to realization %s", txn.id, mirrored.id)
    return txn


def delete_transaction(db: Session, owner_id: int, transaction_id: int) -> None:
    txn = get_transaction(db, owner_id, transaction_id)
    if txn.position_id is not None:
        raise TransactionLocked(
            "Transaction has already been applied to a position and cannot be deleted"
        )
    db.delete(txn)
    db.commit()
    logger.info("deleted record-only transaction %s", transaction_id)


def get_transaction_summary(
    db: Session,
    owner_id: int,
    period: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    query = db.query(Transaction).filter(Transaction.user_id == owner_id)
    if period is not None:
        if period not in SUMMARY_PERIODS:
            raise LedgerValidationError(f"period must be one of: {', '.join(SUMMARY_PERIODS)}")
        since = (today or date.today()) - SUMMARY_PERIODS[period]
        query = query.filter(Transaction.transaction_date >= since)

    summary: Dict[str, Any] = {
        "total_buys": 0,
        "total_sells": 0,
        "total_buy_value": ZERO,
        "total_sell_value": ZERO,
        "total_fees": ZERO,
        "transaction_count": 0,
    }
    for txn in query.all():
        summary["transaction_count"] += 1
        if txn.side == TradeSide.buy:
            summary["total_buys"] += 1
            summary["total_buy_value"] += txn.trade_value or ZERO
        else:
            summary["total_sells"] += 1
            summary["total_sell_value"] += txn.trade_value or ZERO
        summary["total_fees"] += txn.fees or ZERO

    for key in ("total_buy_value", "total_sell_value", "total_fees"):
        summary[key] = quantize_amount(summary[key])
    return summary
