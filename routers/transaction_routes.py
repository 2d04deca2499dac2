# routers/transaction_routes.py
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import get_db
from models.enums import TradeSide
from models.user import User
from routers.errors import to_http_exception
from schemas.transaction import TransactionCorrection, TransactionCreate, TransactionOut, TransactionSummaryOut
from services.ledger.errors import LedgerError
from services.ledger.transaction_recorder import (
    TransactionEntry,
    delete_transaction,
    get_transaction,
    get_transaction_summary,
    list_transactions,
    record_transaction,
    update_transaction,
)
from services.price_service import YahooPriceService, get_price_service
from services.supabase_auth import get_current_db_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
    prices: YahooPriceService = Depends(get_price_service),
):
    entry = TransactionEntry(
        symbol=payload.symbol,
        side=payload.side,
        transaction_date=payload.transaction_date,
        quantity=payload.quantity,
        price=payload.price,
        fees=payload.fees,
        currency=payload.currency,
        notes=payload.notes,
        strategy=payload.strategy,
        name=payload.name,
    )
    try:
        return record_transaction(
            db,
            user.id,
            entry,
            accounting_mode=user.accounting_mode,
            price_oracle=prices,
        )
    except LedgerError as exc:
        raise to_http_exception(exc)
    except SQLAlchemyError as exc:
        logger.exception("recording transaction failed")
        raise HTTPException(status_code=500, detail=f"Failed to record transaction: {exc}")


@router.get("", response_model=List[TransactionOut])
def get_user_transactions(
    symbol: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    side: Optional[TradeSide] = Query(None),
    strategy: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    return list_transactions(
        db,
        user.id,
        symbol=symbol,
        start_date=start_date,
        end_date=end_date,
        side=side,
        strategy=strategy,
    )


@router.get("/summary", response_model=TransactionSummaryOut)
def get_user_transaction_summary(
    period: Optional[str] = Query(None, description="day | week | month | year"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        return get_transaction_summary(db, user.id, period)
    except LedgerError as exc:
        raise to_http_exception(exc)


@router.get("/{transaction_id}", response_model=TransactionOut)
def get_user_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        return get_transaction(db, user.id, transaction_id)
    except LedgerError as exc:
        raise to_http_exception(exc)


@router.patch("/{transaction_id}", response_model=TransactionOut)
def correct_transaction(
    transaction_id: int,
    payload: TransactionCorrection,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        return update_transaction(
            db,
            user.id,
            transaction_id,
            fees=payload.fees,
            notes=payload.notes,
        )
    except LedgerError as exc:
        raise to_http_exception(exc)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        delete_transaction(db, user.id, transaction_id)
    except LedgerError as exc:
        raise to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
