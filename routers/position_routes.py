# routers/position_routes.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.position import PositionHistoryOut, PositionOut, RealizedPnlOut
from services.ledger.position_engine import get_position, has_open_position, list_positions
from services.ledger.realized_pnl_service import capital_deployed, list_for_position, list_realized_pnl
from services.supabase_auth import get_current_db_user

router = APIRouter()


@router.get("/positions", response_model=List[PositionOut])
def get_positions(
    is_active: Optional[bool] = Query(None, alias="isActive"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    return list_positions(db, user.id, is_active=is_active)


@router.get("/positions/open")
def get_has_open_position(
    symbol: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    return {"hasPosition": has_open_position(db, user.id, symbol)}


@router.get("/trades/realized-history", response_model=List[RealizedPnlOut])
def get_realized_history(
    symbol: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    return list_realized_pnl(db, user.id, symbol=symbol.strip().upper() if symbol else None)


@router.get("/trades/realized-history/position/{position_id}", response_model=PositionHistoryOut)
def get_position_realized_history(
    position_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    if get_position(db, user.id, position_id) is None:
        raise HTTPException(status_code=404, detail="Position not found")

    return PositionHistoryOut(
        position_id=position_id,
        capital_deployed=capital_deployed(db, user.id, position_id),
        history=[RealizedPnlOut.model_validate(r) for r in list_for_position(db, user.id, position_id)],
    )
