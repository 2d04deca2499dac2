from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class PositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    symbol: str
    name: Optional[str] = None
    strategy: str
    total_shares: Decimal
    average_cost: Decimal
    current_market_price: Optional[Decimal] = None
    realized_pnl: Decimal
    currency: str
    is_active: bool
    opened_date: date
    closed_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime


class RealizedPnlOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    position_id: int
    transaction_id: Optional[int] = None
    symbol: str
    sale_date: date
    quantity: Decimal
    average_cost: Decimal
    total_cost: Decimal
    sale_price: Decimal
    total_proceeds: Decimal
    realized_pnl: Decimal
    entry_date: Optional[date] = None
    currency: str
    fees: Decimal
    notes: Optional[str] = None
    created_at: datetime


class PositionHistoryOut(BaseModel):
    position_id: int
    capital_deployed: Decimal
    history: List[RealizedPnlOut]
