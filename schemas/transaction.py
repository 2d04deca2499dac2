from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.enums import TradeSide


class TransactionCreate(BaseModel):
    symbol: str
    side: TradeSide
    transaction_date: date
    quantity: Decimal = Field(gt=0)
    price: Decimal = Field(gt=0)
    fees: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    notes: Optional[str] = None
    strategy: Optional[str] = None
    name: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        symbol = (value or "").strip().upper()
        if not symbol or len(symbol) > 32:
            raise ValueError("symbol must be 1-32 characters")
        return symbol

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        ccy = (value or "USD").strip().upper()
        if len(ccy) != 3:
            raise ValueError("currency must be a 3-letter code")
        return ccy


class TransactionCorrection(BaseModel):
    """Only fees and notes may change after a transaction is recorded."""

    model_config = ConfigDict(extra="forbid")

    fees: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    symbol: str
    side: TradeSide
    transaction_date: date
    quantity: Decimal
    price: Decimal
    trade_value: Decimal
    fees: Decimal
    currency: str
    notes: Optional[str] = None
    strategy: Optional[str] = None
    position_id: Optional[int] = None
    broker_fill_id: Optional[str] = None
    broker_order_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TransactionSummaryOut(BaseModel):
    total_buys: int
    total_sells: int
    total_buy_value: Decimal
    total_sell_value: Decimal
    total_fees: Decimal
    transaction_count: int
