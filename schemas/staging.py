from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.enums import StagingStatus, TradeSide


class FillIn(BaseModel):
    symbol: str
    side: TradeSide
    transaction_date: date
    quantity: Decimal = Field(gt=0)
    price: Decimal = Field(gt=0)
    fees: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    broker_fill_id: Optional[str] = None
    broker_order_id: Optional[str] = None
    name: Optional[str] = None
    strategy: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        symbol = (value or "").strip().upper()
        if not symbol:
            raise ValueError("symbol is required")
        return symbol


class StageBatchIn(BaseModel):
    fills: List[FillIn] = Field(min_length=1)


class StageBatchOut(BaseModel):
    batchId: str
    insertedCount: int
    stagingIds: List[int]
    skippedDuplicates: int


class StagingPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strategy: Optional[str] = None
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, gt=0)
    fees: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = None
    notes: Optional[str] = None
    transaction_date: Optional[date] = None
    status: Optional[StagingStatus] = None


class StagingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    import_batch_id: str
    import_timestamp: datetime
    status: StagingStatus
    rejection_reason: Optional[str] = None
    broker_fill_id: Optional[str] = None
    broker_order_id: Optional[str] = None
    symbol: str
    name: Optional[str] = None
    side: TradeSide
    transaction_date: date
    quantity: Decimal
    price: Decimal
    trade_value: Decimal
    fees: Decimal
    currency: str
    strategy: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReleaseIn(BaseModel):
    stagingIds: List[int] = Field(min_length=1)


class RejectedOut(BaseModel):
    id: int
    reason: str


class ReleaseSummaryOut(BaseModel):
    total: int
    success: int
    failed: int


class ReleaseOut(BaseModel):
    message: str
    released: List[int]
    rejected: List[RejectedOut]
    summary: ReleaseSummaryOut


class BrokerSyncIn(BaseModel):
    beginTime: str = Field(min_length=10)
    endTime: str = Field(min_length=10)
