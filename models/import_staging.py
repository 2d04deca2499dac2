from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum as SAEnum, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from models.enums import StagingStatus, TradeSide, enum_values
from models.position import AMOUNT


class StagingRecord(Base):
    """A broker fill held in quarantine until it is released as a transaction."""

    __tablename__ = "import_staging"
    __table_args__ = (
        Index(
            "ix_import_staging_dedup",
            "user_id", "symbol", "transaction_date", "side", "quantity", "price",
        ),
        # freed ids are never handed out again
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    import_batch_id: Mapped[str] = mapped_column(String(64), index=True)
    import_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[StagingStatus] = mapped_column(
        SAEnum(StagingStatus, native_enum=False, length=32, values_callable=enum_values),
        default=StagingStatus.imported,
        nullable=False,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    broker_fill_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    broker_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    symbol: Mapped[str] = mapped_column(String(32))
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    side: Mapped[TradeSide] = mapped_column(
        SAEnum(TradeSide, native_enum=False, length=8, values_callable=enum_values),
    )
    transaction_date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(AMOUNT)
    price: Mapped[Decimal] = mapped_column(AMOUNT)
    trade_value: Mapped[Decimal] = mapped_column(AMOUNT)
    fees: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    strategy: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
