from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.position import AMOUNT


class RealizedPnlRecord(Base):
    """One row per sell that reduced a position. Append-only."""

    __tablename__ = "realized_pnl_history"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    position_id: Mapped[int] = mapped_column(ForeignKey("positions.id"), index=True)
    # historical imports may not carry the link
    transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, index=True
    )

    symbol: Mapped[str] = mapped_column(String(32))
    sale_date: Mapped[date] = mapped_column(Date)
    quantity: Mapped[Decimal] = mapped_column(AMOUNT)
    average_cost: Mapped[Decimal] = mapped_column(AMOUNT)
    total_cost: Mapped[Decimal] = mapped_column(AMOUNT)
    sale_price: Mapped[Decimal] = mapped_column(AMOUNT)
    total_proceeds: Mapped[Decimal] = mapped_column(AMOUNT)
    realized_pnl: Mapped[Decimal] = mapped_column(AMOUNT)
    entry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    fees: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    position = relationship("Position", back_populates="realizations")
