from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Numeric, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

AMOUNT = Numeric(18, 3)


class Position(Base):
    __tablename__ = "positions"
    __table_args__ = (
        # at most one active row per (owner, symbol, strategy); closed rows are kept
        Index(
            "ux_positions_active_owner_symbol_strategy",
            "user_id",
            "symbol",
            "strategy",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    symbol: Mapped[str] = mapped_column(String(32))
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    strategy: Mapped[str] = mapped_column(String(64))

    total_shares: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    average_cost: Mapped[Decimal] = mapped_column(AMOUNT)
    current_market_price: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    realized_pnl: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="USD")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    opened_date: Mapped[date] = mapped_column(Date)
    closed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    owner = relationship("User", back_populates="positions")
    realizations = relationship("RealizedPnlRecord", back_populates="position", order_by="RealizedPnlRecord.id")

    def __repr__(self) -> str:
        return f"<Position {self.symbol}/{self.strategy}: {self.total_shares} @ avg {self.average_cost}>"
