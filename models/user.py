# models/user.py
from sqlalchemy import Enum as SAEnum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.enums import AccountingMode, enum_values


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # link to Supabase auth.users.id (UUID string)
    supabase_user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)

    currency: Mapped[str] = mapped_column(String(3), default="USD")

    # per-owner preference: should transactions aggregate into positions?
    accounting_mode: Mapped[AccountingMode] = mapped_column(
        SAEnum(AccountingMode, native_enum=False, length=16, values_callable=enum_values),
        default=AccountingMode.aggregated,
        nullable=False,
    )

    positions = relationship("Position", back_populates="owner")
    transactions = relationship("Transaction", back_populates="owner")
