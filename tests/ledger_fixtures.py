import os
import unittest
from datetime import date
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")

import models  # noqa: E402,F401
from database import Base, SessionLocal, engine  # noqa: E402
from models.enums import AccountingMode, TradeSide  # noqa: E402
from models.user import User  # noqa: E402
from services.imports.staging_service import FillRecord  # noqa: E402


class StubPrices:
    def __init__(self, price=None):
        self.price = price
        self.calls = []

    def get_current_price(self, symbol):
        self.calls.append(symbol)
        return self.price


def make_user(db, name: str, accounting_mode=AccountingMode.aggregated) -> User:
    user = User(
        supabase_user_id=f"sb-{name}",
        email=f"{name}@example.com",
        accounting_mode=accounting_mode,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def fill(symbol="AAPL", side=TradeSide.buy, qty="10", price="100", **kwargs) -> FillRecord:
    kwargs.setdefault("transaction_date", date(2024, 1, 2))
    return FillRecord(
        symbol=symbol,
        side=side,
        quantity=Decimal(qty),
        price=Decimal(price),
        **kwargs,
    )


class LedgerTestCase(unittest.TestCase):
    accounting_mode = AccountingMode.aggregated

    def setUp(self):
        Base.metadata.create_all(bind=engine)
        self.db = SessionLocal()
        self.user = make_user(self.db, "owner", self.accounting_mode)
        self.owner_id = self.user.id

    def tearDown(self):
        self.db.rollback()
        self.db.close()
        Base.metadata.drop_all(bind=engine)
