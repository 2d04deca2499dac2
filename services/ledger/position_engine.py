"""
Position accounting: weighted-average cost on buys, realized P&L on sells.

Both entry points work inside the caller's session and never commit. The
caller owns the unit of work, so a transaction row, the position change and
the realized P&L row either all land or none do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from models.position import Position
from models.realized_pnl import RealizedPnlRecord
from services.ledger.errors import InsufficientShares, LedgerValidationError, NoActivePosition
from services.ledger.realized_pnl_service import append_realized_pnl
from utils.common_helpers import ZERO, quantize_amount

logger = logging.getLogger(__name__)


@dataclass
class SellResult:
    position: Position
    realization: RealizedPnlRecord


def _positive(value: Any, field: str) -> Decimal:
    try:
        amount = quantize_amount(value)
    except ValueError as e:
        raise LedgerValidationError(f"{field} must be a number") from e
    if amount <= 0:
        raise LedgerValidationError(f"{field} must be greater than 0")
    return amount


def weighted_average_cost(
    old_total: Decimal,
    old_average: Decimal,
    quantity: Decimal,
    price: Decimal,
) -> Decimal:
    new_total = old_total + quantity
    if new_total <= 0:
        raise LedgerValidationError("resulting share count must be greater than 0")
    return quantize_amount((old_average * old_total + price * quantity) / new_total)


def get_active_position(
    db: Session,
    owner_id: int,
    symbol: str,
    strategy: str,
    *,
    for_update: bool = False,
) -> Optional[Position]:
    query = db.query(Position).filter(
        Position.user_id == owner_id,
        Position.symbol == symbol,
        Position.strategy == strategy,
        Position.is_active.is_(True),
    )
    if for_update:
        # row lock for the read-modify-write; SQLite ignores it
        query = query.with_for_update()
    return query.first()


def _initial_market_price(price_oracle, symbol: str) -> Optional[Decimal]:
    if price_oracle is None:
        return None
    try:
        return price_oracle.get_current_price(symbol)
    except Exception:
        logger.warning("initial price fetch failed for %s; leaving it for the next refresh", symbol, exc_info=True)
        return None


def apply_buy(
    db: Session,
    owner_id: int,
    symbol: str,
    strategy: str,
    quantity: Any,
    price: Any,
    trade_date: date,
    currency: str = "USD",
    name: Optional[str] = None,
    *,
    price_oracle=None,
) -> Position:
    qty = _positive(quantity, "quantity")
    px = _positive(price, "price")

    position = get_active_position(db, owner_id, symbol, strategy, for_update=True)

    if position is None:
        position = Position(
            user_id=owner_id,
            symbol=symbol,
            name=name,
            strategy=strategy,
            total_shares=qty,
            average_cost=px,
            current_market_price=_initial_market_price(price_oracle, symbol),
            realized_pnl=ZERO,
            currency=currency,
            is_active=True,
            opened_date=trade_date,
        )
        db.add(position)
        db.flush()
        logger.info("opened position %s for %s/%s: %s @ %s", position.id, symbol, strategy, qty, px)
        return position

    if position.currency != currency:
        logger.warning(
            "buy of %s in %s added to position %s held in %s",
            symbol, currency, position.id, position.currency,
        )

    old_total = position.total_shares or ZERO
    position.average_cost = weighted_average_cost(old_total, position.average_cost or ZERO, qty, px)
    position.total_shares = quantize_amount(old_total + qty)
    if name and not position.name:
        position.name = name
    db.flush()

    logger.info(
        "position %s +%s @ %s -> %s @ avg %s",
        position.id, qty, px, position.total_shares, position.average_cost,
    )
    return position


def apply_sell(
    db: Session,
    owner_id: int,
    symbol: str,
    strategy: str,
    quantity: Any,
    price: Any,
    trade_date: date,
    fees: Any = ZERO,
    notes: Optional[str] = None,
    *,
    transaction_id: Optional[int] = None,
) -> SellResult:
    qty = _positive(quantity, "quantity")
    px = _positive(price, "price")
    fee_amount = quantize_amount(fees if fees is not None else ZERO)
    if fee_amount < 0:
        raise LedgerValidationError("fees cannot be negative")

    position = get_active_position(db, owner_id, symbol, strategy, for_update=True)
    if position is None:
        raise NoActivePosition(symbol, strategy)

    available = position.total_shares or ZERO
    if qty > available:
        raise InsufficientShares(symbol, available, qty)

    # average cost is left alone on a sell
    cost_basis = quantize_amount(position.average_cost * qty)
    proceeds = quantize_amount(px * qty)
    realized = proceeds - cost_basis

    remaining = quantize_amount(available - qty)
    position.total_shares = remaining
    position.realized_pnl = quantize_amount((position.realized_pnl or ZERO) + realized)
    if remaining == 0:
        position.is_active = False
        position.closed_date = trade_date

    realization = append_realized_pnl(
        db,
        RealizedPnlRecord(
            user_id=owner_id,
            position_id=position.id,
            transaction_id=transaction_id,
            symbol=symbol,
            sale_date=trade_date,
            quantity=qty,
            average_cost=position.average_cost,
            total_cost=cost_basis,
            sale_price=px,
            total_proceeds=proceeds,
            realized_pnl=realized,
            entry_date=position.opened_date,
            currency=position.currency,
            fees=fee_amount,
            notes=notes,
        ),
    )

    logger.info(
        "position %s -%s @ %s realized %s (remaining %s%s)",
        position.id, qty, px, realized, remaining, ", closed" if remaining == 0 else "",
    )
    return SellResult(position=position, realization=realization)


# -----------------------
# Read side
# -----------------------

def get_position(db: Session, owner_id: int, position_id: int) -> Optional[Position]:
    return (
        db.query(Position)
        .filter(Position.id == position_id, Position.user_id == owner_id)
        .first()
    )


def list_positions(db: Session, owner_id: int, *, is_active: Optional[bool] = None) -> List[Position]:
    query = db.query(Position).filter(Position.user_id == owner_id)
    if is_active is not None:
        query = query.filter(Position.is_active.is_(is_active))
    return query.order_by(Position.symbol.asc(), Position.opened_date.asc(), Position.id.asc()).all()


def has_open_position(db: Session, owner_id: int, symbol: str) -> bool:
    return (
        db.query(Position.id)
        .filter(
            Position.user_id == owner_id,
            Position.symbol == symbol.strip().upper(),
            Position.is_active.is_(True),
        )
        .first()
        is not None
    )
