from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

# shares, prices and money all share one stored precision
AMOUNT_QUANTUM = Decimal("0.001")
ZERO = Decimal("0")


def to_decimal(x: Any) -> Decimal:
    """Strict conversion; floats go through str() so 0.1 stays 0.1."""
    if isinstance(x, Decimal):
        return x
    if x is None or isinstance(x, bool):
        raise ValueError(f"not a number: {x!r}")
    try:
        return Decimal(str(x).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"not a number: {x!r}") from e


def safe_decimal(x: Any) -> Optional[Decimal]:
    try:
        if x is None:
            return None
        d = to_decimal(x)
        return d if d.is_finite() else None
    except ValueError:
        return None


def quantize_amount(x: Any) -> Decimal:
    d = to_decimal(x)
    if not d.is_finite():
        raise ValueError(f"not a finite number: {x!r}")
    return d.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def normalize_symbol(value: Optional[str]) -> str:
    symbol = (value or "").strip().upper()
    if not symbol or len(symbol) > 32:
        raise ValueError("symbol must be 1-32 characters")
    return symbol


def normalize_currency(value: Optional[str], default: str = "USD") -> str:
    ccy = (value or default).strip().upper()
    if len(ccy) != 3 or not ccy.isalpha():
        raise ValueError(f"invalid currency code: {value!r}")
    return ccy
