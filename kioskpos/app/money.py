from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from .errors import InvalidQuantity

# Mirrors numeric(18,4) columns for money, quantities and profit.
MONEY_Q = Decimal("0.0001")
QTY_Q = Decimal("0.0001")
ZERO = Decimal("0")


def to_decimal(v) -> Decimal:
    if v is None:
        return ZERO
    try:
        # Via str() so a float like 0.1 stays 0.1 instead of its binary expansion.
        d = v if isinstance(v, Decimal) else Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        raise InvalidQuantity(f"not a number: {v!r}")
    if not d.is_finite():
        raise InvalidQuantity(f"not a finite number: {v!r}")
    return d


def q_money(v) -> Decimal:
    return to_decimal(v).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def q_qty(v) -> Decimal:
    return to_decimal(v).quantize(QTY_Q, rounding=ROUND_HALF_UP)


def line_profit(quantity: Decimal, sell_price: Decimal, buy_price: Decimal) -> Decimal:
    """
    Frozen profit for one sale_items row: qty * (sell - buy).

    The only place profit is computed; rows are never recalculated afterwards.
    """
    return q_money(quantity * (sell_price - buy_price))
