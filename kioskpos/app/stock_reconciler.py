"""
Manual stock corrections and physical counts.

Only `items.current_stock` moves here; batches are left alone, so batch totals
and the stock counter are allowed to drift apart after a correction.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from .errors import InvalidQuantity, InvalidReason, ItemNotFound
from .logs import json_log
from .money import ZERO, q_qty
from .tenancy import TenantContext
from .validation import ADJUSTMENT_REASONS, normalize_code


@dataclass(frozen=True)
class StockAdjustment:
    item_id: str
    system_stock: Decimal
    actual_stock: Decimal
    difference: Decimal
    reason: str
    id: Optional[str] = None

    @property
    def recorded(self) -> bool:
        return self.id is not None


def _reason(v) -> str:
    r = normalize_code(v)
    if r not in ADJUSTMENT_REASONS:
        raise InvalidReason(f"unsupported adjustment reason: {v}")
    return r


def _lock_item_stock(cur, ctx: TenantContext, item_id: str) -> Decimal:
    cur.execute(
        """
        SELECT current_stock
        FROM items
        WHERE business_id = %s AND id = %s
        FOR UPDATE
        """,
        (ctx.business_id, item_id),
    )
    row = cur.fetchone()
    if not row:
        raise ItemNotFound(item_id)
    return q_qty(row["current_stock"])


def _write_count(cur, ctx: TenantContext, item_id: str, system: Decimal, actual: Decimal, reason: str, notes) -> StockAdjustment:
    difference = actual - system
    cur.execute(
        """
        INSERT INTO stock_adjustments
          (id, business_id, item_id, system_stock, actual_stock, difference, reason, notes, adjusted_by, created_at)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, now())
        RETURNING id
        """,
        (ctx.business_id, item_id, system, actual, difference, reason, notes, ctx.user_id),
    )
    adj_id = str(cur.fetchone()["id"])
    cur.execute(
        """
        UPDATE items
        SET current_stock = %s
        WHERE business_id = %s AND id = %s
        """,
        (actual, ctx.business_id, item_id),
    )
    json_log(
        "info",
        "ledger.stock.adjusted",
        business_id=ctx.business_id,
        item_id=item_id,
        system_stock=system,
        actual_stock=actual,
        difference=difference,
        reason=reason,
    )
    return StockAdjustment(
        id=adj_id,
        item_id=item_id,
        system_stock=system,
        actual_stock=actual,
        difference=difference,
        reason=reason,
    )


def adjust_stock(conn, ctx: TenantContext, item_id: str, delta, reason, notes: Optional[str] = None) -> StockAdjustment:
    d = q_qty(delta)
    if d == 0:
        raise InvalidQuantity("delta must be non-zero")
    r = _reason(reason)
    with conn.transaction():
        with conn.cursor() as cur:
            system = _lock_item_stock(cur, ctx, item_id)
            # Manual corrections never push the counter below zero.
            actual = max(ZERO, system + d)
            return _write_count(cur, ctx, item_id, system, actual, r, notes)


def _stock_take_line(cur, ctx: TenantContext, item_id: str, actual_quantity, reason: str, notes) -> StockAdjustment:
    actual = q_qty(actual_quantity)
    if actual < 0:
        raise InvalidQuantity("actual quantity must be >= 0")
    system = _lock_item_stock(cur, ctx, item_id)
    if actual == system:
        return StockAdjustment(item_id=item_id, system_stock=system, actual_stock=actual, difference=ZERO, reason=reason)
    return _write_count(cur, ctx, item_id, system, actual, reason, notes)


def stock_take(conn, ctx: TenantContext, item_id: str, actual_quantity, reason, notes: Optional[str] = None) -> StockAdjustment:
    """Set the counter to a counted quantity; a count that matches writes nothing."""
    r = _reason(reason)
    with conn.transaction():
        with conn.cursor() as cur:
            return _stock_take_line(cur, ctx, item_id, actual_quantity, r, notes)


def stock_take_many(conn, ctx: TenantContext, counts: Iterable[dict]) -> tuple[list[StockAdjustment], int]:
    """
    Apply a full count sheet in one transaction.

    Each entry is `{item_id, actual_quantity, reason, notes?}`. Returns the
    per-item results in input order and how many adjustment rows were written.
    """
    lines = []
    for c in counts or []:
        actual = q_qty(c.get("actual_quantity"))
        if actual < 0:
            raise InvalidQuantity(f"actual quantity must be >= 0 (item {c.get('item_id')})")
        lines.append((str(c.get("item_id") or ""), actual, _reason(c.get("reason")), c.get("notes")))
    if not lines:
        raise InvalidQuantity("stock take has no lines")

    results: list[StockAdjustment] = []
    with conn.transaction():
        with conn.cursor() as cur:
            for item_id, actual, reason, notes in lines:
                results.append(_stock_take_line(cur, ctx, item_id, actual, reason, notes))
    return results, sum(1 for r in results if r.recorded)
