"""
Purchase intake: turning bought goods into costed batches.

A purchase line (e.g. "1 sack of onions") is broken down into sellable stock of
one or more items. Each breakdown becomes a batch, and its price is also the
second-level fallback cost for the item.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from . import batches as ledger
from .errors import InvalidPrice, InvalidPurchase, InvalidQuantity, ItemNotFound, PurchaseNotFound
from .logs import json_log
from .money import ZERO, q_money, q_qty
from .tenancy import TenantContext


@dataclass(frozen=True)
class BreakdownResult:
    breakdown_id: str
    batch_id: str
    purchase_status: str
    wastage_adjustment_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseRecord:
    purchase_id: str
    purchase_item_ids: list[str]
    total_amount: Decimal


def _purchase_lines(items: Iterable) -> list[tuple[str, Optional[str], Decimal]]:
    out = []
    for idx, it in enumerate(items or [], start=1):
        name = str(it.get("item_name") or "").strip()
        if not name:
            raise InvalidPurchase(f"line {idx}: item_name is required")
        amount = q_money(it.get("amount"))
        if amount < 0:
            raise InvalidPrice(f"line {idx}: amount must be >= 0")
        item_id = it.get("item_id") or None
        if item_id is not None:
            try:
                item_id = str(uuid.UUID(str(item_id)))
            except ValueError:
                raise ItemNotFound(item_id)
        out.append((name, item_id, amount))
    if not out:
        raise InvalidPurchase("purchase has no items")
    return out


def create_purchase(
    conn,
    ctx: TenantContext,
    supplier_name: Optional[str],
    items: Iterable,
    purchase_date: Optional[datetime] = None,
) -> PurchaseRecord:
    """
    Record goods bought from a supplier as one pending purchase line per entry.

    Each entry of `items` is `{item_name, amount, item_id?}`; `item_id` links the
    line to a catalog item up front, otherwise it is set when the line is broken
    down. The purchase total is the sum of the line amounts.
    """
    lines = _purchase_lines(items)
    total = q_money(sum((amount for _, _, amount in lines), ZERO))
    supplier = (supplier_name or "").strip() or None

    with conn.transaction():
        with conn.cursor() as cur:
            for _, item_id, _ in lines:
                if item_id:
                    ledger.assert_item(cur, ctx, item_id)
            cur.execute(
                """
                INSERT INTO purchases
                  (id, business_id, recorded_by, supplier_name, purchase_date, total_amount, status, created_at)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s, 'pending', now())
                RETURNING id
                """,
                (ctx.business_id, ctx.user_id, supplier, purchase_date or datetime.now(timezone.utc), total),
            )
            purchase_id = str(cur.fetchone()["id"])
            line_ids = []
            for name, item_id, amount in lines:
                cur.execute(
                    """
                    INSERT INTO purchase_items
                      (id, purchase_id, item_id, item_name_snapshot, amount, status, created_at)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, 'pending', now())
                    RETURNING id
                    """,
                    (purchase_id, item_id, name, amount),
                )
                line_ids.append(str(cur.fetchone()["id"]))

    json_log(
        "info",
        "ledger.purchase.recorded",
        business_id=ctx.business_id,
        purchase_id=purchase_id,
        total_amount=total,
        lines=len(line_ids),
    )
    return PurchaseRecord(purchase_id=purchase_id, purchase_item_ids=line_ids, total_amount=total)


def next_purchase_status(current: str, pending_items: int) -> str:
    if pending_items == 0:
        return "complete"
    if current in ("pending", "partial"):
        return "partial"
    return current


def _increment_stock(cur, ctx: TenantContext, item_id: str, quantity: Decimal) -> None:
    cur.execute(
        """
        UPDATE items
        SET current_stock = current_stock + %s
        WHERE business_id = %s AND id = %s
        """,
        (quantity, ctx.business_id, item_id),
    )


def _record_wastage(cur, ctx: TenantContext, item_id: str, wastage: Decimal, notes: Optional[str]) -> str:
    cur.execute(
        "SELECT current_stock FROM items WHERE business_id = %s AND id = %s FOR UPDATE",
        (ctx.business_id, item_id),
    )
    system = q_qty(cur.fetchone()["current_stock"])
    actual = system - wastage
    cur.execute(
        """
        INSERT INTO stock_adjustments
          (id, business_id, item_id, system_stock, actual_stock, difference, reason, notes, adjusted_by, created_at)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, 'spoilage', %s, %s, now())
        RETURNING id
        """,
        (
            ctx.business_id,
            item_id,
            system,
            actual,
            -wastage,
            f"Wastage from purchase breakdown: {notes}" if notes else "Wastage from purchase breakdown",
            ctx.user_id,
        ),
    )
    adj_id = str(cur.fetchone()["id"])
    cur.execute(
        "UPDATE items SET current_stock = %s WHERE business_id = %s AND id = %s",
        (actual, ctx.business_id, item_id),
    )
    json_log(
        "info",
        "ledger.stock.adjusted",
        business_id=ctx.business_id,
        item_id=item_id,
        system_stock=system,
        actual_stock=actual,
        difference=-wastage,
        reason="spoilage",
    )
    return adj_id


def confirm_breakdown(
    conn,
    ctx: TenantContext,
    purchase_id: str,
    purchase_item_id: str,
    item_id: str,
    usable_quantity,
    buy_price_per_unit,
    wastage_quantity=0,
    notes: Optional[str] = None,
) -> BreakdownResult:
    usable = q_qty(usable_quantity)
    if usable <= 0:
        raise InvalidQuantity("usable_quantity must be > 0")
    wastage = q_qty(wastage_quantity)
    if wastage < 0:
        raise InvalidQuantity("wastage_quantity must be >= 0")
    price = q_money(buy_price_per_unit)
    if price < 0:
        raise InvalidPrice("buy_price_per_unit must be >= 0")

    with conn.transaction():
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, status
                FROM purchases
                WHERE business_id = %s AND id = %s
                FOR UPDATE
                """,
                (ctx.business_id, purchase_id),
            )
            purchase = cur.fetchone()
            if not purchase:
                raise PurchaseNotFound(f"purchase not found: {purchase_id}")
            cur.execute(
                "SELECT id FROM purchase_items WHERE purchase_id = %s AND id = %s",
                (purchase_id, purchase_item_id),
            )
            if not cur.fetchone():
                raise PurchaseNotFound(f"purchase item not found: {purchase_item_id}")
            ledger.assert_item(cur, ctx, item_id)

            cur.execute(
                """
                INSERT INTO purchase_breakdowns
                  (id, purchase_item_id, item_id, usable_quantity, wastage_quantity,
                   buy_price_per_unit, notes, confirmed_by, confirmed_at)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, now())
                RETURNING id
                """,
                (purchase_item_id, item_id, usable, wastage, price, notes, ctx.user_id),
            )
            breakdown_id = str(cur.fetchone()["id"])
            batch_id = ledger.create_batch(cur, ctx, item_id, usable, price, source_breakdown_id=breakdown_id)
            _increment_stock(cur, ctx, item_id, usable)

            wastage_adj_id = None
            if wastage > ZERO:
                wastage_adj_id = _record_wastage(cur, ctx, item_id, wastage, notes)

            cur.execute(
                """
                UPDATE purchase_items
                SET status = 'broken_down', item_id = COALESCE(item_id, %s)
                WHERE purchase_id = %s AND id = %s
                """,
                (item_id, purchase_id, purchase_item_id),
            )
            cur.execute(
                "SELECT COUNT(*) AS n FROM purchase_items WHERE purchase_id = %s AND status = 'pending'",
                (purchase_id,),
            )
            pending = int(cur.fetchone()["n"] or 0)
            status = next_purchase_status(purchase["status"], pending)
            cur.execute(
                "UPDATE purchases SET status = %s WHERE business_id = %s AND id = %s",
                (status, ctx.business_id, purchase_id),
            )

    return BreakdownResult(
        breakdown_id=breakdown_id,
        batch_id=batch_id,
        purchase_status=status,
        wastage_adjustment_id=wastage_adj_id,
    )


def restock_item(
    conn,
    ctx: TenantContext,
    item_id: str,
    quantity,
    buy_price_per_unit,
    received_at: Optional[datetime] = None,
) -> str:
    """Manual stock addition without a purchase record."""
    with conn.transaction():
        with conn.cursor() as cur:
            batch_id = ledger.create_batch(cur, ctx, item_id, quantity, buy_price_per_unit, received_at=received_at)
            _increment_stock(cur, ctx, item_id, q_qty(quantity))
    return batch_id
