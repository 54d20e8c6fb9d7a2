"""
Inventory batch ledger.

Batches are append-only purchase lots. The only mutation after insert is the
conditional decrement in `consume()`, which is what keeps `quantity_remaining`
inside [0, initial_quantity] when several sales hit the same oldest batch.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Iterator, Optional

from .config import settings
from .errors import InvalidPrice, InvalidQuantity, ItemNotFound
from .logs import json_log
from .money import q_money, q_qty, to_decimal
from .tenancy import TenantContext


@dataclass(frozen=True)
class Batch:
    id: str
    item_id: str
    quantity_remaining: Decimal
    buy_price_per_unit: Decimal
    received_at: datetime
    initial_quantity: Optional[Decimal] = None
    source_breakdown_id: Optional[str] = None

    @classmethod
    def from_row(cls, r: dict) -> "Batch":
        return cls(
            id=str(r["id"]),
            item_id=str(r["item_id"]),
            quantity_remaining=to_decimal(r["quantity_remaining"]),
            buy_price_per_unit=to_decimal(r["buy_price_per_unit"]),
            received_at=r["received_at"],
            initial_quantity=(to_decimal(r["initial_quantity"]) if r.get("initial_quantity") is not None else None),
            source_breakdown_id=(str(r["source_breakdown_id"]) if r.get("source_breakdown_id") else None),
        )


def _fetch_fifo_page(cur, ctx: TenantContext, item_id: str, after: Optional[tuple], limit: int) -> list[dict]:
    if after is None:
        cur.execute(
            """
            SELECT id, item_id, quantity_remaining, buy_price_per_unit, received_at
            FROM inventory_batches
            WHERE business_id = %s
              AND item_id = %s
              AND quantity_remaining > 0
            ORDER BY received_at ASC, id ASC
            LIMIT %s
            """,
            (ctx.business_id, item_id, limit),
        )
    else:
        # Keyset continuation on (received_at, id) so pages never overlap.
        cur.execute(
            """
            SELECT id, item_id, quantity_remaining, buy_price_per_unit, received_at
            FROM inventory_batches
            WHERE business_id = %s
              AND item_id = %s
              AND quantity_remaining > 0
              AND (received_at, id) > (%s, %s)
            ORDER BY received_at ASC, id ASC
            LIMIT %s
            """,
            (ctx.business_id, item_id, after[0], after[1], limit),
        )
    return cur.fetchall() or []


def available_batches(
    cur,
    ctx: TenantContext,
    item_id: str,
    quantity_needed: Decimal,
    page_size: Optional[int] = None,
    exclude: Iterable[str] = (),
) -> Iterator[Batch]:
    """
    Yield live batches oldest-first until the offered quantity covers `quantity_needed`.

    Batches in `exclude` are skipped and do not count towards the covered
    quantity. Pages are fully fetched before anything is yielded, so the caller
    may reuse the same cursor for `consume()` between iterations.
    """
    needed = to_decimal(quantity_needed)
    if needed <= 0:
        return
    skip = {str(x) for x in exclude}
    limit = page_size or settings.batch_page_size
    offered = Decimal("0")
    after = None
    while offered < needed:
        rows = _fetch_fifo_page(cur, ctx, item_id, after, limit)
        for r in rows:
            if str(r["id"]) in skip:
                continue
            b = Batch.from_row(r)
            offered += b.quantity_remaining
            yield b
            if offered >= needed:
                return
        if len(rows) < limit:
            return
        last = rows[-1]
        after = (last["received_at"], last["id"])


def consume(cur, ctx: TenantContext, batch_id: str, quantity: Decimal) -> bool:
    """
    Atomically take `quantity` from a batch.

    Returns False when the batch no longer holds that much (another sale got
    there first). That is not a sale failure: the allocator moves on.
    """
    qty = q_qty(quantity)
    if qty <= 0:
        raise InvalidQuantity("consume quantity must be > 0")
    cur.execute(
        """
        UPDATE inventory_batches
        SET quantity_remaining = quantity_remaining - %s
        WHERE business_id = %s
          AND id = %s
          AND quantity_remaining >= %s
        RETURNING id, quantity_remaining
        """,
        (qty, ctx.business_id, batch_id, qty),
    )
    row = cur.fetchone()
    if not row:
        json_log("warning", "ledger.batch.exhausted", business_id=ctx.business_id, batch_id=batch_id, quantity=qty)
        return False
    return True


def assert_item(cur, ctx: TenantContext, item_id: str) -> None:
    cur.execute(
        "SELECT id FROM items WHERE business_id = %s AND id = %s",
        (ctx.business_id, item_id),
    )
    if not cur.fetchone():
        raise ItemNotFound(item_id)


def create_batch(
    cur,
    ctx: TenantContext,
    item_id: str,
    quantity,
    buy_price_per_unit,
    received_at: Optional[datetime] = None,
    source_breakdown_id: Optional[str] = None,
) -> str:
    qty = q_qty(quantity)
    if qty <= 0:
        raise InvalidQuantity("batch quantity must be > 0")
    price = q_money(buy_price_per_unit)
    if price < 0:
        raise InvalidPrice("buy_price_per_unit must be >= 0")
    assert_item(cur, ctx, item_id)

    cur.execute(
        """
        INSERT INTO inventory_batches
          (id, business_id, item_id, source_breakdown_id, initial_quantity, quantity_remaining,
           buy_price_per_unit, received_at, created_at)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, now())
        RETURNING id
        """,
        (
            ctx.business_id,
            item_id,
            source_breakdown_id,
            qty,
            qty,
            price,
            received_at or datetime.now(timezone.utc),
        ),
    )
    batch_id = str(cur.fetchone()["id"])
    json_log(
        "info",
        "ledger.batch.created",
        business_id=ctx.business_id,
        item_id=item_id,
        batch_id=batch_id,
        quantity=qty,
        buy_price_per_unit=price,
    )
    return batch_id


def list_batches(cur, ctx: TenantContext, item_id: str, include_depleted: bool = False) -> list[Batch]:
    sql = """
        SELECT id, item_id, initial_quantity, quantity_remaining, buy_price_per_unit,
               received_at, source_breakdown_id
        FROM inventory_batches
        WHERE business_id = %s
          AND item_id = %s
    """
    if not include_depleted:
        sql += " AND quantity_remaining > 0"
    sql += " ORDER BY received_at ASC, id ASC"
    cur.execute(sql, (ctx.business_id, item_id))
    return [Batch.from_row(r) for r in (cur.fetchall() or [])]
