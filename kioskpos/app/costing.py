"""
Cost basis for sale quantity that no live batch covered.

Chain (first positive candidate wins):
  1. the batch being consumed        -> handled inline by the sale processor
  2. most recently received batch    -> even if fully depleted
  3. latest confirmed purchase breakdown for the item
  4. zero                            -> unknown cost, profit recorded as 0
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from .money import ZERO, q_money
from .tenancy import TenantContext


class CostSource(str, Enum):
    LAST_BATCH = "last_batch"
    PURCHASE_BREAKDOWN = "purchase_breakdown"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResolvedCost:
    unit_cost: Decimal
    source: CostSource

    @property
    def is_unknown(self) -> bool:
        return self.source is CostSource.UNKNOWN


UNKNOWN_COST = ResolvedCost(unit_cost=ZERO, source=CostSource.UNKNOWN)


def _positive(v) -> Optional[Decimal]:
    if v is None:
        return None
    d = q_money(v)
    return d if d > 0 else None


def resolve_cost(last_batch_cost=None, breakdown_cost=None) -> ResolvedCost:
    # A zero price is treated as "not known" and falls through to the next source.
    c = _positive(last_batch_cost)
    if c is not None:
        return ResolvedCost(unit_cost=c, source=CostSource.LAST_BATCH)
    c = _positive(breakdown_cost)
    if c is not None:
        return ResolvedCost(unit_cost=c, source=CostSource.PURCHASE_BREAKDOWN)
    return UNKNOWN_COST


def last_batch_cost(cur, ctx: TenantContext, item_id: str) -> Optional[Decimal]:
    cur.execute(
        """
        SELECT buy_price_per_unit
        FROM inventory_batches
        WHERE business_id = %s AND item_id = %s
        ORDER BY received_at DESC, created_at DESC
        LIMIT 1
        """,
        (ctx.business_id, item_id),
    )
    row = cur.fetchone()
    return row["buy_price_per_unit"] if row else None


def latest_breakdown_cost(cur, ctx: TenantContext, item_id: str) -> Optional[Decimal]:
    cur.execute(
        """
        SELECT pb.buy_price_per_unit
        FROM purchase_breakdowns pb
        JOIN purchase_items pi ON pi.id = pb.purchase_item_id
        JOIN purchases p ON p.id = pi.purchase_id
        WHERE p.business_id = %s AND pb.item_id = %s
        ORDER BY pb.confirmed_at DESC
        LIMIT 1
        """,
        (ctx.business_id, item_id),
    )
    row = cur.fetchone()
    return row["buy_price_per_unit"] if row else None


def lookup_unit_cost(cur, ctx: TenantContext, item_id: str) -> ResolvedCost:
    """Read-only: runs the two tenant-scoped lookups lazily, then the chain."""
    resolved = resolve_cost(last_batch_cost(cur, ctx, item_id), None)
    if not resolved.is_unknown:
        return resolved
    return resolve_cost(None, latest_breakdown_cost(cur, ctx, item_id))
