"""
Profit rollups over frozen sale lines.

Read-only. Profit is always the sum of the stored `sale_items.profit` values;
it is never recomputed from current prices.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from .errors import LedgerError
from .money import ZERO, q_money, q_qty, to_decimal
from .tenancy import TenantContext

GROUP_BY = ("item", "parent", "day")


@dataclass
class ProfitLine:
    key: str
    label: Optional[str] = None
    quantity: Decimal = ZERO
    revenue: Decimal = ZERO
    cost: Decimal = ZERO
    profit: Decimal = ZERO
    _sales: set = field(default_factory=set, repr=False)

    @property
    def transactions(self) -> int:
        return len(self._sales)

    @property
    def margin(self) -> Decimal:
        if self.revenue <= 0:
            return ZERO
        return q_money(self.profit * 100 / self.revenue)

    def add(self, r: dict) -> None:
        qty = to_decimal(r["quantity_sold"])
        self.quantity = q_qty(self.quantity + qty)
        self.revenue = q_money(self.revenue + qty * to_decimal(r["sell_price_per_unit"]))
        self.cost = q_money(self.cost + qty * to_decimal(r["buy_price_per_unit"]))
        self.profit = q_money(self.profit + to_decimal(r["profit"]))
        self._sales.add(str(r["sale_id"]))

    def as_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "quantity": self.quantity,
            "revenue": self.revenue,
            "cost": self.cost,
            "profit": self.profit,
            "margin": self.margin,
            "transactions": self.transactions,
        }


@dataclass
class ProfitReport:
    totals: ProfitLine
    groups: list[ProfitLine]
    group_by: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "group_by": self.group_by,
            "totals": self.totals.as_dict(),
            "groups": [g.as_dict() for g in self.groups],
        }


def _group_key(r: dict, group_by: str) -> tuple[str, Optional[str]]:
    if group_by == "item":
        return str(r["item_id"]), r.get("item_name")
    if group_by == "parent":
        return str(r["parent_id"]), r.get("parent_name")
    d = r["sale_date"]
    day = d.date().isoformat() if isinstance(d, datetime) else str(d)[:10]
    return day, day


def rollup(rows: Iterable[dict], group_by: Optional[str] = None) -> ProfitReport:
    if group_by is not None and group_by not in GROUP_BY:
        raise LedgerError(f"unsupported group_by: {group_by}")
    totals = ProfitLine(key="total")
    groups: dict[str, ProfitLine] = {}
    for r in rows:
        totals.add(r)
        if group_by is None:
            continue
        key, label = _group_key(r, group_by)
        g = groups.get(key)
        if g is None:
            g = groups[key] = ProfitLine(key=key, label=label)
        g.add(r)

    if group_by == "day":
        ordered = sorted(groups.values(), key=lambda g: g.key)
    else:
        ordered = sorted(groups.values(), key=lambda g: (-g.profit, g.key))
    return ProfitReport(totals=totals, groups=ordered, group_by=group_by)


def get_profit_summary(
    cur,
    ctx: TenantContext,
    start: datetime,
    end: datetime,
    item_ids: Optional[list[str]] = None,
    group_by: Optional[str] = None,
) -> ProfitReport:
    if group_by is not None and group_by not in GROUP_BY:
        raise LedgerError(f"unsupported group_by: {group_by}")
    if start > end:
        raise LedgerError("start must be <= end")

    sql = """
        SELECT si.sale_id, s.sale_date, si.item_id, i.name AS item_name,
               COALESCE(parent.id, i.id) AS parent_id,
               COALESCE(parent.name, i.name) AS parent_name,
               si.quantity_sold, si.sell_price_per_unit, si.buy_price_per_unit, si.profit
        FROM sale_items si
        JOIN sales s ON s.id = si.sale_id
        JOIN items i ON i.id = si.item_id
        LEFT JOIN items parent ON parent.id = i.parent_item_id
        WHERE s.business_id = %s
          AND s.status = 'completed'
          AND s.sale_date >= %s
          AND s.sale_date <= %s
    """
    params: list = [ctx.business_id, start, end]
    ids = [str(x) for x in (item_ids or []) if str(x).strip()]
    if ids:
        # A parent id selects all of its variants.
        sql += " AND (si.item_id = ANY(%s::uuid[]) OR i.parent_item_id = ANY(%s::uuid[]))"
        params.extend([ids, ids])
    sql += " ORDER BY s.sale_date ASC, si.sale_id ASC, si.line_no ASC"
    cur.execute(sql, params)
    return rollup(cur.fetchall() or [], group_by)
