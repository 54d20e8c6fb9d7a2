"""
Sale recording with FIFO batch allocation.

One call to `record_sale()` is one database transaction: the sale row, every
sale_items row, every batch decrement, the stock decrements, the credit ledger
entry and the shift cash increment commit together or not at all.

A sale is never rejected for stock reasons. Quantity no live batch covers is
costed through `costing.lookup_unit_cost()` and `items.current_stock` is
decremented by the full quantity even if that takes it below zero.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from . import batches as ledger
from .costing import CostSource, lookup_unit_cost
from .errors import (
    CreditCustomerRequired,
    InvalidPaymentMethod,
    InvalidPrice,
    InvalidQuantity,
    ItemNotFound,
    LedgerError,
    MissingPaymentMethod,
    SaleNotFound,
)
from .logs import json_log
from .money import ZERO, line_profit, q_money, q_qty
from .tenancy import TenantContext
from .validation import PAYMENT_METHODS, normalize_code


class LineState(str, Enum):
    UNALLOCATED = "unallocated"
    PARTIALLY_ALLOCATED = "partially_allocated"
    FULLY_ALLOCATED = "fully_allocated"
    RECORDED = "recorded"
    STOCK_DECREMENTED = "stock_decremented"


@dataclass(frozen=True)
class SaleLine:
    item_id: str
    quantity: Decimal
    sell_price: Decimal


@dataclass(frozen=True)
class Customer:
    name: str
    phone: Optional[str] = None


@dataclass(frozen=True)
class SaleItemRecord:
    item_id: str
    batch_id: Optional[str]
    quantity: Decimal
    sell_price: Decimal
    buy_price: Decimal
    profit: Decimal
    cost_source: str


@dataclass
class LineAllocation:
    line: SaleLine
    remaining: Decimal
    state: LineState = LineState.UNALLOCATED
    records: list[SaleItemRecord] = field(default_factory=list)

    def advance(self) -> None:
        self.state = LineState.FULLY_ALLOCATED if self.remaining <= 0 else LineState.PARTIALLY_ALLOCATED


@dataclass(frozen=True)
class SaleReceipt:
    sale_id: str
    total_amount: Decimal
    change: Decimal
    lines: list[LineAllocation]


def normalize_lines(lines: Iterable) -> list[SaleLine]:
    out: list[SaleLine] = []
    for idx, l in enumerate(lines or [], start=1):
        if isinstance(l, SaleLine):
            item_id, qty_raw, price_raw = l.item_id, l.quantity, l.sell_price
        else:
            item_id, qty_raw, price_raw = l.get("item_id"), l.get("quantity"), l.get("sell_price")
        item_id = str(item_id or "").strip()
        try:
            # Postgres hands ids back in canonical lowercase form.
            item_id = str(uuid.UUID(item_id))
        except ValueError:
            raise ItemNotFound(item_id)
        try:
            qty = q_qty(qty_raw)
            price = q_money(price_raw)
        except ValueError as ex:
            raise InvalidQuantity(f"line {idx}: {ex}")
        if qty <= 0:
            raise InvalidQuantity(f"line {idx}: quantity must be > 0")
        if price < 0:
            raise InvalidPrice(f"line {idx}: sell price must be >= 0")
        out.append(SaleLine(item_id=item_id, quantity=qty, sell_price=price))
    if not out:
        raise InvalidQuantity("sale has no lines")
    return out


def _normalize_payment(payment_method, customer: Optional[Customer]) -> tuple[str, Optional[Customer]]:
    method = normalize_code(payment_method)
    if not method:
        raise MissingPaymentMethod()
    if method not in PAYMENT_METHODS:
        raise InvalidPaymentMethod(f"unsupported payment method: {method}")
    if method != "credit":
        # Customer details are only kept for credit sales.
        return method, None
    name = (customer.name if customer else "") or ""
    if not name.strip():
        raise CreditCustomerRequired()
    phone = (customer.phone or "").strip() or None
    return method, Customer(name=name.strip(), phone=phone)


def _assert_items(cur, ctx: TenantContext, item_ids: list[str]) -> None:
    ids = sorted(set(item_ids))
    cur.execute(
        """
        SELECT id
        FROM items
        WHERE business_id = %s AND id = ANY(%s::uuid[]) AND active = true
        """,
        (ctx.business_id, ids),
    )
    found = {str(r["id"]) for r in (cur.fetchall() or [])}
    for it in ids:
        if it not in found:
            raise ItemNotFound(it)


def allocate_line(cur, ctx: TenantContext, line: SaleLine) -> LineAllocation:
    """
    FIFO allocation for one line; consumes batches but writes no sale rows.

    A batch whose conditional decrement fails was drained by a concurrent sale;
    it is skipped for this line and the enumeration restarts past it.
    """
    alloc = LineAllocation(line=line, remaining=line.quantity)
    skipped: set[str] = set()
    while alloc.remaining > 0:
        lost_race = False
        for b in ledger.available_batches(cur, ctx, line.item_id, alloc.remaining, exclude=skipped):
            if alloc.remaining <= 0:
                break
            take = min(b.quantity_remaining, alloc.remaining)
            if not ledger.consume(cur, ctx, b.id, take):
                skipped.add(b.id)
                lost_race = True
                continue
            alloc.records.append(
                SaleItemRecord(
                    item_id=line.item_id,
                    batch_id=b.id,
                    quantity=take,
                    sell_price=line.sell_price,
                    buy_price=b.buy_price_per_unit,
                    profit=line_profit(take, line.sell_price, b.buy_price_per_unit),
                    cost_source="batch",
                )
            )
            alloc.remaining -= take
            alloc.advance()
        if not lost_race:
            break

    if alloc.remaining > 0:
        cost = lookup_unit_cost(cur, ctx, line.item_id)
        profit = ZERO if cost.source is CostSource.UNKNOWN else line_profit(alloc.remaining, line.sell_price, cost.unit_cost)
        alloc.records.append(
            SaleItemRecord(
                item_id=line.item_id,
                batch_id=None,
                quantity=alloc.remaining,
                sell_price=line.sell_price,
                buy_price=cost.unit_cost,
                profit=profit,
                cost_source=cost.source.value,
            )
        )
        json_log(
            "info",
            "ledger.cost.fallback",
            business_id=ctx.business_id,
            item_id=line.item_id,
            quantity=alloc.remaining,
            cost_source=cost.source.value,
            unit_cost=cost.unit_cost,
        )
        alloc.remaining = ZERO
        alloc.advance()
    return alloc


def _resolve_shift_id(cur, ctx: TenantContext, requested_shift_id=None):
    requested = str(requested_shift_id or "").strip()
    if requested:
        cur.execute(
            """
            SELECT id
            FROM shifts
            WHERE business_id = %s AND id = %s
            LIMIT 1
            """,
            (ctx.business_id, requested),
        )
        row = cur.fetchone()
        if row:
            return row["id"]

    # Fallback to the cashier's current open shift (if any).
    if not ctx.user_id:
        return None
    cur.execute(
        """
        SELECT id
        FROM shifts
        WHERE business_id = %s
          AND user_id = %s
          AND status = 'open'
        ORDER BY started_at DESC
        LIMIT 1
        """,
        (ctx.business_id, ctx.user_id),
    )
    row = cur.fetchone()
    return row["id"] if row else None


def _insert_sale_item(cur, sale_id: str, line_no: int, rec: SaleItemRecord) -> None:
    cur.execute(
        """
        INSERT INTO sale_items
          (id, sale_id, line_no, item_id, inventory_batch_id, quantity_sold,
           sell_price_per_unit, buy_price_per_unit, profit, created_at)
        VALUES
          (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, now())
        """,
        (sale_id, line_no, rec.item_id, rec.batch_id, rec.quantity, rec.sell_price, rec.buy_price, rec.profit),
    )


def _decrement_stock(cur, ctx: TenantContext, item_id: str, quantity: Decimal) -> None:
    cur.execute(
        """
        UPDATE items
        SET current_stock = current_stock - %s
        WHERE business_id = %s AND id = %s
        """,
        (quantity, ctx.business_id, item_id),
    )


def _record_credit(cur, ctx: TenantContext, sale_id: str, amount: Decimal, customer: Customer, now: datetime) -> str:
    cur.execute(
        """
        SELECT id
        FROM credit_accounts
        WHERE business_id = %s
          AND (customer_phone = %s OR (customer_phone IS NULL AND customer_name = %s))
        ORDER BY created_at ASC
        LIMIT 1
        FOR UPDATE
        """,
        (ctx.business_id, customer.phone, customer.name),
    )
    row = cur.fetchone()
    if row:
        account_id = row["id"]
        cur.execute(
            """
            UPDATE credit_accounts
            SET total_credit = total_credit + %s,
                last_transaction_at = %s
            WHERE business_id = %s AND id = %s
            """,
            (amount, now, ctx.business_id, account_id),
        )
    else:
        cur.execute(
            """
            INSERT INTO credit_accounts
              (id, business_id, customer_name, customer_phone, total_credit, last_transaction_at, created_at)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (ctx.business_id, customer.name, customer.phone, amount, now, now),
        )
        account_id = cur.fetchone()["id"]

    cur.execute(
        """
        INSERT INTO credit_transactions
          (id, credit_account_id, sale_id, type, amount, recorded_by, created_at)
        VALUES
          (gen_random_uuid(), %s, %s, 'debt', %s, %s, %s)
        """,
        (account_id, sale_id, amount, ctx.user_id, now),
    )
    return str(account_id)


def record_sale(
    conn,
    ctx: TenantContext,
    lines: Iterable,
    payment_method,
    shift_id=None,
    customer: Optional[Customer] = None,
    cash_received=None,
    sale_date: Optional[datetime] = None,
) -> SaleReceipt:
    if not ctx.user_id:
        raise LedgerError("user_id is required to record a sale")
    sale_lines = normalize_lines(lines)
    method, customer = _normalize_payment(payment_method, customer)
    total = q_money(sum((l.quantity * l.sell_price for l in sale_lines), ZERO))
    now = sale_date or datetime.now(timezone.utc)

    with conn.transaction():
        with conn.cursor() as cur:
            _assert_items(cur, ctx, [l.item_id for l in sale_lines])
            resolved_shift_id = _resolve_shift_id(cur, ctx, shift_id)

            cur.execute(
                """
                INSERT INTO sales
                  (id, business_id, user_id, shift_id, total_amount, payment_method, status,
                   customer_name, customer_phone, sale_date, created_at)
                VALUES
                  (gen_random_uuid(), %s, %s, %s, %s, %s, 'completed', %s, %s, %s, now())
                RETURNING id
                """,
                (
                    ctx.business_id,
                    ctx.user_id,
                    resolved_shift_id,
                    total,
                    method,
                    customer.name if customer else None,
                    customer.phone if customer else None,
                    now,
                ),
            )
            sale_id = str(cur.fetchone()["id"])

            # Batch and item rows are locked in item_id order so two sales over
            # the same items cannot deadlock; rows keep the caller's line order.
            lock_order = sorted(range(len(sale_lines)), key=lambda i: sale_lines[i].item_id)
            allocations = [None] * len(sale_lines)
            for i in lock_order:
                allocations[i] = allocate_line(cur, ctx, sale_lines[i])

            line_no = 0
            for alloc in allocations:
                for rec in alloc.records:
                    line_no += 1
                    _insert_sale_item(cur, sale_id, line_no, rec)
                alloc.state = LineState.RECORDED

            for i in lock_order:
                _decrement_stock(cur, ctx, sale_lines[i].item_id, sale_lines[i].quantity)
                allocations[i].state = LineState.STOCK_DECREMENTED

            if customer is not None:
                _record_credit(cur, ctx, sale_id, total, customer, now)

            if resolved_shift_id and method == "cash":
                cur.execute(
                    """
                    UPDATE shifts
                    SET expected_closing_cash = expected_closing_cash + %s
                    WHERE business_id = %s AND id = %s
                    """,
                    (total, ctx.business_id, resolved_shift_id),
                )

    change = ZERO
    if cash_received is not None:
        change = q_money(q_money(cash_received) - total)

    json_log(
        "info",
        "ledger.sale.recorded",
        business_id=ctx.business_id,
        user_id=ctx.user_id,
        sale_id=sale_id,
        total_amount=total,
        payment_method=method,
        lines=len(sale_lines),
        sale_items=sum(len(a.records) for a in allocations),
    )
    return SaleReceipt(sale_id=sale_id, total_amount=total, change=change, lines=allocations)


def get_sale(cur, ctx: TenantContext, sale_id: str) -> dict:
    cur.execute(
        """
        SELECT id, user_id, shift_id, total_amount, payment_method, status,
               customer_name, customer_phone, sale_date
        FROM sales
        WHERE business_id = %s AND id = %s
        """,
        (ctx.business_id, sale_id),
    )
    sale = cur.fetchone()
    if not sale:
        raise SaleNotFound(sale_id)
    cur.execute(
        """
        SELECT si.id, si.line_no, si.item_id, i.name AS item_name, i.unit_type,
               si.inventory_batch_id, si.quantity_sold, si.sell_price_per_unit,
               si.buy_price_per_unit, si.profit
        FROM sale_items si
        JOIN sales s ON s.id = si.sale_id
        JOIN items i ON i.id = si.item_id
        WHERE s.business_id = %s AND si.sale_id = %s
        ORDER BY si.line_no ASC
        """,
        (ctx.business_id, sale_id),
    )
    return {"sale": sale, "items": cur.fetchall() or []}
