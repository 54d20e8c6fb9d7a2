from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from ..db import get_conn
from ..deps import get_tenant_context
from ..tenancy import TenantContext
from ..validation import AdjustmentReason
from .. import batches, purchasing, stock_reconciler

router = APIRouter(prefix="/inventory", tags=["inventory"])


class BatchIn(BaseModel):
    item_id: UUID
    quantity: Decimal
    buy_price_per_unit: Decimal
    received_at: Optional[datetime] = None


class StockAdjustIn(BaseModel):
    item_id: UUID
    delta: Decimal
    reason: AdjustmentReason
    notes: Optional[str] = None


class StockCountLineIn(BaseModel):
    item_id: UUID
    actual_quantity: Decimal
    reason: AdjustmentReason = "counting_error"
    notes: Optional[str] = None


class StockTakeIn(BaseModel):
    lines: List[StockCountLineIn]


def _adjustment_out(a: stock_reconciler.StockAdjustment) -> dict:
    return {
        "id": a.id,
        "item_id": a.item_id,
        "system_stock": a.system_stock,
        "actual_stock": a.actual_stock,
        "difference": a.difference,
        "reason": a.reason,
        "recorded": a.recorded,
    }


@router.post("/batches")
def create_batch(data: BatchIn, ctx: TenantContext = Depends(get_tenant_context)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                batch_id = batches.create_batch(
                    cur, ctx, str(data.item_id), data.quantity, data.buy_price_per_unit, received_at=data.received_at
                )
    return {"id": batch_id}


@router.get("/batches")
def list_batches(item_id: UUID, include_depleted: bool = False, ctx: TenantContext = Depends(get_tenant_context)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            rows = batches.list_batches(cur, ctx, str(item_id), include_depleted=include_depleted)
    return {
        "batches": [
            {
                "id": b.id,
                "item_id": b.item_id,
                "initial_quantity": b.initial_quantity,
                "quantity_remaining": b.quantity_remaining,
                "buy_price_per_unit": b.buy_price_per_unit,
                "received_at": b.received_at,
                "source_breakdown_id": b.source_breakdown_id,
            }
            for b in rows
        ]
    }


@router.post("/restock")
def restock(data: BatchIn, ctx: TenantContext = Depends(get_tenant_context)):
    with get_conn() as conn:
        batch_id = purchasing.restock_item(
            conn, ctx, str(data.item_id), data.quantity, data.buy_price_per_unit, received_at=data.received_at
        )
    return {"batch_id": batch_id}


@router.post("/adjust")
def adjust(data: StockAdjustIn, ctx: TenantContext = Depends(get_tenant_context)):
    with get_conn() as conn:
        adj = stock_reconciler.adjust_stock(conn, ctx, str(data.item_id), data.delta, data.reason, notes=data.notes)
    return _adjustment_out(adj)


@router.post("/stock-take")
def stock_take(data: StockTakeIn, ctx: TenantContext = Depends(get_tenant_context)):
    if not data.lines:
        raise HTTPException(status_code=400, detail="lines is required")
    with get_conn() as conn:
        results, written = stock_reconciler.stock_take_many(conn, ctx, [l.model_dump() for l in data.lines])
    return {"adjustments": written, "lines": [_adjustment_out(r) for r in results]}
