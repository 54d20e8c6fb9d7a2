from fastapi import APIRouter, Depends
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from ..db import get_conn
from ..deps import get_tenant_context
from ..tenancy import TenantContext
from .. import purchasing

router = APIRouter(prefix="/purchases", tags=["purchases"])


class PurchaseItemIn(BaseModel):
    item_name: str
    amount: Decimal
    item_id: Optional[UUID] = None


class PurchaseIn(BaseModel):
    supplier_name: Optional[str] = None
    purchase_date: Optional[datetime] = None
    items: List[PurchaseItemIn]


class BreakdownIn(BaseModel):
    purchase_item_id: UUID
    item_id: UUID
    usable_quantity: Decimal
    buy_price_per_unit: Decimal
    wastage_quantity: Decimal = Decimal("0")
    notes: Optional[str] = None


@router.post("")
def create_purchase(data: PurchaseIn, ctx: TenantContext = Depends(get_tenant_context)):
    with get_conn() as conn:
        rec = purchasing.create_purchase(
            conn,
            ctx,
            data.supplier_name,
            [i.model_dump() for i in data.items],
            purchase_date=data.purchase_date,
        )
    return {
        "purchase_id": rec.purchase_id,
        "purchase_item_ids": rec.purchase_item_ids,
        "total_amount": rec.total_amount,
    }


@router.post("/{purchase_id}/breakdowns")
def confirm_breakdown(purchase_id: str, data: BreakdownIn, ctx: TenantContext = Depends(get_tenant_context)):
    with get_conn() as conn:
        res = purchasing.confirm_breakdown(
            conn,
            ctx,
            purchase_id,
            str(data.purchase_item_id),
            str(data.item_id),
            data.usable_quantity,
            data.buy_price_per_unit,
            wastage_quantity=data.wastage_quantity,
            notes=data.notes,
        )
    return {
        "breakdown_id": res.breakdown_id,
        "batch_id": res.batch_id,
        "purchase_status": res.purchase_status,
        "wastage_adjustment_id": res.wastage_adjustment_id,
    }
