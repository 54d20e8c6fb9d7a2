from fastapi import APIRouter, Depends
from pydantic import BaseModel
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from ..db import get_conn
from ..deps import get_tenant_context
from ..tenancy import TenantContext
from ..validation import PaymentMethod
from .. import sales_processor

router = APIRouter(prefix="/sales", tags=["sales"])


class SaleLineIn(BaseModel):
    item_id: UUID
    quantity: Decimal
    sell_price: Decimal


class CustomerIn(BaseModel):
    name: str
    phone: Optional[str] = None


class SaleIn(BaseModel):
    lines: List[SaleLineIn]
    # Optional here so a missing method reaches the ledger and gets its own error.
    payment_method: Optional[PaymentMethod] = None
    shift_id: Optional[str] = None
    customer: Optional[CustomerIn] = None
    cash_received: Optional[Decimal] = None


@router.post("")
def create_sale(data: SaleIn, ctx: TenantContext = Depends(get_tenant_context)):
    customer = None
    if data.customer:
        customer = sales_processor.Customer(name=data.customer.name, phone=data.customer.phone)
    with get_conn() as conn:
        receipt = sales_processor.record_sale(
            conn,
            ctx,
            [l.model_dump() for l in data.lines],
            data.payment_method,
            shift_id=data.shift_id,
            customer=customer,
            cash_received=data.cash_received,
        )
    return {
        "sale_id": receipt.sale_id,
        "total_amount": receipt.total_amount,
        "change": receipt.change,
        "lines": [
            {
                "item_id": a.line.item_id,
                "quantity": a.line.quantity,
                "state": a.state.value,
                "allocations": [
                    {
                        "batch_id": r.batch_id,
                        "quantity": r.quantity,
                        "buy_price_per_unit": r.buy_price,
                        "profit": r.profit,
                        "cost_source": r.cost_source,
                    }
                    for r in a.records
                ],
            }
            for a in receipt.lines
        ],
    }


@router.get("/{sale_id}")
def get_sale(sale_id: str, ctx: TenantContext = Depends(get_tenant_context)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return sales_processor.get_sale(cur, ctx, sale_id)
