from fastapi import APIRouter, Depends, HTTPException, Query
from datetime import date, datetime, time, timezone
from typing import Optional
from ..db import get_conn
from ..deps import get_tenant_context
from ..tenancy import TenantContext
from .. import profit

router = APIRouter(prefix="/reports", tags=["reports"])


def _as_bound(d: date, end: bool) -> datetime:
    # Date-only bounds cover the whole day (UTC).
    if isinstance(d, datetime):
        return d if d.tzinfo else d.replace(tzinfo=timezone.utc)
    return datetime.combine(d, time.max if end else time.min, tzinfo=timezone.utc)


@router.get("/profit")
def profit_report(
    start: date,
    end: date,
    item_ids: Optional[str] = Query(None, description="comma-separated item ids"),
    group_by: Optional[str] = None,
    ctx: TenantContext = Depends(get_tenant_context),
):
    if group_by is not None and group_by not in profit.GROUP_BY:
        raise HTTPException(status_code=400, detail=f"group_by must be one of {', '.join(profit.GROUP_BY)}")
    ids = [x.strip() for x in (item_ids or "").split(",") if x.strip()]
    with get_conn() as conn:
        with conn.cursor() as cur:
            report = profit.get_profit_summary(
                cur, ctx, _as_bound(start, False), _as_bound(end, True), item_ids=ids or None, group_by=group_by
            )
    return report.as_dict()
