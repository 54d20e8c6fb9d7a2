from fastapi import Header, HTTPException
from typing import Optional
import uuid

from .tenancy import TenantContext


def _uuid_header(raw: Optional[str], name: str) -> str:
    try:
        return str(uuid.UUID(str(raw).strip()))
    except Exception:
        raise HTTPException(status_code=400, detail=f"invalid {name}")


def get_tenant_context(
    x_business_id: Optional[str] = Header(None, alias="X-Business-Id"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> TenantContext:
    # Authentication happens upstream; these headers are trusted but still shape-checked.
    if not (x_business_id or "").strip():
        raise HTTPException(status_code=400, detail="missing business id")
    business_id = _uuid_header(x_business_id, "business id")
    user_id = _uuid_header(x_user_id, "user id") if (x_user_id or "").strip() else None
    return TenantContext(business_id=business_id, user_id=user_id)
