from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TenantContext:
    """
    Isolation boundary for every ledger call.

    `business_id` goes into every predicate the ledger issues; `user_id` is
    stamped on rows that record who did what (sales, adjustments, breakdowns).
    """

    business_id: str
    user_id: Optional[str] = None

    def __post_init__(self):
        if not str(self.business_id or "").strip():
            raise ValueError("business_id is required")
