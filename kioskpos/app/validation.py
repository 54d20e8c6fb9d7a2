from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# Canonical codes mirror the CHECK constraints in `kioskpos/db/migrations/001_init.sql`.
PAYMENT_METHODS = ("cash", "mpesa", "credit", "split")
ADJUSTMENT_REASONS = ("spoilage", "theft", "damage", "counting_error", "other")

PaymentMethod = Annotated[Literal["cash", "mpesa", "credit", "split"], BeforeValidator(_to_lower_str)]
AdjustmentReason = Annotated[
    Literal["spoilage", "theft", "damage", "counting_error", "other"],
    BeforeValidator(_to_lower_str),
]


def normalize_code(v) -> str | None:
    s = _to_lower_str(v)
    return s or None
