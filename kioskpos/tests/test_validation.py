from decimal import Decimal
from typing import Optional

import pytest
from pydantic import BaseModel, ValidationError

from kioskpos.app.errors import InvalidQuantity
from kioskpos.app.money import line_profit, q_money, to_decimal
from kioskpos.app.tenancy import TenantContext
from kioskpos.app.validation import AdjustmentReason, PaymentMethod, normalize_code


class _M(BaseModel):
    method: Optional[PaymentMethod] = None
    reason: Optional[AdjustmentReason] = None


def test_validation_types_normalize_case():
    m = _M(method=" Cash ", reason="COUNTING_ERROR")
    assert m.method == "cash"
    assert m.reason == "counting_error"


@pytest.mark.parametrize("field,value", [("method", "cheque"), ("reason", "lost")])
def test_validation_types_reject_unknown_codes(field, value):
    with pytest.raises(ValidationError):
        _M(**{field: value})


def test_normalize_code_blank_is_none():
    assert normalize_code("  ") is None
    assert normalize_code(None) is None
    assert normalize_code(" MPesa") == "mpesa"


def test_to_decimal_avoids_float_artifacts():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(None) == Decimal("0")
    with pytest.raises(ValueError):
        to_decimal("abc")


@pytest.mark.parametrize("raw", ["NaN", float("nan"), float("inf"), "-Infinity", Decimal("sNaN")])
def test_to_decimal_rejects_non_finite(raw):
    with pytest.raises(InvalidQuantity):
        to_decimal(raw)


def test_money_rounds_half_up_to_four_places():
    assert q_money("1.00005") == Decimal("1.0001")
    assert line_profit(Decimal("3"), Decimal("15"), Decimal("8")) == Decimal("21")


def test_tenant_context_requires_business():
    with pytest.raises(ValueError):
        TenantContext(business_id=" ")
