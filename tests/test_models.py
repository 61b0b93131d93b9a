"""
Tests for `paylink/models.py` invariants.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from conftest import FIXED_NOW
from paylink.models import AuditRecord, LineItem, Order


def test_confirmed_order_requires_receipt_and_time() -> None:
    with pytest.raises(ValidationError):
        Order(reference="ORD-1", payment_status="CONFIRMED")
    with pytest.raises(ValidationError):
        Order(reference="ORD-1", payment_status="CONFIRMED", receipt_url="https://r/1")


def test_pending_order_carries_no_confirmation_data() -> None:
    with pytest.raises(ValidationError):
        Order(reference="ORD-1", receipt_url="https://r/1", confirmed_at=FIXED_NOW)


def test_unknown_payment_status_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Order(reference="ORD-1", payment_status="REFUNDED")


def test_audit_record_is_immutable() -> None:
    record = AuditRecord(order_reference="ORD-1", receipt_url="https://r/1", recorded_at=FIXED_NOW)
    with pytest.raises(ValidationError):
        record.receipt_url = "https://r/2"


@pytest.mark.parametrize("fields", [{"quantity": 0}, {"unit_value": Decimal("-0.01")}, {"name": ""}])
def test_line_item_bounds(fields) -> None:
    base = {"name": "Widget", "quantity": 1, "unit_value": Decimal("1.00")}
    with pytest.raises(ValidationError):
        LineItem(**{**base, **fields})
