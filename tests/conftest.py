"""
Pytest fixtures and in-memory doubles for the order store, audit log and
payment status client.
"""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

import pytest

from paylink.errors import PersistenceError
from paylink.models import AuditRecord, GatewayConfig, Order, PaymentStatusResult
from paylink.reconciliation import ReconciliationEngine

CONFIRMATION_URL = "https://shop.example/pedido-confirmado"
FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryOrderStore:
    def __init__(self, *orders: Order):
        self._orders: Dict[str, Order] = {o.reference: o for o in orders}
        self.confirm_calls = 0
        self.successful_confirms = 0

    def load(self, reference: str) -> Optional[Order]:
        return self._orders.get(reference)

    def confirm(self, reference: str, receipt_url: str, confirmed_at: datetime) -> bool:
        self.confirm_calls += 1
        order = self._orders.get(reference)
        if order is None or order.payment_status != "PENDING":
            return False
        self._orders[reference] = Order(
            reference=reference,
            payment_status="CONFIRMED",
            receipt_url=receipt_url,
            confirmed_at=confirmed_at,
        )
        self.successful_confirms += 1
        return True


class InMemoryAuditLog:
    def __init__(self):
        self.records: List[AuditRecord] = []
        self.fail_appends = 0

    def append(self, record: AuditRecord) -> bool:
        if self.fail_appends:
            self.fail_appends -= 1
            raise PersistenceError("audit log unavailable")
        if self.get(record.order_reference) is not None:
            return False
        self.records.append(record)
        return True

    def get(self, order_reference: str) -> Optional[AuditRecord]:
        return next((r for r in self.records if r.order_reference == order_reference), None)

    def list(self, limit: int = 50, offset: int = 0) -> List[AuditRecord]:
        ordered = sorted(enumerate(self.records), key=lambda p: (p[1].recorded_at, p[0]), reverse=True)
        return [r for _, r in ordered][offset:offset + limit]


class FakeStatusClient:
    """Deterministic stand-in: returns `answer`, or raises it when it is an exception."""

    def __init__(self, answer: Union[PaymentStatusResult, Exception]):
        self.answer = answer
        self.calls: List[str] = []

    async def fetch_status(self, merchant_handle: str) -> PaymentStatusResult:
        self.calls.append(merchant_handle)
        # Yield so concurrent callbacks interleave here, like a real HTTP call.
        await asyncio.sleep(0)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


def paid(receipt_url: str = "https://r/1", order_reference: Optional[str] = None) -> PaymentStatusResult:
    return PaymentStatusResult(
        status="paid", receipt_url=receipt_url, order_reference=order_reference, fetched_at=FIXED_NOW
    )


def unpaid() -> PaymentStatusResult:
    return PaymentStatusResult(status="unpaid", fetched_at=FIXED_NOW)


@pytest.fixture
def orders() -> InMemoryOrderStore:
    return InMemoryOrderStore(Order(reference="ORD-1001"), Order(reference="ORD-1002"))


@pytest.fixture
def audit() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(handle="merchant-x", title="InfinitePay", description="Pix, boleto ou cartão")


@pytest.fixture
def make_engine(orders, audit, gateway_config):
    def _make(status_client) -> ReconciliationEngine:
        return ReconciliationEngine(
            orders=orders,
            audit_log=audit,
            status_client=status_client,
            config=gateway_config,
            confirmation_url=CONFIRMATION_URL,
            clock=lambda: FIXED_NOW,
        )

    return _make
