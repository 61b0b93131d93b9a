"""
Return-callback reconciliation.

State machine per order reference: PENDING -> CONFIRMED (terminal).

handle_return() never raises: every failure is logged and the buyer is sent
to the confirmation page anyway. The order reference is the idempotency key:
- callbacks for one reference are serialised by an in-process lock
- the order store's compare-and-set decides the winner across processes
- the audit log refuses a second record for the same reference
A confirmed order with no audit record (store write succeeded, audit append
failed) is repaired on the next delivery.
"""
import asyncio
import weakref
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

import structlog

from .audit_log import AuditLogStore
from .errors import PersistenceError, StatusCheckError, UnknownOrderError
from .models import AuditRecord, GatewayConfig, Order, RedirectTarget, ReturnOutcome
from .order_store import OrderStore
from .status_client import StatusClient

logger = structlog.get_logger(__name__)

MAX_REFERENCE_LENGTH = 128


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    def __init__(
        self,
        orders: OrderStore,
        audit_log: AuditLogStore,
        status_client: StatusClient,
        config: GatewayConfig,
        confirmation_url: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.orders = orders
        self.audit_log = audit_log
        self.status_client = status_client
        self.config = config
        self.confirmation_url = confirmation_url
        self.clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, reference: str) -> asyncio.Lock:
        lock = self._locks.get(reference)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[reference] = lock
        return lock

    async def handle_return(
        self,
        order_reference: Optional[str],
        callback_params: Optional[Mapping[str, str]] = None,
    ) -> RedirectTarget:
        log = logger.bind(order_reference=order_reference)
        # Anything else the provider appends to the return URL is untrusted.
        if callback_params:
            log.debug("return_callback_received", params=sorted(callback_params))

        outcome: ReturnOutcome
        try:
            outcome = await self._reconcile(order_reference, log)
        except UnknownOrderError as e:
            log.warning("unknown_order", error=str(e))
            outcome = "unknown_order"
        except StatusCheckError as e:
            log.warning("status_check_failed", error=str(e))
            outcome = "status_unknown"
        except PersistenceError as e:
            log.error("persistence_failed", error=str(e))
            outcome = "persistence_failed"
        except Exception:
            log.exception("reconciliation_failed")
            outcome = "error"

        log.info("return_handled", outcome=outcome)
        return RedirectTarget(location=self.confirmation_url, outcome=outcome)

    def _load(self, reference: str) -> Order:
        order = self.orders.load(reference)
        if order is None:
            raise UnknownOrderError(f"order {reference} not found")
        return order

    async def _reconcile(self, order_reference: Optional[str], log) -> ReturnOutcome:
        reference = (order_reference or "").strip()
        if not reference or len(reference) > MAX_REFERENCE_LENGTH:
            raise UnknownOrderError("missing or malformed order reference")

        async with self._lock_for(reference):
            order = self._load(reference)
            if order.payment_status == "CONFIRMED":
                self._ensure_audit_record(order, log)
                return "already_confirmed"

            result = await self.status_client.fetch_status(self.config.handle)

            if result.status != "paid" or not result.receipt_url:
                log.info("payment_not_confirmed", provider_status=result.status)
                return "pending"

            # The endpoint is handle-scoped; a status echoing another order is not ours.
            if result.order_reference is not None and result.order_reference != reference:
                log.warning("status_reference_mismatch", provider_order_reference=result.order_reference)
                return "status_unknown"

            confirmed_at = self.clock()
            if not self.orders.confirm(reference, result.receipt_url, confirmed_at):
                log.info("confirmation_lost_race")
                self._ensure_audit_record(self._load(reference), log)
                return "already_confirmed"

            self.audit_log.append(
                AuditRecord(order_reference=reference, receipt_url=result.receipt_url, recorded_at=confirmed_at)
            )
            log.info("payment_confirmed", receipt_url=result.receipt_url)
            return "confirmed"

    def _ensure_audit_record(self, order: Order, log) -> None:
        if self.audit_log.get(order.reference) is not None:
            return
        appended = self.audit_log.append(
            AuditRecord(
                order_reference=order.reference,
                receipt_url=order.receipt_url,
                recorded_at=order.confirmed_at,
            )
        )
        if appended:
            log.warning("audit_record_repaired")
