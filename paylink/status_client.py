"""
Payment status client for the hosted checkout provider.

Implements:
- Bounded retries with exponential backoff on timeouts, transport errors and 5xx
- No retry on a well-formed answer: "unpaid" is terminal, not a failure
- Malformed bodies surface as StatusCheckError (status unknown)
"""
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import InvalidHandleError, StatusCheckError
from .models import PaymentStatusResult

logger = structlog.get_logger(__name__)

STATUS_PATH = "/invoices/public/checkout/payment_check/{handle}"


class ProviderUnavailable(Exception):
    """A 5xx answer; retried like a network failure."""

    def __init__(self, status_code: int):
        super().__init__(f"provider answered HTTP {status_code}")
        self.status_code = status_code


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "status_check_retry",
        attempt=retry_state.attempt_number,
        error=repr(exc),
    )


class StatusClient:
    """
    Read-only client for the provider's payment_check endpoint.

    `transport` lets tests swap the network for an httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        attempts: int = 3,
        backoff_seconds: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    def status_url(self, merchant_handle: str) -> str:
        return self.base_url + STATUS_PATH.format(handle=quote(merchant_handle, safe=""))

    async def _get(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            r = await client.get(url, headers={"Accept": "application/json"})
        if r.status_code >= 500:
            raise ProviderUnavailable(r.status_code)
        return r

    async def fetch_status(self, merchant_handle: str) -> PaymentStatusResult:
        """
        Ask the provider whether the latest checkout for `merchant_handle` is paid.

        Raises:
            InvalidHandleError: blank handle, nothing is sent
            StatusCheckError: unreachable provider, non-2xx or malformed body
        """
        if not merchant_handle or not merchant_handle.strip():
            raise InvalidHandleError("merchant handle is empty")

        url = self.status_url(merchant_handle.strip())
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((httpx.TransportError, ProviderUnavailable)),
                stop=stop_after_attempt(self.attempts),
                wait=wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_seconds * 8),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    response = await self._get(url)
        except (httpx.HTTPError, ProviderUnavailable) as e:
            raise StatusCheckError(f"status check failed: {e!r}") from e

        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> PaymentStatusResult:
        if not response.is_success:
            raise StatusCheckError(f"provider answered HTTP {response.status_code}")
        try:
            body = response.json()
        except ValueError as e:
            raise StatusCheckError("provider answered with a non-JSON body") from e
        if not isinstance(body, dict):
            raise StatusCheckError("provider answered with an unexpected JSON shape")

        fetched_at = datetime.now(timezone.utc)
        order_nsu = body.get("order_nsu")
        order_reference = str(order_nsu) if order_nsu not in (None, "") else None

        if body.get("status") == "paid":
            receipt_url = body.get("receipt_url")
            if not isinstance(receipt_url, str) or not receipt_url:
                raise StatusCheckError("paid status without receipt_url")
            return PaymentStatusResult(
                status="paid",
                receipt_url=receipt_url,
                order_reference=order_reference,
                fetched_at=fetched_at,
            )

        return PaymentStatusResult(status="unpaid", order_reference=order_reference, fetched_at=fetched_at)
