"""
Hosted checkout link builder.

Pure: the same order, handle and return base URL always produce the same
checkout URL and QR reference URL.
"""

import json
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional
from urllib.parse import quote, urlencode

from .errors import InvalidHandleError, InvalidOrderError
from .models import CheckoutLink, CheckoutRequest, LineItem

CENTS = Decimal("0.01")


def format_value(value: Decimal) -> str:
    """Fixed-point, two fractional digits, '.' separator, no grouping."""
    try:
        return format(Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP), "f")
    except InvalidOperation as e:
        raise InvalidOrderError(f"value {value} cannot be expressed in cents") from e


def items_payload(line_items: List[LineItem]) -> str:
    items = [
        {"name": item.name, "quantity": item.quantity, "value": format_value(item.unit_value)}
        for item in line_items
    ]
    return json.dumps(items, separators=(",", ":"))


def return_url(return_base_url: str, order_reference: str) -> str:
    query = urlencode({"order_nsu": order_reference}, quote_via=quote, safe="")
    return f"{return_base_url.rstrip('/')}/payment-return?{query}"


def qr_reference_url(checkout_url: str, qr_base_url: Optional[str]) -> Optional[str]:
    # Presentation only: without a renderer the checkout still proceeds.
    if not qr_base_url:
        return None
    return qr_base_url + quote(checkout_url, safe="")


def build_checkout_link(
    order: CheckoutRequest,
    merchant_handle: str,
    return_base_url: str,
    *,
    checkout_host: str = "checkout.infinitepay.io",
    qr_base_url: Optional[str] = None,
) -> CheckoutLink:
    """
    Build the hosted checkout URL for an order.

    Raises InvalidOrderError when the order has no line items and
    InvalidHandleError when the merchant handle is blank.
    """
    if not order.line_items:
        raise InvalidOrderError(f"order {order.order_reference} has no line items")
    if not merchant_handle or not merchant_handle.strip():
        raise InvalidHandleError("merchant handle is empty")

    params = {
        "items": items_payload(order.line_items),
        "order_nsu": order.order_reference,
        "customer_name": order.customer.name,
        "customer_email": order.customer.email,
        "customer_cellphone": order.customer.phone,
        "redirect_url": return_url(return_base_url, order.order_reference),
    }
    query = urlencode(params, quote_via=quote, safe="")
    checkout_url = f"https://{checkout_host}/{quote(merchant_handle.strip(), safe='')}?{query}"

    return CheckoutLink(
        checkout_url=checkout_url,
        qr_reference_url=qr_reference_url(checkout_url, qr_base_url),
    )
