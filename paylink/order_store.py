"""
Order store adapter.

The order records belong to the shop; this side only reads an order by
reference and flips it to CONFIRMED. `confirm` is a compare-and-set on
payment_status so that, across processes, exactly one writer wins.
"""
from datetime import datetime
from typing import Optional, Protocol

import psycopg

from .db import get_conn
from .errors import PersistenceError
from .models import Order


class OrderStore(Protocol):
    def load(self, reference: str) -> Optional[Order]: ...

    def confirm(self, reference: str, receipt_url: str, confirmed_at: datetime) -> bool:
        """Set PENDING -> CONFIRMED. True only for the writer that made the change."""
        ...


class PostgresOrderStore:
    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def load(self, reference: str) -> Optional[Order]:
        try:
            with get_conn(self.dsn) as conn:
                row = conn.execute(
                    "SELECT reference, payment_status, receipt_url, confirmed_at "
                    "FROM orders WHERE reference = %s",
                    (reference,),
                ).fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to load order {reference}: {e}") from e

        if not row:
            return None
        return Order(**row)

    def confirm(self, reference: str, receipt_url: str, confirmed_at: datetime) -> bool:
        try:
            with get_conn(self.dsn) as conn:
                row = conn.execute(
                    "UPDATE orders SET payment_status = 'CONFIRMED', receipt_url = %s, "
                    "confirmed_at = %s, updated_at = NOW() "
                    "WHERE reference = %s AND payment_status = 'PENDING' "
                    "RETURNING reference",
                    (receipt_url, confirmed_at, reference),
                ).fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to confirm order {reference}: {e}") from e

        return row is not None
