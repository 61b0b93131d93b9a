"""
Append-only audit log of confirmed payments.

There is deliberately no update or delete here. `append` is insert-if-absent
on the order reference, so a redelivered callback can never add a second
record for the same order.
"""
from typing import List, Optional, Protocol

import psycopg

from .db import get_conn
from .errors import PersistenceError
from .models import AuditRecord

MAX_PAGE_SIZE = 200


class AuditLogStore(Protocol):
    def append(self, record: AuditRecord) -> bool: ...

    def get(self, order_reference: str) -> Optional[AuditRecord]: ...

    def list(self, limit: int = 50, offset: int = 0) -> List[AuditRecord]: ...


def check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValueError("offset must be >= 0")


class PostgresAuditLogStore:
    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn

    def append(self, record: AuditRecord) -> bool:
        try:
            with get_conn(self.dsn) as conn:
                row = conn.execute(
                    "INSERT INTO payment_audit_log(order_reference, receipt_url, recorded_at) "
                    "VALUES (%s, %s, %s) ON CONFLICT (order_reference) DO NOTHING RETURNING id",
                    (record.order_reference, record.receipt_url, record.recorded_at),
                ).fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to append audit record for {record.order_reference}: {e}") from e
        return row is not None

    def get(self, order_reference: str) -> Optional[AuditRecord]:
        try:
            with get_conn(self.dsn) as conn:
                row = conn.execute(
                    "SELECT order_reference, receipt_url, recorded_at "
                    "FROM payment_audit_log WHERE order_reference = %s",
                    (order_reference,),
                ).fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to read audit record for {order_reference}: {e}") from e
        return AuditRecord(**row) if row else None

    def list(self, limit: int = 50, offset: int = 0) -> List[AuditRecord]:
        """Most recent first."""
        check_page(limit, offset)
        try:
            with get_conn(self.dsn) as conn:
                rows = conn.execute(
                    "SELECT order_reference, receipt_url, recorded_at FROM payment_audit_log "
                    "ORDER BY recorded_at DESC, id DESC LIMIT %s OFFSET %s",
                    (limit, offset),
                ).fetchall()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to list audit records: {e}") from e
        return [AuditRecord(**row) for row in rows]
