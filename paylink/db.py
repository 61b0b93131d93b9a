import math
from contextlib import contextmanager
from typing import Optional

import psycopg
from psycopg.rows import dict_row

from .settings import DATABASE_URL, DB_TIMEOUT_SECONDS

# One audit row per order reference; the unique constraint is what makes
# appends idempotent across processes.
SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    reference       TEXT PRIMARY KEY,
    payment_status  TEXT NOT NULL DEFAULT 'PENDING'
                    CHECK (payment_status IN ('PENDING', 'CONFIRMED')),
    receipt_url     TEXT,
    confirmed_at    TIMESTAMPTZ,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK ((receipt_url IS NULL) = (confirmed_at IS NULL))
);

CREATE TABLE IF NOT EXISTS payment_audit_log (
    id               BIGSERIAL PRIMARY KEY,
    order_reference  TEXT NOT NULL UNIQUE,
    receipt_url      TEXT NOT NULL,
    recorded_at      TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS payment_audit_log_recorded_at_idx
    ON payment_audit_log (recorded_at DESC, id DESC);
"""


@contextmanager
def get_conn(dsn: Optional[str] = None, timeout: float = DB_TIMEOUT_SECONDS):
    # Callers run inside the event loop, so both connecting and every statement are bounded.
    conn = psycopg.connect(
        dsn or DATABASE_URL,
        row_factory=dict_row,
        connect_timeout=max(1, math.ceil(timeout)),
        options=f"-c statement_timeout={int(timeout * 1000)}",
    )
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_schema(dsn: Optional[str] = None) -> None:
    with get_conn(dsn) as conn:
        conn.execute(SCHEMA)
