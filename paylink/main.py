from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from . import __version__, settings
from .audit_log import MAX_PAGE_SIZE, AuditLogStore, PostgresAuditLogStore
from .checkout_link import build_checkout_link
from .db import init_schema
from .errors import InvalidHandleError, InvalidOrderError, PersistenceError
from .log import setup_logging
from .models import AuditRecord, CheckoutLink, CheckoutRequest, GatewayConfig, GatewayInfo
from .order_store import PostgresOrderStore
from .reconciliation import ReconciliationEngine
from .status_client import StatusClient

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_schema()
    yield


app = FastAPI(title="Paylink", version=__version__, lifespan=lifespan)


def get_gateway_config() -> GatewayConfig:
    return GatewayConfig(
        handle=settings.GATEWAY_HANDLE,
        title=settings.GATEWAY_TITLE,
        description=settings.GATEWAY_DESCRIPTION,
        enabled=settings.GATEWAY_ENABLED,
    )


def get_audit_log() -> AuditLogStore:
    return PostgresAuditLogStore()


@lru_cache(maxsize=1)
def get_engine() -> ReconciliationEngine:
    # One engine per process: its per-reference locks must be shared by all requests.
    status_client = StatusClient(
        settings.PROVIDER_API_BASE_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        attempts=settings.STATUS_CHECK_ATTEMPTS,
        backoff_seconds=settings.STATUS_CHECK_BACKOFF_SECONDS,
    )
    return ReconciliationEngine(
        orders=PostgresOrderStore(),
        audit_log=get_audit_log(),
        status_client=status_client,
        config=get_gateway_config(),
        confirmation_url=settings.CONFIRMATION_URL,
    )


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/gateway", response_model=GatewayInfo)
def gateway_info(config: GatewayConfig = Depends(get_gateway_config)):
    """What the upstream checkout needs to decide whether to offer this method."""
    return GatewayInfo(title=config.title, description=config.description, enabled=config.enabled)


@app.post("/checkout", response_model=CheckoutLink)
def checkout(req: CheckoutRequest, config: GatewayConfig = Depends(get_gateway_config)):
    if not config.enabled:
        raise HTTPException(status_code=404, detail="Payment method disabled")

    try:
        link = build_checkout_link(
            req,
            config.handle,
            settings.RETURN_BASE_URL,
            checkout_host=settings.PROVIDER_CHECKOUT_HOST,
            qr_base_url=settings.QR_BASE_URL,
        )
    except (InvalidOrderError, InvalidHandleError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("checkout_link_built", order_reference=req.order_reference)
    return link


@app.get("/payment-return")
async def payment_return(
    request: Request,
    order_nsu: Optional[str] = None,
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Buyer lands here after the hosted checkout. Always redirects.
    """
    target = await engine.handle_return(order_nsu, dict(request.query_params))
    return RedirectResponse(url=target.location, status_code=302)


@app.get("/audit-log", response_model=List[AuditRecord])
def audit_log(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    store: AuditLogStore = Depends(get_audit_log),
):
    try:
        return store.list(limit=limit, offset=offset)
    except PersistenceError as e:
        logger.error("audit_log_unavailable", error=str(e))
        raise HTTPException(status_code=503, detail="Audit log unavailable")
