from __future__ import annotations
import json
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, ORJSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from . import admin, auth, checkout, config, receipts, webhooks
from .errors import KassaError, NotFoundError, ValidationError
from .infra.logs import configure_logging, get_logger
from .infra.sql import make_async_engine
from .model.db import Base
from .model import orders
from .model.eventgate import BACKEND as GATE_BACKEND, new_gate
from .model.orders import PaymentMethod
from .providers import CheckoutContext, build_adapters
from .providers.mockpay import EMIT_EVENT_TYPES, SIGNATURE_HEADER, MockPay
from .providers.redirect import cancel_url, success_url

configure_logging()
logger = get_logger("server")

engine, SessionAsync = make_async_engine(config.DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


adapters = build_adapters()
processor = adapters[PaymentMethod.CARD].processor
require_admin = auth.make_require_admin(get_db)


# ---
# startup / shutdown
# ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.http = httpx.AsyncClient(
        timeout=5.0,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=64),
    )
    app.state.redis = None
    if GATE_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            max_connections=config.REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )

    logger.info(
        "startup",
        processor=processor.name,
        webhook_gate=GATE_BACKEND,
        methods=sorted(m.value for m in adapters),
    )
    try:
        yield
    finally:
        await app.state.http.aclose()
        app.state.http = None
        if app.state.redis is not None:
            await app.state.redis.aclose()
            app.state.redis = None


app = FastAPI(
    title="Kassa",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)
app.add_middleware(
    SessionMiddleware, secret_key=config.SESSION_SECRET, same_site="lax",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ----------------------------
# Error rendering
# ----------------------------
@app.exception_handler(KassaError)
async def _kassa_error(request: Request, exc: KassaError):
    return ORJSONResponse(exc.as_body(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def _bad_request(request: Request, exc: RequestValidationError):
    return ORJSONResponse(
        ValidationError("Invalid JSON body", code="invalid_body").as_body(),
        status_code=400,
    )


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return ORJSONResponse({"ok": False, "error": "Internal error"},
                          status_code=500)


def event_gate(db: AsyncSession):
    if GATE_BACKEND == "redis":
        return new_gate(r=app.state.redis)
    return new_gate(db=db)


# ----------------------------
# Cart & checkout
# ----------------------------
@app.post("/api/cart/quote")
async def cart_quote(payload: dict, db: AsyncSession = Depends(get_db)):
    return await checkout.quote(db, payload)


@app.post("/api/checkout")
async def create_checkout(
    request: Request, payload: dict, db: AsyncSession = Depends(get_db),
):
    return await checkout.checkout(
        db, payload, adapters, user_id=auth.current_user_id(request),
    )


# ----------------------------
# Webhook endpoint (shared for Mock/Stripe)
# ----------------------------
@app.post("/payments/webhook")
async def payments_webhook(
    request: Request, db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    headers = dict(request.headers)
    return await webhooks.handle_webhook(
        db, app.state.http, processor, event_gate(db), payload, headers,
    )


# ----------------------------
# MockPay hosted page stand-in
# ----------------------------
def _mockpay() -> MockPay:
    if not isinstance(processor, MockPay):
        raise NotFoundError("Not found", code="mockpay_disabled")
    return processor


async def _order_for_session(db: AsyncSession, psid: str):
    async with db.begin():
        order = await orders.get_order_by_session(db, psid)
    if order is None:
        raise NotFoundError("Payment session not found",
                            code="session_not_found")
    return order


@app.get("/mockpay/{psid}", response_class=HTMLResponse)
async def mockpay_screen(psid: str, db: AsyncSession = Depends(get_db)):
    _mockpay()
    order = await _order_for_session(db, psid)
    total = int(order.totals["total"])
    buttons = "".join(
        f'<button name="t" value="{kind}">{kind}</button>'
        for kind in EMIT_EVENT_TYPES
    )
    return HTMLResponse(
        f"<h1>MockPay</h1>"
        f"<p>Order {order.order_number}: "
        f"{total // 100}.{total % 100:02d} {order.currency}</p>"
        f'<form method="post" action="/mockpay/{psid}/emit">{buttons}</form>'
    )


@app.post("/mockpay/{psid}/emit")
async def mockpay_emit(
    psid: str, request: Request, db: AsyncSession = Depends(get_db),
):
    mock = _mockpay()
    form = await request.form()
    kind = form.get("t")  # succeeded|failed|canceled
    if kind not in EMIT_EVENT_TYPES:
        raise ValidationError("invalid kind", code="invalid_kind")

    order = await _order_for_session(db, psid)
    event = mock.build_event(kind, psid, order)
    payload = json.dumps(event).encode()

    client_http: httpx.AsyncClient = app.state.http
    try:
        await client_http.post(
            config.MOCK_WEBHOOK_URL,
            content=payload,
            headers={
                SIGNATURE_HEADER: mock.sign(payload),
                "content-type": "application/json",
            },
        )
    except httpx.HTTPError as e:
        # the buyer can retry from the page
        logger.warning("mockpay_delivery_failed", psid=psid, error=str(e))

    ctx = CheckoutContext(user_id=order.user_id, lang=order.lang)
    url = (success_url(ctx, order.order_number) if kind == "succeeded"
           else cancel_url(ctx))
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)


# ----------------------------
# Admin
# ----------------------------
@app.post("/api/admin/payments/manual/verify")
async def admin_verify_manual(
    payload: dict,
    db: AsyncSession = Depends(get_db),
    operator_id: str = Depends(require_admin),
):
    return await admin.verify_manual_payment(
        db, app.state.http,
        attempt_id=payload.get("attempt_id"),
        order_id=payload.get("order_id"),
        operator_id=operator_id,
    )


@app.get("/api/admin/payments/manual")
async def admin_pending_manual(
    limit: int = 200,
    db: AsyncSession = Depends(get_db),
    operator_id: str = Depends(require_admin),
):
    return await admin.list_pending_attempts(db, limit)


@app.get("/api/admin/orders")
async def api_admin_orders(
    limit: int = 200,
    db: AsyncSession = Depends(get_db),
    operator_id: str = Depends(require_admin),
):
    return await admin.list_orders(db, limit)


@app.post("/api/admin/orders/{order_id}/status")
async def admin_override_status(
    order_id: str,
    payload: dict,
    db: AsyncSession = Depends(get_db),
    operator_id: str = Depends(require_admin),
):
    return await admin.override_status(
        db, order_id, payload.get("status"), operator_id,
    )


# ----------------------------
# Receipts
# ----------------------------
@app.post("/api/orders/public")
async def public_order(
    request: Request, payload: dict, db: AsyncSession = Depends(get_db),
):
    return await receipts.get_receipt(
        db, payload, user_id=auth.current_user_id(request),
    )


# ----------------------------
# Session auth
# ----------------------------
@app.post("/auth/login")
async def login(
    request: Request, payload: dict, db: AsyncSession = Depends(get_db),
):
    return await auth.login(request, db, payload)


@app.post("/auth/logout")
async def logout(request: Request):
    return auth.logout(request)
