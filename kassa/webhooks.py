"""
Reconciliation of signed processor webhooks.

Only the verified raw body is trusted. Duplicate deliveries are dropped by
the event gate; lost races are dropped by the conditional status update.
Either way, side effects (notifications) happen at most once per order.
"""
from __future__ import annotations
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from . import notify
from .infra.logs import get_logger
from .model import orders, payments
from .model.db import Order
from .model.orders import OrderStatus, PaymentMethod
from .providers.redirect import (
    KIND_EXPIRED, KIND_FAILED, KIND_PAID, KIND_PENDING, RedirectProcessor,
)

logger = get_logger("webhook")

RECEIVED = {"received": True}


async def find_order(
    db: AsyncSession, order_id: Optional[str], session_id: str
) -> Optional[Order]:
    order = None
    if order_id:
        order = await orders.get_order(db, order_id)
    if order is None and session_id:
        order = await orders.get_order_by_session(db, session_id)
    return order


async def _settle(db: AsyncSession, order: Order, kind: str,
                  provider: str) -> bool:
    """Apply one event's transition. True when this call moved the order."""
    log = logger.bind(order_number=order.order_number, kind=kind)

    if kind == KIND_PAID:
        won = await orders.mark_paid(
            db, order.id,
            payment_method=PaymentMethod.CARD.value,
            payment_provider=provider,
        )
        if not won:
            status = await orders.current_status(db, order.id)
            if status is OrderStatus.PAID:
                log.info("order_already_paid")
            else:
                # money arrived for an order closed in the meantime
                log.warning("payment_on_closed_order", status=status)
        return won

    if kind in (KIND_EXPIRED, KIND_FAILED):
        mark = (orders.mark_cancelled if kind == KIND_EXPIRED
                else orders.mark_failed)
        won = await mark(db, order.id)
        if not won:
            status = await orders.current_status(db, order.id)
            log.info(
                "stale_expiry_ignored" if kind == KIND_EXPIRED
                else "stale_failure_ignored",
                status=status,
            )
        return won

    if kind == KIND_PENDING:
        log.info("payment_pending")
    return False


async def handle_webhook(
    db: AsyncSession,
    http: httpx.AsyncClient,
    processor: RedirectProcessor,
    gate: Any,
    payload: bytes,
    headers: Dict[str, str],
) -> Dict[str, Any]:
    # raises SignatureError before anything is read or written
    event = processor.verify_webhook(payload, headers)

    kind = processor.event_kind(event)
    if kind is None:
        logger.debug("webhook_ignored", event_type=event.get("type"))
        return RECEIVED

    session_id, order_id, event_id = processor.event_ids(event)
    paid_view = None

    async with db.begin():
        order = await find_order(db, order_id, session_id)
        if order is None:
            logger.warning(
                "webhook_order_not_found",
                event_type=event.get("type"),
                order_id=order_id,
                session_id=session_id,
            )
            return RECEIVED

        if not await gate.mark_event_seen(event_id):
            logger.info("webhook_duplicate", event_id=event_id,
                        order_number=order.order_number)
            return {**RECEIVED, "duplicate": True}

        await payments.record_event(
            db,
            order_id=order.id,
            provider=processor.name,
            event_type=event.get("type", ""),
            raw=event,
            provider_event_id=event_id,
        )

        moved = await _settle(db, order, kind, processor.name)
        if moved:
            await db.refresh(order)
            logger.info("order_status_changed",
                        order_number=order.order_number,
                        status=order.payment_status)
            if kind == KIND_PAID:
                paid_view = orders.notification_view(order)

    if paid_view is not None:
        await notify.send_order_event(http, "order.paid", paid_view)
    return RECEIVED
