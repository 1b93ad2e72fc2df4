"""
Operator actions: confirming manual (Swish) transfers, listing orders and
attempts, and overriding an order's status.
"""
from __future__ import annotations
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from . import notify
from .errors import ConflictError, NotFoundError, ValidationError
from .infra.logs import get_logger
from .model import orders, payments
from .model.orders import OrderStatus, PaymentMethod
from .model.payments import AttemptStatus
from .providers.swish import ATTEMPT_PROVIDER, PROVIDER as SWISH_PROVIDER

logger = get_logger("admin")

MAX_LIST_LIMIT = 500


def clamp_limit(limit: int) -> int:
    return max(1, min(int(limit), MAX_LIST_LIMIT))


# ----------------------------
# Manual payment verification
# ----------------------------
async def verify_manual_payment(
    db: AsyncSession,
    http: httpx.AsyncClient,
    attempt_id: Optional[str],
    order_id: Optional[str],
    operator_id: str,
) -> Dict[str, Any]:
    """Mark a manual transfer as received and the order as PAID.

    Safe to repeat: the second confirmation of the same attempt answers
    ``already_paid`` and writes nothing. Attempt and order flip together
    or not at all.
    """
    if not attempt_id or not order_id:
        raise ValidationError(
            "attempt_id and order_id are required", code="missing_ids"
        )

    log = logger.bind(attempt_id=attempt_id, order_id=order_id,
                      operator=operator_id)
    paid_view = None

    async with db.begin():
        attempt = await payments.get_attempt(db, attempt_id)
        if attempt is None:
            raise NotFoundError("Payment attempt not found",
                                code="attempt_not_found")
        if attempt.order_id != order_id:
            raise ConflictError("Attempt does not belong to order",
                                code="attempt_order_mismatch")
        if attempt.status == AttemptStatus.PAID.value:
            log.info("manual_payment_already_verified")
            return {"ok": True, "already_paid": True}

        if not await payments.mark_attempt_paid(
            db, attempt_id, order_id, operator_id
        ):
            # another operator got there first
            log.info("manual_payment_already_verified")
            return {"ok": True, "already_paid": True}

        won = await orders.mark_paid(
            db, order_id,
            payment_method=PaymentMethod.SWISH.value,
            payment_provider=SWISH_PROVIDER,
        )
        if not won:
            status = await orders.current_status(db, order_id)
            if status is not OrderStatus.PAID:
                # rolls back the attempt update with it
                log.warning("manual_payment_order_closed", status=status)
                raise ConflictError(
                    f"Order cannot be marked paid from {status.value}"
                    if status else "Order not found",
                    code="order_not_payable",
                )

        await payments.record_event(
            db,
            order_id=order_id,
            provider=SWISH_PROVIDER,
            event_type="swish_manual.verified_paid",
            raw={
                "attempt_id": attempt_id,
                "reference": attempt.reference,
                "amount_cents": attempt.amount_cents,
                "verified_by": operator_id,
            },
        )

        if won:
            order = await orders.get_order(db, order_id)
            await db.refresh(order)
            paid_view = orders.notification_view(order)

    log.info("manual_payment_verified")
    if paid_view is not None:
        await notify.send_order_event(http, "order.paid", paid_view)
    return {"ok": True, "already_paid": False}


# ----------------------------
# Listings
# ----------------------------
async def list_pending_attempts(db: AsyncSession,
                                limit: int = 200) -> Dict[str, Any]:
    limit = clamp_limit(limit)
    async with db.begin():
        rows = await payments.list_open_attempts(db, ATTEMPT_PROVIDER, limit)
        items = [payments.attempt_view(a) for a in rows]
    return {"items": items, "limit": limit}


async def list_orders(db: AsyncSession, limit: int = 200) -> Dict[str, Any]:
    limit = clamp_limit(limit)
    async with db.begin():
        rows = await orders.list_orders(db, limit)
        items = [orders.admin_view(o) for o in rows]
    return {"items": items, "limit": limit}


# ----------------------------
# Status override
# ----------------------------
async def override_status(
    db: AsyncSession, order_id: str, raw_status: Any, operator_id: str,
) -> Dict[str, Any]:
    try:
        dst = OrderStatus(str(raw_status or "").strip().upper())
    except ValueError:
        raise ValidationError("Invalid status", code="invalid_status")

    async with db.begin():
        order = await orders.get_order(db, order_id)
        if order is None:
            raise NotFoundError("Order not found", code="order_not_found")
        src = order.payment_status
        if src == dst.value:
            return {"ok": True, "status": src, "changed": False}

        if not await orders.override_status(db, order, dst):
            raise ConflictError("Order changed concurrently, reload",
                                code="stale_status")
        await payments.record_event(
            db,
            order_id=order.id,
            provider="ADMIN",
            event_type="admin.status_override",
            raw={"from": src, "to": dst.value, "operator": operator_id},
        )

    logger.warning("status_overridden", order_number=order.order_number,
                   src=src, dst=dst.value, operator=operator_id)
    return {"ok": True, "status": dst.value, "changed": True}
