"""
Receipt lookup by order number.

Guests present the token handed out at checkout (only its sha256 is
stored); signed-in buyers may read their own orders without one.
"""
from __future__ import annotations
import hmac
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    AccessTokenError, Forbidden, NotFoundError, Unauthenticated,
    ValidationError,
)
from .helpers import now_ts, sha256_hex, to_iso
from .infra.logs import get_logger
from .model import orders
from .model.db import Order
from .model.types import PUBLIC_METADATA_KEYS

logger = get_logger("receipts")


def public_view(order: Order) -> Dict[str, Any]:
    metadata = order.provider_metadata or {}
    return {
        "order_number": order.order_number,
        "status": order.payment_status,
        "full_name": order.full_name,
        "email": order.email,
        "phone": order.phone,
        "address": order.address,
        "items": order.items,
        "totals": order.totals,
        "currency": order.currency,
        "lang": order.lang,
        "payment_method": order.payment_method,
        "payment_provider": order.payment_provider,
        "provider_metadata": {
            k: v for k, v in metadata.items() if k in PUBLIC_METADATA_KEYS
        },
        "created_at": to_iso(order.created_at),
        "paid_at": to_iso(order.paid_at),
    }


def check_token(order: Order, token: str) -> None:
    stored = order.guest_access_token_hash
    if not stored or not hmac.compare_digest(sha256_hex(token), stored):
        logger.warning("receipt_token_rejected",
                       order_number=order.order_number)
        raise AccessTokenError("Invalid token", code="invalid_token")
    expires = order.guest_access_token_expires_at
    if expires is None or expires < now_ts():
        logger.info("receipt_token_expired", order_number=order.order_number)
        raise AccessTokenError("Token expired", code="token_expired")


def check_owner(order: Order, user_id: Optional[str]) -> None:
    if not user_id:
        raise Unauthenticated("Unauthorized", code="unauthenticated")
    if order.user_id != user_id:
        raise Forbidden("Forbidden", code="not_owner")


async def get_receipt(
    db: AsyncSession, payload: Any, user_id: Optional[str] = None,
) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body", code="invalid_body")
    order_number = str(payload.get("order_number") or "").strip()
    token = str(payload.get("token") or "").strip()
    if not order_number:
        raise ValidationError("Missing order_number",
                              code="missing_order_number")

    async with db.begin():
        order = await orders.get_order_by_number(db, order_number)
    if order is None:
        raise NotFoundError("Order not found", code="order_not_found")

    if token:
        check_token(order, token)
    else:
        check_owner(order, user_id)
    return {"ok": True, "order": public_view(order)}
