# model/orders.py
"""
Order ledger: the persisted order aggregate and its status state machine.

CREATED -> AWAITING_PAYMENT -> {PAID, FAILED, CANCELLED}; PAID -> REFUNDED.

Every automatic transition is a conditional UPDATE scoped by id *and* the
set of statuses the target may be reached from. The affected row count
tells the caller whether it won; a writer that loses the race (or finds
the order already settled) gets ``False`` and must not repeat side effects.

Functions here never open transactions; callers wrap them in
``async with db.begin():``.
"""
from __future__ import annotations
import secrets
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db import Order
from ..helpers import now_ts, to_iso


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    SWISH = "SWISH"
    PAYPAL = "PAYPAL"


TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({
        OrderStatus.AWAITING_PAYMENT, OrderStatus.CANCELLED,
    }),
    OrderStatus.AWAITING_PAYMENT: frozenset({
        OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED,
    }),
    # declared; nothing triggers a refund yet
    OrderStatus.PAID: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# payment confirmation may settle an order that never left CREATED
_PAYABLE_FROM = frozenset({OrderStatus.CREATED, OrderStatus.AWAITING_PAYMENT})


def can_transition(src: OrderStatus | str, dst: OrderStatus | str) -> bool:
    return OrderStatus(dst) in TRANSITIONS[OrderStatus(src)]


def sources_of(dst: OrderStatus) -> List[str]:
    if dst is OrderStatus.PAID:
        return [s.value for s in _PAYABLE_FROM]
    return [s.value for s, targets in TRANSITIONS.items() if dst in targets]


# ----------------------------
# Identity
# ----------------------------
def new_order_id() -> str:
    return uuid.uuid4().hex


def new_order_number(prefix: str, when: Optional[datetime] = None) -> str:
    # e.g. TN-20261018-3FA9C2; the unique index is the real guard
    when = when or datetime.now(timezone.utc)
    rand = secrets.token_hex(3).upper()
    return f"{prefix}-{when:%Y%m%d}-{rand}"


# ----------------------------
# Reads
# ----------------------------
async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    return (await db.execute(
        select(Order).where(Order.id == order_id)
    )).scalar_one_or_none()


async def get_order_by_number(
    db: AsyncSession, order_number: str
) -> Optional[Order]:
    return (await db.execute(
        select(Order).where(Order.order_number == order_number)
    )).scalar_one_or_none()


async def get_order_by_session(
    db: AsyncSession, session_id: str
) -> Optional[Order]:
    return (await db.execute(
        select(Order).where(Order.provider_session_id == session_id)
    )).scalar_one_or_none()


async def current_status(
    db: AsyncSession, order_id: str
) -> Optional[OrderStatus]:
    raw = (await db.execute(
        select(Order.payment_status).where(Order.id == order_id)
    )).scalar_one_or_none()
    return OrderStatus(raw) if raw else None


async def list_orders(db: AsyncSession, limit: int = 200) -> List[Order]:
    rows = await db.execute(
        select(Order).order_by(Order.created_at.desc()).limit(limit)
    )
    return list(rows.scalars().all())


# ----------------------------
# Writes
# ----------------------------
async def insert_order(db: AsyncSession, **fields: Any) -> Order:
    fields.setdefault("id", new_order_id())
    fields.setdefault("created_at", now_ts())
    fields.setdefault("payment_status", OrderStatus.AWAITING_PAYMENT.value)
    fields.setdefault("provider_metadata", {})
    order = Order(**fields)
    db.add(order)
    # surfaces the order_number unique violation inside the caller's tx
    await db.flush()
    return order


async def transition(
    db: AsyncSession,
    order_id: str,
    dst: OrderStatus,
    **values: Any,
) -> bool:
    res = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status.in_(sources_of(dst)),
        )
        .values(payment_status=dst.value, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def mark_paid(
    db: AsyncSession, order_id: str, *, payment_method: str,
    payment_provider: str, paid_at: Optional[float] = None,
) -> bool:
    return await transition(
        db, order_id, OrderStatus.PAID,
        payment_method=payment_method,
        payment_provider=payment_provider,
        paid_at=paid_at or now_ts(),
    )


async def mark_cancelled(db: AsyncSession, order_id: str) -> bool:
    return await transition(db, order_id, OrderStatus.CANCELLED)


async def mark_failed(db: AsyncSession, order_id: str) -> bool:
    return await transition(db, order_id, OrderStatus.FAILED)


async def override_status(
    db: AsyncSession, order: Order, dst: OrderStatus
) -> bool:
    """Operator escape hatch: any status may be written.

    Still conditional on the status the operator saw, so two concurrent
    edits cannot silently overwrite each other.
    """
    values: Dict[str, Any] = {"payment_status": dst.value}
    if dst is OrderStatus.PAID and order.paid_at is None:
        values["paid_at"] = now_ts()
    res = await db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.payment_status == order.payment_status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def attach_provider_session(
    db: AsyncSession, order_id: str, session_id: str,
    metadata: Dict[str, Any],
) -> None:
    await db.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(provider_session_id=session_id, provider_metadata=metadata)
        .execution_options(synchronize_session=False)
    )


# ----------------------------
# Projections
# ----------------------------
def notification_view(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "full_name": order.full_name,
        "email": order.email,
        "phone": order.phone,
        "address": order.address,
        "items": order.items,
        "totals": order.totals,
        "currency": order.currency,
        "payment_status": order.payment_status,
        "paid_at": to_iso(order.paid_at),
    }


def admin_view(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.payment_status,
        "payment_method": order.payment_method,
        "payment_provider": order.payment_provider,
        "total": int((order.totals or {}).get("total", 0)),
        "currency": order.currency,
        "email": order.email or "",
        "full_name": order.full_name,
        "has_session": order.provider_session_id is not None,
        "created_at": to_iso(order.created_at),
        "paid_at": to_iso(order.paid_at),
    }
