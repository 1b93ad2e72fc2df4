# model/payments.py
"""
Payment attempts (manual-transfer flow) and the append-only payment event
log. Like the ledger, nothing here opens a transaction.
"""
from __future__ import annotations
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db import PaymentAttempt, PaymentEvent
from ..helpers import now_ts, to_iso


class AttemptStatus(str, Enum):
    PENDING = "pending"
    PENDING_REVIEW = "pending_review"
    PAID = "paid"


OPEN_ATTEMPT_STATUSES = (
    AttemptStatus.PENDING.value, AttemptStatus.PENDING_REVIEW.value,
)


# ----------------------------
# Attempts
# ----------------------------
async def create_attempt(
    db: AsyncSession, *, order_id: str, provider: str, reference: str,
    amount_cents: int, currency: str,
) -> PaymentAttempt:
    attempt = PaymentAttempt(
        id=uuid.uuid4().hex,
        order_id=order_id,
        provider=provider,
        reference=reference,
        amount_cents=amount_cents,
        currency=currency,
        status=AttemptStatus.PENDING.value,
        created_at=now_ts(),
    )
    db.add(attempt)
    await db.flush()
    return attempt


async def get_attempt(
    db: AsyncSession, attempt_id: str
) -> Optional[PaymentAttempt]:
    return (await db.execute(
        select(PaymentAttempt).where(PaymentAttempt.id == attempt_id)
    )).scalar_one_or_none()


async def mark_attempt_paid(
    db: AsyncSession, attempt_id: str, order_id: str, verified_by: str,
) -> bool:
    # paid never reverts; the status predicate makes a second writer a no-op
    res = await db.execute(
        update(PaymentAttempt)
        .where(
            PaymentAttempt.id == attempt_id,
            PaymentAttempt.order_id == order_id,
            PaymentAttempt.status.in_(OPEN_ATTEMPT_STATUSES),
        )
        .values(
            status=AttemptStatus.PAID.value,
            swish_verified_at=now_ts(),
            verified_by=verified_by,
        )
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def list_open_attempts(
    db: AsyncSession, provider: str, limit: int = 200
) -> List[PaymentAttempt]:
    rows = await db.execute(
        select(PaymentAttempt)
        .where(
            PaymentAttempt.provider == provider,
            PaymentAttempt.status.in_(OPEN_ATTEMPT_STATUSES),
        )
        .order_by(PaymentAttempt.created_at.desc())
        .limit(limit)
    )
    return list(rows.scalars().all())


def attempt_view(attempt: PaymentAttempt) -> Dict[str, Any]:
    return {
        "id": attempt.id,
        "order_id": attempt.order_id,
        "reference": attempt.reference,
        "amount_cents": attempt.amount_cents,
        "currency": attempt.currency,
        "status": attempt.status,
        "created_at": to_iso(attempt.created_at),
    }


# ----------------------------
# Events (append-only)
# ----------------------------
async def record_event(
    db: AsyncSession, *, order_id: Optional[str], provider: str,
    event_type: str, raw: Dict[str, Any],
    provider_event_id: Optional[str] = None,
) -> None:
    db.add(PaymentEvent(
        order_id=order_id,
        provider=provider,
        event_type=event_type,
        provider_event_id=provider_event_id,
        raw=raw,
        created_at=now_ts(),
    ))
    await db.flush()


async def list_events(
    db: AsyncSession, order_id: str
) -> List[PaymentEvent]:
    rows = await db.execute(
        select(PaymentEvent)
        .where(PaymentEvent.order_id == order_id)
        .order_by(PaymentEvent.id)
    )
    return list(rows.scalars().all())
