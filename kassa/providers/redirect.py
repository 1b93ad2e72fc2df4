from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, TypedDict
from urllib.parse import quote

from sqlalchemy.ext.asyncio import AsyncSession

from . import AttemptResult, CheckoutContext, PaymentAdapter
from ..errors import ProviderError
from ..infra.logs import get_logger
from ..model import orders, payments
from ..model.db import Order
from ..model.orders import PaymentMethod

logger = get_logger("checkout")


class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str
    metadata: Dict[str, Any]


# event kinds the reconciliation handler acts on
KIND_PAID = "paid"
KIND_PENDING = "pending"
KIND_FAILED = "failed"
KIND_EXPIRED = "expired"


def success_url(ctx: CheckoutContext, order_number: str) -> str:
    return (
        f"{ctx.checkout_base}/order-confirmation"
        f"?order={quote(order_number, safe='')}"
    )


def cancel_url(ctx: CheckoutContext) -> str:
    return f"{ctx.checkout_base}/checkout?canceled=1"


# ----------------------------
# Hosted-session processors
# ----------------------------
class RedirectProcessor(ABC):
    """A processor hosting the payment page.

    Webhook events are Stripe-shaped for every processor:
    ``{"id", "type", "data": {"object": {"id", "metadata", ...}}}``.
    """
    name: str

    @abstractmethod
    async def create_session(
        self, order: Order, ctx: CheckoutContext
    ) -> CreateSessionResult: ...

    # raises SignatureError; must be given the raw request body
    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    def event_kind(self, event: dict) -> Optional[str]:
        etype = event.get("type", "")
        obj = _session_object(event)
        if etype == "checkout.session.completed":
            # delayed methods complete the session before money moves
            if obj.get("payment_status") == "unpaid":
                return KIND_PENDING
            return KIND_PAID
        if etype == "checkout.session.async_payment_succeeded":
            return KIND_PAID
        if etype == "checkout.session.async_payment_failed":
            return KIND_FAILED
        if etype == "checkout.session.expired":
            return KIND_EXPIRED
        return None

    # (session_id, order_id from metadata, provider event id)
    def event_ids(
        self, event: dict
    ) -> Tuple[str, Optional[str], Optional[str]]:
        obj = _session_object(event)
        metadata = obj.get("metadata") or {}
        return (
            obj.get("id", "") or "",
            metadata.get("order_id") or None,
            event.get("id") or None,
        )


def _session_object(event: dict) -> dict:
    data = event.get("data") or {}
    obj = data.get("object") or {}
    return obj if isinstance(obj, dict) else {}


# ----------------------------
# Redirect adapter
# ----------------------------
class RedirectAdapter(PaymentAdapter):
    method = PaymentMethod.CARD
    remote = True

    def __init__(self, processor: RedirectProcessor) -> None:
        self.processor = processor
        self.provider = processor.name

    async def create_payment_attempt(
        self, db: AsyncSession, order: Order, ctx: CheckoutContext
    ) -> AttemptResult:
        # the order is already committed; a failure here leaves it
        # AWAITING_PAYMENT without a session, visible in the admin list
        try:
            session = await self.processor.create_session(order, ctx)
        except ProviderError:
            logger.error(
                "provider_session_failed",
                order_id=order.id,
                order_number=order.order_number,
                provider=self.provider,
            )
            raise

        psid = session["payment_session_id"]
        async with db.begin():
            await orders.attach_provider_session(
                db, order.id, psid, session["metadata"]
            )
            await payments.record_event(
                db,
                order_id=order.id,
                provider=self.provider,
                event_type="checkout.session.created",
                raw={
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "session_id": psid,
                    "currency": order.currency,
                    "amount_cents": order.totals["total"],
                },
            )

        logger.info(
            "provider_session_created",
            order_number=order.order_number,
            provider=self.provider,
        )
        return {
            "ok": True,
            "url": session["redirect_url"],
            "order_number": order.order_number,
        }
