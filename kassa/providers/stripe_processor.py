from __future__ import annotations
import json
from typing import Any, Dict, List

import stripe
from fastapi.concurrency import run_in_threadpool

from .redirect import (
    CreateSessionResult, RedirectProcessor, cancel_url, success_url,
)
from . import CheckoutContext
from ..errors import ProviderError, SignatureError
from ..infra.logs import get_logger
from ..model.db import Order
from ..model.types import SCHEMA_VERSION

logger = get_logger("stripe")

SIGNATURE_HEADER = "stripe-signature"


def line_items_for(order: Order) -> List[Dict[str, Any]]:
    currency = order.currency.lower()
    return [
        {
            "quantity": it["quantity"],
            "price_data": {
                "currency": currency,
                "unit_amount": it["price_cents"],
                "product_data": {"name": it["title"]},
            },
        }
        for it in order.items
    ]


class StripeCheckout(RedirectProcessor):
    name = "STRIPE"

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    async def create_session(
        self, order: Order, ctx: CheckoutContext
    ) -> CreateSessionResult:
        params: Dict[str, Any] = dict(
            mode="payment",
            line_items=line_items_for(order),
            success_url=success_url(ctx, order.order_number),
            cancel_url=cancel_url(ctx),
            metadata={
                "order_id": order.id,
                "order_number": order.order_number,
                "lang": ctx.lang,
            },
            # a retried call for the same order reuses the session
            idempotency_key=f"checkout_{order.id}",
            api_key=self.api_key,
        )
        if ctx.customer_email:
            params["customer_email"] = ctx.customer_email

        metadata: Dict[str, Any] = {"v": SCHEMA_VERSION}
        try:
            discount = int(order.totals.get("discount", 0))
            if discount > 0:
                coupon = await run_in_threadpool(
                    stripe.Coupon.create,
                    amount_off=discount,
                    currency=order.currency.lower(),
                    duration="once",
                    name=_coupon_name(order),
                    api_key=self.api_key,
                )
                params["discounts"] = [{"coupon": coupon.id}]
                metadata["stripe_coupon_id"] = coupon.id

            session = await run_in_threadpool(
                stripe.checkout.Session.create, **params
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe_session_error",
                order_number=order.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderError() from e

        metadata.update(
            stripe_session_id=session.id,
            stripe_mode="live" if session.livemode else "test",
        )
        return {
            "payment_session_id": session.id,
            "redirect_url": session.url,
            "metadata": metadata,
        }

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        if not sig:
            raise SignatureError(
                f"Missing {SIGNATURE_HEADER}", code="missing_signature"
            )
        try:
            stripe.Webhook.construct_event(payload, sig, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise SignatureError("Invalid signature", code="bad_signature")
        except ValueError:
            raise SignatureError("Invalid JSON", code="bad_payload")
        # the verified raw body is the source of truth
        return json.loads(payload)


def _coupon_name(order: Order) -> str:
    labels = [p["label"] for p in order.totals.get("promotions", [])]
    # stripe caps coupon names at 40 chars
    return (", ".join(labels) or "Discount")[:40]
