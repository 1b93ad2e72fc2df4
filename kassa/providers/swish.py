"""
Manual-transfer adapter (Swish).

The buyer scans a code (or follows a deep link) that pre-fills payee,
amount and message in their banking app; an operator later confirms the
money arrived. Payload format::

    C<payee digits>;<amount with comma decimal>;<url-encoded message>;0
"""
from __future__ import annotations
import json
import re
from typing import Optional
from urllib.parse import quote

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_H
from sqlalchemy.ext.asyncio import AsyncSession

from . import AttemptResult, CheckoutContext, PaymentAdapter
from ..helpers import new_guest_token, now_ts, sha256_hex
from ..infra.logs import get_logger
from ..model import payments
from ..model.db import Order
from ..model.orders import PaymentMethod
from ..model.types import SCHEMA_VERSION, SwishMetadata

logger = get_logger("swish")

PROVIDER = "SWISH"
ATTEMPT_PROVIDER = "swish_manual"
MESSAGE_MAX_LEN = 50

# characters encodeURIComponent leaves alone
_URI_SAFE = "-_.!~*'()"


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", str(value))


def format_amount(amount_cents: int) -> str:
    # 12345 -> "123,45"
    return f"{amount_cents // 100},{amount_cents % 100:02d}"


def sanitize_message(message: str) -> str:
    return str(message).replace(";", "")[:MESSAGE_MAX_LEN]


def reference_for(order_number: str) -> str:
    return f"SWISH-{order_number}"


def build_qr_payload(payee: str, amount_cents: int, message: str) -> str:
    msg = quote(sanitize_message(message), safe=_URI_SAFE)
    return (
        f"C{digits_only(payee)};{format_amount(amount_cents)};{msg};0"
    )


def build_deeplink(payee: str, amount_cents: int, message: str) -> str:
    data = {
        "version": 1,
        "payee": {"value": digits_only(payee), "editable": False},
        "amount": {
            "value": f"{amount_cents // 100}.{amount_cents % 100:02d}",
            "editable": False,
        },
        "message": {"value": sanitize_message(message), "editable": False},
    }
    raw = json.dumps(data, separators=(",", ":"))
    return f"swish://payment?data={quote(raw, safe=_URI_SAFE)}"


def render_qr_svg(payload: str) -> str:
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_H,
        border=2,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    return qr.make_image().to_string(encoding="unicode")


def pending_url(ctx: CheckoutContext, order_number: str,
                token: Optional[str]) -> str:
    url = (
        f"{ctx.checkout_base}/order-confirmation"
        f"?order={quote(order_number, safe='')}"
    )
    if token:
        url += f"&token={quote(token, safe='')}"
    return url


class SwishManualAdapter(PaymentAdapter):
    method = PaymentMethod.SWISH
    provider = PROVIDER
    remote = False

    def __init__(self, payee: str, currency: str,
                 token_ttl_seconds: int) -> None:
        self.payee = payee
        self.currency = currency.upper()
        self.token_ttl = token_ttl_seconds

    def supports_currency(self, currency: str) -> bool:
        return currency.upper() == self.currency

    async def create_payment_attempt(
        self, db: AsyncSession, order: Order, ctx: CheckoutContext
    ) -> AttemptResult:
        # runs inside the transaction that inserted the order
        amount = int(order.totals["total"])
        reference = reference_for(order.order_number)
        qr_payload = build_qr_payload(self.payee, amount, reference)
        deeplink = build_deeplink(self.payee, amount, reference)

        metadata: SwishMetadata = {
            "v": SCHEMA_VERSION,
            "swish_number": self.payee,
            "swish_reference": reference,
            "swish_qr_payload": qr_payload,
            "swish_amount_cents": amount,
            "swish_currency": self.currency,
            "swish_deeplink": deeplink,
        }
        order.provider_metadata = dict(metadata)

        # raw token leaves this function once and is never stored
        token: Optional[str] = None
        if ctx.guest:
            token = new_guest_token()
            order.guest_access_token_hash = sha256_hex(token)
            order.guest_access_token_expires_at = now_ts() + self.token_ttl
        await db.flush()

        attempt = await payments.create_attempt(
            db,
            order_id=order.id,
            provider=ATTEMPT_PROVIDER,
            reference=reference,
            amount_cents=amount,
            currency=self.currency,
        )
        await payments.record_event(
            db,
            order_id=order.id,
            provider=PROVIDER,
            event_type="swish_manual.created",
            raw={
                "attempt_id": attempt.id,
                "reference": reference,
                "swish_number": self.payee,
                "amount_cents": amount,
            },
        )
        logger.info(
            "swish_attempt_created",
            order_number=order.order_number,
            attempt_id=attempt.id,
            guest=ctx.guest,
        )

        result: AttemptResult = {
            "ok": True,
            "order_id": order.id,
            "order_number": order.order_number,
            "attempt_id": attempt.id,
            "swish_number": self.payee,
            "reference": reference,
            "amount_cents": amount,
            "currency": self.currency,
            "qr_payload": qr_payload,
            "qr_svg": render_qr_svg(qr_payload),
            "deeplink": deeplink,
            "guest": ctx.guest,
            "pending_url": pending_url(ctx, order.order_number, token),
        }
        if token is not None:
            result["guest_token"] = token
        return result
