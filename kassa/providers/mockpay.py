import base64
import hashlib
import hmac
import json
import time
import uuid

from .redirect import CreateSessionResult, RedirectProcessor
from . import CheckoutContext
from ..errors import SignatureError
from ..model.db import Order
from ..model.types import SCHEMA_VERSION

SIGNATURE_HEADER = "x-mockpay-signature"

# what the hosted page's three buttons emit
EMIT_EVENT_TYPES = {
    "succeeded": "checkout.session.completed",
    "failed": "checkout.session.async_payment_failed",
    "canceled": "checkout.session.expired",
}


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(RedirectProcessor):
    name = "MOCKPAY"

    def __init__(self, secret: str) -> None:
        self.secret = secret

    async def create_session(
        self, order: Order, ctx: CheckoutContext
    ) -> CreateSessionResult:
        psid = f"mock_{uuid.uuid4().hex}"
        return {
            "payment_session_id": psid,
            "redirect_url": f"/mockpay/{psid}",
            "metadata": {
                "v": SCHEMA_VERSION,
                "mock_session_id": psid,
                "mock_mode": "test",
            },
        }

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        if not sig:
            raise SignatureError(
                f"Missing {SIGNATURE_HEADER}", code="missing_signature"
            )
        if not hmac.compare_digest(self.sign(payload), sig):
            raise SignatureError("Invalid signature", code="bad_signature")
        try:
            return json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise SignatureError("Invalid JSON", code="bad_payload")

    def build_event(self, kind: str, psid: str, order: Order) -> dict:
        return {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": EMIT_EVENT_TYPES[kind],
            "created": int(time.time()),
            "data": {
                "object": {
                    "id": psid,
                    "payment_status": "paid" if kind == "succeeded"
                    else "unpaid",
                    "amount_total": order.totals["total"],
                    "currency": order.currency.lower(),
                    "metadata": {
                        "order_id": order.id,
                        "order_number": order.order_number,
                        "lang": order.lang,
                    },
                },
            },
        }
