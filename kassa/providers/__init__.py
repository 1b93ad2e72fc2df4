from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from ..errors import ValidationError
from ..model.db import Order
from ..model.orders import PaymentMethod

AttemptResult = Dict[str, Any]


@dataclass(frozen=True)
class CheckoutContext:
    user_id: Optional[str]
    lang: str
    customer_email: str = ""

    @property
    def guest(self) -> bool:
        return self.user_id is None

    @property
    def checkout_base(self) -> str:
        return f"{config.SITE_URL}/{self.lang}"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    method: PaymentMethod
    provider: str
    # remote adapters talk to a processor and run after the order commits;
    # local ones write inside the order's own transaction
    remote: bool = False

    @abstractmethod
    async def create_payment_attempt(
        self, db: AsyncSession, order: Order, ctx: CheckoutContext
    ) -> AttemptResult: ...

    def supports_currency(self, currency: str) -> bool:
        return True


# request value -> persisted payment method
_METHOD_ALIASES = {
    "CARD": PaymentMethod.CARD,
    "MANUAL": PaymentMethod.SWISH,
    "SWISH": PaymentMethod.SWISH,
    "PAYPAL": PaymentMethod.PAYPAL,
}


def parse_payment_method(raw: Any) -> PaymentMethod:
    method = _METHOD_ALIASES.get(str(raw or "").strip().upper())
    if method is None:
        raise ValidationError(
            "Invalid payment_method", code="invalid_payment_method"
        )
    return method


def select_adapter(
    method: PaymentMethod, adapters: Mapping[PaymentMethod, PaymentAdapter]
) -> PaymentAdapter:
    adapter = adapters.get(method)
    if adapter is None:
        raise ValidationError(
            f"Payment method not supported: {method.value}",
            code="unsupported_payment_method",
        )
    return adapter


def build_adapters(
    processor: Optional[str] = None,
) -> Dict[PaymentMethod, PaymentAdapter]:
    from .redirect import RedirectAdapter
    from .swish import SwishManualAdapter

    return {
        PaymentMethod.CARD: RedirectAdapter(
            new_processor(processor or config.PAYMENT_PROCESSOR)
        ),
        PaymentMethod.SWISH: SwishManualAdapter(
            payee=config.SWISH_NUMBER,
            currency=config.SWISH_CURRENCY,
            token_ttl_seconds=config.GUEST_TOKEN_TTL_SECONDS,
        ),
    }


def new_processor(name: str):
    if name == "stripe":
        from .stripe_processor import StripeCheckout
        return StripeCheckout(
            api_key=config.STRIPE_SECRET_KEY,
            webhook_secret=config.STRIPE_WEBHOOK_SECRET,
        )
    if name == "mockpay":
        from .mockpay import MockPay
        return MockPay(secret=config.MOCK_SECRET)
    raise RuntimeError(f"unknown PAYMENT_PROCESSOR: {name!r}")
