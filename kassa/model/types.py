"""
Shapes of the JSON blobs stored on an order.

Every blob written by this service carries ``v`` (schema version) so a
later shape change can be detected on read instead of loosening the types.
"""
from __future__ import annotations
from typing import List, TypedDict

SCHEMA_VERSION = 1


class Address(TypedDict):
    street: str
    city: str
    postal_code: str
    country: str


class OrderItem(TypedDict):
    product_id: str
    title: str
    quantity: int
    price_cents: int
    currency: str


class PromotionLine(TypedDict):
    code: str
    label: str
    discount_cents: int


class Totals(TypedDict):
    v: int
    subtotal: int
    discount: int
    shipping: int
    tax: int
    total: int
    promotions: List[PromotionLine]


class RedirectMetadata(TypedDict, total=False):
    v: int
    stripe_session_id: str
    stripe_mode: str  # live | test
    stripe_coupon_id: str
    mock_session_id: str
    mock_mode: str


class SwishMetadata(TypedDict):
    v: int
    swish_number: str
    swish_reference: str
    swish_qr_payload: str
    swish_amount_cents: int
    swish_currency: str
    swish_deeplink: str


# provider_metadata keys that may be shown to the buyer
PUBLIC_METADATA_KEYS = frozenset({
    "swish_number",
    "swish_reference",
    "swish_qr_payload",
    "swish_amount_cents",
    "swish_currency",
    "swish_deeplink",
})


def make_address(raw: dict) -> Address:
    return {
        "street": str(raw["street"]).strip(),
        "city": str(raw["city"]).strip(),
        "postal_code": str(raw["postal_code"]).strip(),
        "country": str(raw["country"]).strip(),
    }


def make_totals(subtotal: int, promotions: List[PromotionLine],
                discount: int, total: int) -> Totals:
    return {
        "v": SCHEMA_VERSION,
        "subtotal": subtotal,
        "discount": discount,
        "shipping": 0,
        "tax": 0,
        "total": total,
        "promotions": promotions,
    }
