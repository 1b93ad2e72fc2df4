"""
Pricing engine: line items -> subtotal, promotions, discount, total.

Pure functions over integer minor units. Every promotion rule looks at the
whole item set and computes its discount from pre-discount line totals, so
the rules are independent of each other and of their order. The server
re-runs this at checkout; totals sent by a client are never used.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from . import config


@dataclass(frozen=True)
class PricedProduct:
    id: str
    slug: str
    category: str
    price_cents: int
    currency: str
    title: str = ""
    inventory: int = 0

    @property
    def purchasable(self) -> bool:
        return self.price_cents > 0 and self.inventory > 0


@dataclass(frozen=True)
class LineItem:
    product: PricedProduct
    quantity: int

    @property
    def line_total(self) -> int:
        return self.product.price_cents * self.quantity


@dataclass(frozen=True)
class AppliedPromotion:
    code: str
    label: str
    discount_cents: int

    def as_dict(self) -> dict:
        return {
            "code": self.code,
            "label": self.label,
            "discount_cents": self.discount_cents,
        }


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: int
    promotions: List[AppliedPromotion] = field(default_factory=list)
    discount_total: int = 0
    total: int = 0

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "promotions": [p.as_dict() for p in self.promotions],
            "discount_total": self.discount_total,
            "total": self.total,
        }


PromotionRule = Callable[[Sequence[LineItem]], Optional[AppliedPromotion]]


# ----------------------------
# Promotion rules
# ----------------------------
TEA_CATEGORY = "TEA"
TEA_PREFIX = "tea-"
HONEY_SLUGS = frozenset({"thick-forest-honey"})


def is_tea(product: PricedProduct) -> bool:
    return (
        (product.category or "").upper() == TEA_CATEGORY
        or (product.slug or "").startswith(TEA_PREFIX)
    )


def bps_of(amount: int, bps: int) -> int:
    # floor, integer only
    return (amount * bps) // 10_000


def tea_honey_bundle(
    lines: Sequence[LineItem],
    bps: Optional[int] = None,
) -> Optional[AppliedPromotion]:
    """Tea in the cart takes a percentage off the paired honey lines."""
    if bps is None:
        bps = config.TEA_HONEY_DISCOUNT_BPS
    if not any(is_tea(li.product) for li in lines):
        return None
    paired = [li for li in lines if li.product.slug in HONEY_SLUGS]
    if not paired:
        return None

    discount = bps_of(sum(li.line_total for li in paired), bps)
    if discount <= 0:
        return None
    return AppliedPromotion(
        code=f"TEA_HONEY_{bps // 100}",
        label=f"Tea + Honey Bundle ({bps / 100:g}% off honey)",
        discount_cents=discount,
    )


PROMOTION_RULES: tuple[PromotionRule, ...] = (tea_honey_bundle,)


# ----------------------------
# Engine
# ----------------------------
def subtotal_of(lines: Iterable[LineItem]) -> int:
    return sum(li.line_total for li in lines)


def price(
    lines: Sequence[LineItem],
    rules: Sequence[PromotionRule] = PROMOTION_RULES,
) -> PriceBreakdown:
    lines = list(lines)
    subtotal = subtotal_of(lines)

    promotions: List[AppliedPromotion] = []
    for rule in rules:
        promo = rule(lines)
        if promo is not None:
            promotions.append(promo)

    discount_total = sum(p.discount_cents for p in promotions)
    return PriceBreakdown(
        subtotal=subtotal,
        promotions=promotions,
        discount_total=discount_total,
        total=max(0, subtotal - discount_total),
    )
