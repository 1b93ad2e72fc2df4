"""
Cart aggregate.

A cart is an immutable value; every mutation goes through ``reduce`` (or
the helpers it dispatches to) and returns a new cart. Loading and saving
happen at the boundary via ``to_json`` / ``from_json``.
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from .pricing import LineItem, PricedProduct, PriceBreakdown, price

CART_VERSION = 1


def clamp_qty(qty: int, inventory: int) -> int:
    if inventory <= 0:
        return 0
    return max(1, min(qty, inventory))


@dataclass(frozen=True)
class Cart:
    lines: Tuple[LineItem, ...] = field(default_factory=tuple)

    @property
    def total_items(self) -> int:
        return sum(li.quantity for li in self.lines)

    def find(self, product_id: str) -> Optional[LineItem]:
        for li in self.lines:
            if li.product.id == product_id:
                return li
        return None

    def pricing(self) -> PriceBreakdown:
        return price(self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "v": CART_VERSION,
            "items": [
                {
                    "product": {
                        "id": li.product.id,
                        "slug": li.product.slug,
                        "category": li.product.category,
                        "price_cents": li.product.price_cents,
                        "currency": li.product.currency,
                        "title": li.product.title,
                        "inventory": li.product.inventory,
                    },
                    "quantity": li.quantity,
                }
                for li in self.lines
            ],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


# ----------------------------
# Reducer
# ----------------------------
def add_item(cart: Cart, product: PricedProduct, quantity: int = 1) -> Cart:
    existing = cart.find(product.id)
    if existing is None:
        qty = clamp_qty(quantity, product.inventory)
        if qty <= 0:
            return cart
        return replace(cart, lines=cart.lines + (LineItem(product, qty),))

    qty = clamp_qty(existing.quantity + quantity, product.inventory)
    lines = tuple(
        LineItem(product, qty) if li.product.id == product.id else li
        for li in cart.lines
    )
    return replace(cart, lines=tuple(li for li in lines if li.quantity > 0))


def remove_item(cart: Cart, product_id: str) -> Cart:
    return replace(
        cart,
        lines=tuple(li for li in cart.lines if li.product.id != product_id),
    )


def update_quantity(cart: Cart, product_id: str, quantity: int) -> Cart:
    existing = cart.find(product_id)
    if existing is None:
        return cart
    if quantity <= 0:
        return remove_item(cart, product_id)

    qty = clamp_qty(quantity, existing.product.inventory)
    lines = tuple(
        LineItem(li.product, qty) if li.product.id == product_id else li
        for li in cart.lines
    )
    return replace(cart, lines=tuple(li for li in lines if li.quantity > 0))


def clear(cart: Cart) -> Cart:
    return Cart()


def reduce(cart: Cart, action: Dict[str, Any]) -> Cart:
    kind = action.get("type")
    if kind == "add":
        return add_item(cart, action["product"], action.get("quantity", 1))
    if kind == "remove":
        return remove_item(cart, action["product_id"])
    if kind == "update":
        return update_quantity(
            cart, action["product_id"], action["quantity"]
        )
    if kind == "clear":
        return clear(cart)
    raise ValueError(f"unknown cart action: {kind!r}")


# ----------------------------
# (De)serialisation
# ----------------------------
def _product_from(raw: Dict[str, Any]) -> PricedProduct:
    return PricedProduct(
        id=str(raw["id"]),
        slug=str(raw.get("slug") or ""),
        category=str(raw.get("category") or ""),
        price_cents=int(raw.get("price_cents") or 0),
        currency=str(raw.get("currency") or "SEK").upper(),
        title=str(raw.get("title") or ""),
        inventory=int(raw.get("inventory") or 0),
    )


def from_json(raw: Optional[str]) -> Cart:
    """Lenient load: anything unreadable yields an empty cart."""
    if not raw:
        return Cart()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return Cart()
    items = data.get("items") if isinstance(data, dict) else data
    if not isinstance(items, list):
        return Cart()

    lines = []
    for it in items:
        # minimal shape check
        if not isinstance(it, dict) or not isinstance(it.get("product"), dict):
            continue
        qty = it.get("quantity")
        if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
            continue
        try:
            lines.append(LineItem(_product_from(it["product"]), qty))
        except (KeyError, TypeError, ValueError):
            continue
    return Cart(lines=tuple(lines))
