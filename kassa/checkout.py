"""
Checkout orchestrator.

validate -> re-price against product rows -> persist order
(AWAITING_PAYMENT) -> hand off to exactly one payment adapter.

Validation and re-pricing failures raise before anything is written.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import cart as carts
from . import config
from .errors import ConflictError, NotFoundError, ValidationError
from .helpers import is_valid_email, normalize_lang
from .infra.logs import get_logger
from .model import orders
from .model.db import Order, Product
from .model.orders import OrderStatus, PaymentMethod
from .model.types import (
    Address, OrderItem, Totals, make_address, make_totals,
)
from .pricing import LineItem, PriceBreakdown, PricedProduct, price
from .providers import (
    AttemptResult, CheckoutContext, PaymentAdapter, parse_payment_method,
    select_adapter,
)

logger = get_logger("checkout")

ADDRESS_FIELDS = ("street", "city", "postal_code", "country")
PUBLISHED = "PUBLISHED"


@dataclass(frozen=True)
class CheckoutRequest:
    items: List[Tuple[str, int]]
    customer_name: str
    customer_email: str
    customer_phone: Optional[str]
    address: Address
    lang: str
    method: PaymentMethod
    currency_hint: Optional[str] = None


# ----------------------------
# Validation
# ----------------------------
def parse_items(raw: Any) -> List[Tuple[str, int]]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("No items provided", code="empty_items")

    merged: Dict[str, int] = {}
    for it in raw:
        if not isinstance(it, dict):
            raise ValidationError("Invalid items", code="invalid_item")
        pid = it.get("product_id")
        qty = it.get("quantity")
        if not isinstance(pid, str) or not pid.strip():
            raise ValidationError("Invalid items", code="invalid_item")
        if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
            raise ValidationError(
                "Quantity must be a positive integer",
                code="invalid_quantity",
            )
        pid = pid.strip()
        merged[pid] = merged.get(pid, 0) + qty
    return list(merged.items())


def parse_address(raw: Any) -> Address:
    if not isinstance(raw, dict):
        raise ValidationError("Missing address", code="invalid_address")
    for key in ADDRESS_FIELDS:
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(
                f"Missing address field: {key}", code="invalid_address"
            )
    return make_address(raw)


def parse_request(payload: Any) -> CheckoutRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body", code="invalid_body")

    items = parse_items(payload.get("items"))
    address = parse_address(payload.get("address"))

    name = str(payload.get("customer_name") or "").strip()
    if not name:
        raise ValidationError("Missing customer_name", code="missing_name")

    method = parse_payment_method(payload.get("payment_method"))

    email = str(payload.get("customer_email") or "").strip()
    if method is PaymentMethod.SWISH and not email:
        raise ValidationError("Missing customer_email", code="missing_email")
    if email and not is_valid_email(email):
        raise ValidationError("Invalid customer_email", code="invalid_email")

    phone = str(payload.get("customer_phone") or "").strip() or None
    hint = str(payload.get("currency_hint") or "").strip().upper() or None

    return CheckoutRequest(
        items=items,
        customer_name=name,
        customer_email=email,
        customer_phone=phone,
        address=address,
        lang=normalize_lang(payload.get("lang")),
        method=method,
        currency_hint=hint,
    )


def check_currency(adapter: PaymentAdapter, currency: str) -> None:
    if not adapter.supports_currency(currency):
        raise ValidationError(
            f"{adapter.provider.title()} requires "
            f"{getattr(adapter, 'currency', 'a different currency')}",
            code="unsupported_currency",
        )


# ----------------------------
# Re-pricing
# ----------------------------
def priced(product: Product) -> PricedProduct:
    return PricedProduct(
        id=product.id,
        slug=product.slug,
        category=product.category,
        price_cents=int(product.price_cents),
        currency=(product.currency or "SEK").upper(),
        title=product.title,
        inventory=int(product.inventory or 0),
    )


async def load_products(
    db: AsyncSession, ids: List[str]
) -> Dict[str, PricedProduct]:
    rows = await db.execute(
        select(Product).where(
            Product.id.in_(ids), Product.status == PUBLISHED,
        )
    )
    return {p.id: priced(p) for p in rows.scalars().all()}


def reprice(
    items: List[Tuple[str, int]], products: Mapping[str, PricedProduct],
) -> Tuple[str, List[OrderItem], PriceBreakdown]:
    missing = [pid for pid, _ in items if pid not in products]
    if missing:
        raise NotFoundError(
            "Some products are no longer available",
            code="product_unavailable",
        )

    lines: List[LineItem] = []
    for pid, qty in items:
        p = products[pid]
        if p.price_cents <= 0:
            raise ValidationError(
                f"Product has no price: {pid}", code="product_unpriced"
            )
        if p.inventory <= 0:
            raise ValidationError(
                f"Product out of stock: {pid}", code="out_of_stock"
            )
        if qty > p.inventory:
            raise ValidationError(
                f"Not enough stock for product: {pid}",
                code="insufficient_stock",
            )
        lines.append(LineItem(p, qty))

    currencies = {li.product.currency for li in lines}
    if len(currencies) != 1:
        raise ValidationError(
            "Mixed currencies not supported", code="mixed_currency"
        )
    currency = currencies.pop()

    snapshot: List[OrderItem] = [
        {
            "product_id": li.product.id,
            "title": li.product.title,
            "quantity": li.quantity,
            "price_cents": li.product.price_cents,
            "currency": currency,
        }
        for li in lines
    ]
    return currency, snapshot, price(lines)


def totals_from(breakdown: PriceBreakdown) -> Totals:
    return make_totals(
        subtotal=breakdown.subtotal,
        promotions=[p.as_dict() for p in breakdown.promotions],
        discount=breakdown.discount_total,
        total=breakdown.total,
    )


# ----------------------------
# Order creation + dispatch
# ----------------------------
async def place_order(
    db: AsyncSession,
    req: CheckoutRequest,
    adapter: PaymentAdapter,
    ctx: CheckoutContext,
    currency: str,
    items: List[OrderItem],
    totals: Totals,
) -> Tuple[Order, Optional[AttemptResult]]:
    for n in range(1, config.ORDER_NUMBER_ATTEMPTS + 1):
        number = orders.new_order_number(config.ORDER_NUMBER_PREFIX)
        try:
            async with db.begin():
                order = await orders.insert_order(
                    db,
                    order_number=number,
                    user_id=ctx.user_id,
                    full_name=req.customer_name,
                    email=req.customer_email,
                    phone=req.customer_phone,
                    address=req.address,
                    items=items,
                    totals=totals,
                    currency=currency,
                    lang=req.lang,
                    payment_method=req.method.value,
                    payment_provider=adapter.provider,
                    payment_status=OrderStatus.AWAITING_PAYMENT.value,
                )
                result = None
                if not adapter.remote:
                    result = await adapter.create_payment_attempt(
                        db, order, ctx
                    )
        except IntegrityError:
            logger.warning("order_number_collision",
                           order_number=number, attempt=n)
            continue
        return order, result

    raise ConflictError(
        "Could not allocate an order number", code="order_number_exhausted"
    )


async def checkout(
    db: AsyncSession,
    payload: Any,
    adapters: Mapping[PaymentMethod, PaymentAdapter],
    user_id: Optional[str] = None,
) -> AttemptResult:
    req = parse_request(payload)
    adapter = select_adapter(req.method, adapters)
    if req.currency_hint:
        check_currency(adapter, req.currency_hint)

    async with db.begin():
        products = await load_products(db, [pid for pid, _ in req.items])
    currency, items, breakdown = reprice(req.items, products)
    check_currency(adapter, currency)

    ctx = CheckoutContext(
        user_id=user_id, lang=req.lang, customer_email=req.customer_email,
    )
    order, result = await place_order(
        db, req, adapter, ctx, currency, items, totals_from(breakdown)
    )
    logger.info(
        "order_created",
        order_number=order.order_number,
        method=req.method.value,
        provider=adapter.provider,
        total=breakdown.total,
        currency=currency,
        guest=ctx.guest,
    )

    if result is None:
        result = await adapter.create_payment_attempt(db, order, ctx)
    return result


# ----------------------------
# Display-only quote
# ----------------------------
async def quote(db: AsyncSession, payload: Any) -> Dict[str, Any]:
    raw = payload.get("items") if isinstance(payload, dict) else None
    items = parse_items(raw)
    async with db.begin():
        products = await load_products(db, [pid for pid, _ in items])

    cart = carts.Cart()
    unavailable = []
    for pid, qty in items:
        product = products.get(pid)
        if product is None or not product.purchasable:
            unavailable.append(pid)
            continue
        cart = carts.reduce(
            cart, {"type": "add", "product": product, "quantity": qty}
        )

    return {
        "ok": True,
        "cart": cart.to_dict(),
        "total_items": cart.total_items,
        "pricing": cart.pricing().as_dict(),
        "unavailable": unavailable,
    }
