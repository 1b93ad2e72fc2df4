from kassa.pricing import (
    AppliedPromotion, LineItem, PricedProduct, bps_of, price,
    tea_honey_bundle,
)


def product(slug, category="OTHER", price_cents=100, currency="SEK",
            inventory=10):
    return PricedProduct(
        id=f"id-{slug}", slug=slug, category=category,
        price_cents=price_cents, currency=currency, inventory=inventory,
    )


TEA = product("tea-sencha", "TEA", 120)
HONEY = product("thick-forest-honey", "SUPERFOOD", 500)
OIL = product("rapeseed-oil", "OIL", 14900)


def test_subtotal_is_weighted_sum():
    b = price([LineItem(TEA, 3), LineItem(OIL, 2)])
    assert b.subtotal == 3 * 120 + 2 * 14900
    assert b.promotions == []
    assert b.total == b.subtotal


def test_tea_and_honey_bundle():
    b = price([LineItem(TEA, 1), LineItem(HONEY, 1)])
    assert b.subtotal == 620
    assert b.discount_total == 50
    assert b.total == 570
    assert [p.code for p in b.promotions] == ["TEA_HONEY_10"]
    assert b.promotions[0].discount_cents == 50


def test_bundle_discount_is_floored():
    honey = product("thick-forest-honey", "SUPERFOOD", 999)
    b = price([LineItem(TEA, 1), LineItem(honey, 1)])
    assert b.discount_total == 99


def test_bundle_needs_both_sides():
    assert price([LineItem(TEA, 2)]).promotions == []
    assert price([LineItem(HONEY, 2)]).promotions == []


def test_tea_recognised_by_slug_prefix():
    loose = product("tea-rooibos", "OTHER", 300)
    b = price([LineItem(loose, 1), LineItem(HONEY, 2)])
    assert b.discount_total == 100


def test_zero_discount_skips_promotion():
    cheap = product("thick-forest-honey", "SUPERFOOD", 5)
    assert tea_honey_bundle([LineItem(TEA, 1), LineItem(cheap, 1)]) is None


def test_rule_order_does_not_matter():
    lines = [LineItem(TEA, 1), LineItem(OIL, 1), LineItem(HONEY, 3)]
    assert price(lines).as_dict() == price(list(reversed(lines))).as_dict()


def test_empty_cart_is_all_zero():
    b = price([])
    assert (b.subtotal, b.discount_total, b.total) == (0, 0, 0)
    assert b.promotions == []


def test_total_never_negative():
    def everything_free(lines):
        return AppliedPromotion("ALL", "All free", 10_000_000)

    b = price([LineItem(OIL, 1)], rules=(everything_free,))
    assert b.discount_total == 10_000_000
    assert b.total == 0


def test_zero_price_items_still_counted():
    free = product("free-sample", "OTHER", 0)
    b = price([LineItem(free, 4), LineItem(TEA, 1)])
    assert b.subtotal == 120
    assert not free.purchasable


def test_bps_of():
    assert bps_of(500, 1000) == 50
    assert bps_of(1, 1000) == 0
    assert bps_of(12345, 250) == 308
