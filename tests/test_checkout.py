import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import checkout_body
from kassa import checkout, config, server
from kassa.errors import ConflictError, ProviderError
from kassa.model import orders, payments
from kassa.model.db import Order, PaymentAttempt
from kassa.providers import build_adapters
from kassa.providers.redirect import RedirectAdapter


async def count_orders(db):
    async with db.begin():
        return (await db.execute(select(func.count(Order.id)))).scalar_one()


# ----------------------------
# Manual transfer (Swish)
# ----------------------------
async def test_guest_swish_checkout(client, db, products):
    body = checkout_body([(products["tea-sencha"], 1),
                          (products["thick-forest-honey"], 1)])
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 200, resp.text
    data = resp.json()

    assert data["ok"] is True
    assert data["guest"] is True
    assert data["amount_cents"] == 570
    assert data["currency"] == "SEK"
    assert data["swish_number"] == config.SWISH_NUMBER
    assert data["reference"] == f"SWISH-{data['order_number']}"
    assert data["qr_payload"] == (
        f"C{config.SWISH_NUMBER};5,70;SWISH-{data['order_number']};0"
    )
    assert data["deeplink"].startswith("swish://payment?data=")
    assert "<svg" in data["qr_svg"]
    assert len(data["guest_token"]) == 64
    assert data["pending_url"].startswith(
        "http://shop.test/sv/order-confirmation?order="
    )
    assert data["pending_url"].endswith(f"&token={data['guest_token']}")

    async with db.begin():
        order = await orders.get_order(db, data["order_id"])
        attempt = await payments.get_attempt(db, data["attempt_id"])
        events = await payments.list_events(db, order.id)

    assert order.payment_status == "AWAITING_PAYMENT"
    assert order.payment_method == "SWISH"
    assert order.totals["subtotal"] == 620
    assert order.totals["discount"] == 50
    assert order.totals["total"] == 570
    assert order.totals["promotions"][0]["code"] == "TEA_HONEY_10"
    # only the hash is kept
    assert order.guest_access_token_hash != data["guest_token"]
    assert len(order.guest_access_token_hash) == 64
    assert order.guest_access_token_expires_at > order.created_at
    assert order.provider_metadata["swish_reference"] == data["reference"]
    assert attempt.status == "pending"
    assert attempt.amount_cents == 570
    assert [e.event_type for e in events] == ["swish_manual.created"]


async def test_signed_in_swish_checkout_has_no_token(
    buyer_client, db, products, users
):
    body = checkout_body([(products["tea-sencha"], 2)])
    resp = await buyer_client.post("/api/checkout", json=body)
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["guest"] is False
    assert "guest_token" not in data
    assert "token=" not in data["pending_url"]

    async with db.begin():
        order = await orders.get_order(db, data["order_id"])
    assert order.user_id == users["buyer"]
    assert order.guest_access_token_hash is None


async def test_swish_rejects_other_currency_hint(client, db, products):
    body = checkout_body([(products["tea-sencha"], 1)],
                         currency_hint="EUR")
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 400
    assert resp.json()["code"] == "unsupported_currency"
    assert await count_orders(db) == 0


async def test_swish_rejects_non_sek_products(client, db, products):
    body = checkout_body([(products["espresso-eur"], 1)])
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 400
    assert resp.json()["code"] == "unsupported_currency"
    assert await count_orders(db) == 0


async def test_swish_requires_email(client, products):
    body = checkout_body([(products["tea-sencha"], 1)], customer_email="")
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 400
    assert resp.json()["code"] == "missing_email"


# ----------------------------
# Card (redirect)
# ----------------------------
async def test_card_checkout_creates_session(client, db, products):
    body = checkout_body([(products["rapeseed-oil"], 2)], method="CARD")
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["url"].startswith("/mockpay/mock_")

    async with db.begin():
        order = await orders.get_order_by_number(db, data["order_number"])
        events = await payments.list_events(db, order.id)
    assert order.payment_status == "AWAITING_PAYMENT"
    assert order.payment_provider == "MOCKPAY"
    assert order.provider_session_id == data["url"].rsplit("/", 1)[1]
    assert order.provider_metadata["mock_mode"] == "test"
    assert order.provider_metadata["v"] == 1
    assert order.totals["total"] == 2 * 14900
    assert [e.event_type for e in events] == ["checkout.session.created"]


async def test_card_allows_other_currencies(client, products):
    body = checkout_body([(products["espresso-eur"], 1)], method="CARD")
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 200, resp.text


async def test_provider_failure_leaves_order_awaiting(
    client, db, products, monkeypatch
):
    async def broken(order, ctx):
        raise ProviderError()

    adapter = server.adapters[checkout.PaymentMethod.CARD]
    assert isinstance(adapter, RedirectAdapter)
    monkeypatch.setattr(adapter.processor, "create_session", broken)

    body = checkout_body([(products["tea-sencha"], 1)], method="CARD")
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 502
    assert resp.json() == {"ok": False, "error": "Could not start payment",
                           "code": "provider_error"}

    async with db.begin():
        stuck = (await db.execute(select(Order))).scalars().all()
    assert len(stuck) == 1
    assert stuck[0].payment_status == "AWAITING_PAYMENT"
    assert stuck[0].provider_session_id is None


# ----------------------------
# Validation (nothing persisted)
# ----------------------------
async def test_validation_failures(client, db, products):
    tea = products["tea-sencha"]
    cases = [
        (checkout_body([]), "empty_items"),
        (checkout_body([(tea, 0)]), "invalid_quantity"),
        (checkout_body([(tea, 1.5)]), "invalid_quantity"),
        (checkout_body([(tea, True)]), "invalid_quantity"),
        (checkout_body([(tea, 1)], address={"street": "x"}),
         "invalid_address"),
        (checkout_body([(tea, 1)], customer_name="  "), "missing_name"),
        (checkout_body([(tea, 1)], customer_email="nope"), "invalid_email"),
        (checkout_body([(tea, 1)], payment_method="CASH"),
         "invalid_payment_method"),
        (checkout_body([(tea, 1)], payment_method="PAYPAL"),
         "unsupported_payment_method"),
        (checkout_body([(tea, 1), (products["espresso-eur"], 1)],
                       method="CARD"), "mixed_currency"),
        (checkout_body([(products["free-sample"], 1)]), "product_unpriced"),
        (checkout_body([(products["sold-out-tea"], 1)]), "out_of_stock"),
        (checkout_body([(products["rapeseed-oil"], 4)]),
         "insufficient_stock"),
    ]
    for body, code in cases:
        resp = await client.post("/api/checkout", json=body)
        assert resp.status_code == 400, (code, resp.text)
        assert resp.json()["code"] == code
    assert await count_orders(db) == 0


async def test_unknown_or_draft_product_is_unavailable(client, db, products):
    for pid in ("does-not-exist", products["draft-coffee"]):
        body = checkout_body([(pid, 1)])
        resp = await client.post("/api/checkout", json=body)
        assert resp.status_code == 404
        assert resp.json()["code"] == "product_unavailable"
    assert await count_orders(db) == 0


async def test_duplicate_lines_are_merged(client, db, products):
    oil = products["rapeseed-oil"]
    body = checkout_body([(oil, 1), (oil, 1)], method="CARD")
    resp = await client.post("/api/checkout", json=body)
    assert resp.status_code == 200, resp.text
    async with db.begin():
        order = await orders.get_order_by_number(
            db, resp.json()["order_number"]
        )
    assert [(i["product_id"], i["quantity"]) for i in order.items] == [
        (oil, 2)
    ]

    # merged quantity is what gets checked against stock
    body = checkout_body([(oil, 2), (oil, 2)], method="CARD")
    resp = await client.post("/api/checkout", json=body)
    assert resp.json()["code"] == "insufficient_stock"


async def test_client_totals_are_ignored(client, db, products):
    body = checkout_body([(products["tea-sencha"], 1)],
                         totals={"total": 1}, amount_cents=1)
    resp = await client.post("/api/checkout", json=body)
    assert resp.json()["amount_cents"] == 120


async def test_order_number_collision_retries(db, products, monkeypatch):
    seen = []
    real_insert = orders.insert_order

    async def flaky_insert(session, **fields):
        seen.append(fields["order_number"])
        if len(seen) == 1:
            raise IntegrityError("INSERT", {}, Exception("duplicate"))
        return await real_insert(session, **fields)

    monkeypatch.setattr(orders, "insert_order", flaky_insert)

    result = await checkout.checkout(
        db, checkout_body([(products["tea-sencha"], 1)]), build_adapters(),
    )
    assert len(seen) == 2
    assert result["order_number"] == seen[1]

    async with db.begin():
        n = (await db.execute(
            select(func.count(PaymentAttempt.id))
        )).scalar_one()
    assert n == 1


async def test_order_number_exhaustion(db, products, monkeypatch):
    async def always_taken(session, **fields):
        raise IntegrityError("INSERT", {}, Exception("duplicate"))

    monkeypatch.setattr(orders, "insert_order", always_taken)
    monkeypatch.setattr(config, "ORDER_NUMBER_ATTEMPTS", 3)

    with pytest.raises(ConflictError):
        await checkout.checkout(
            db, checkout_body([(products["tea-sencha"], 1)]),
            build_adapters(),
        )


# ----------------------------
# Quote
# ----------------------------
async def test_quote(client, products):
    body = {"items": [
        {"product_id": products["tea-sencha"], "quantity": 1},
        {"product_id": products["thick-forest-honey"], "quantity": 1},
        {"product_id": products["rapeseed-oil"], "quantity": 9},
        {"product_id": products["free-sample"], "quantity": 1},
    ]}
    resp = await client.post("/api/cart/quote", json=body)
    assert resp.status_code == 200, resp.text
    data = resp.json()
    # oil clamps to the 3 in stock
    assert data["total_items"] == 5
    assert data["pricing"]["discount_total"] == 50
    assert data["pricing"]["total"] == 120 + 500 + 3 * 14900 - 50
    assert data["unavailable"] == [products["free-sample"]]
