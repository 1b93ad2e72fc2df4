import os
import tempfile
import uuid

_TMP = tempfile.mkdtemp(prefix="kassa-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["PAYMENT_PROCESSOR"] = "mockpay"
os.environ["WEBHOOK_GATE_BACKEND"] = "pg"
os.environ["MOCK_SECRET"] = "test-mock-secret"
os.environ["SITE_URL"] = "http://shop.test"
os.environ["NOTIFY_URL"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import httpx  # noqa: E402
import pytest  # noqa: E402

from kassa import notify, server  # noqa: E402
from kassa.auth import ADMIN_ROLE, create_user  # noqa: E402
from kassa.helpers import now_ts  # noqa: E402
from kassa.model.db import Base, Product  # noqa: E402

ADMIN = ("admin@example.com", "admin-pass")
BUYER = ("buyer@example.com", "buyer-pass")

ADDRESS = {
    "street": "Storgatan 1",
    "city": "Umeå",
    "postal_code": "903 26",
    "country": "SE",
}

# slug -> (category, price_cents, inventory, status, currency)
CATALOG = {
    "tea-sencha": ("TEA", 120, 10, "PUBLISHED", "SEK"),
    "thick-forest-honey": ("SUPERFOOD", 500, 10, "PUBLISHED", "SEK"),
    "rapeseed-oil": ("OIL", 14900, 3, "PUBLISHED", "SEK"),
    "draft-coffee": ("COFFEE", 9900, 10, "DRAFT", "SEK"),
    "free-sample": ("OTHER", 0, 10, "PUBLISHED", "SEK"),
    "sold-out-tea": ("TEA", 8900, 0, "PUBLISHED", "SEK"),
    "espresso-eur": ("COFFEE", 1200, 10, "PUBLISHED", "EUR"),
}


@pytest.fixture
async def app():
    async with server.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    async with server.app.router.lifespan_context(server.app):
        yield server.app
    await server.engine.dispose()


@pytest.fixture
async def db(app):
    async with server.SessionAsync() as session:
        yield session


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://testserver"
    ) as c:
        yield c


@pytest.fixture
async def products(db):
    ids = {}
    async with db.begin():
        for slug, (category, price, inventory, status, currency) in (
            CATALOG.items()
        ):
            pid = uuid.uuid4().hex
            db.add(Product(
                id=pid, slug=slug, title=slug.replace("-", " ").title(),
                category=category, price_cents=price, currency=currency,
                status=status, inventory=inventory, created_at=now_ts(),
            ))
            ids[slug] = pid
    return ids


@pytest.fixture
async def users(db):
    async with db.begin():
        admin = await create_user(db, *ADMIN, roles=(ADMIN_ROLE,))
        buyer = await create_user(db, *BUYER)
    return {"admin": admin.id, "buyer": buyer.id}


async def _logged_in(app, email, password):
    transport = httpx.ASGITransport(app=app)
    c = httpx.AsyncClient(transport=transport, base_url="http://testserver")
    resp = await c.post("/auth/login",
                        json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return c


@pytest.fixture
async def admin_client(app, users):
    c = await _logged_in(app, *ADMIN)
    yield c
    await c.aclose()


@pytest.fixture
async def buyer_client(app, users):
    c = await _logged_in(app, *BUYER)
    yield c
    await c.aclose()


@pytest.fixture
def sent(monkeypatch):
    """Captured order notifications instead of real deliveries."""
    calls = []

    async def fake_send(http, event_type, order):
        calls.append((event_type, order))
        return True

    monkeypatch.setattr(notify, "send_order_event", fake_send)
    return calls


def checkout_body(items, method="MANUAL", **overrides):
    body = {
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
        "customer_name": "Alva Berg",
        "customer_email": "alva@example.com",
        "customer_phone": "+46701234567",
        "address": dict(ADDRESS),
        "lang": "sv",
        "payment_method": method,
    }
    body.update(overrides)
    return body
