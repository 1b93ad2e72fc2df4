import json

import httpx

from kassa import config, notify

ORDER = {"order_number": "TN-20260101-ABCDEF", "payment_status": "PAID"}


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_posts_with_internal_secret(monkeypatch):
    monkeypatch.setattr(config, "NOTIFY_URL", "http://notify.test/orders")
    monkeypatch.setattr(config, "INTERNAL_FUNCTION_SECRET", "s3cret")
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(202)

    async with client_for(handler) as http:
        assert await notify.send_order_event(http, "order.paid", ORDER)

    assert seen[0].headers[notify.SECRET_HEADER] == "s3cret"
    assert json.loads(seen[0].content) == {"type": "order.paid",
                                           "order": ORDER}


async def test_failures_are_swallowed(monkeypatch):
    monkeypatch.setattr(config, "NOTIFY_URL", "http://notify.test/orders")

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    async with client_for(refused) as http:
        assert not await notify.send_order_event(http, "order.paid", ORDER)

    async with client_for(lambda r: httpx.Response(500)) as http:
        assert not await notify.send_order_event(http, "order.paid", ORDER)


async def test_skipped_without_url(monkeypatch):
    monkeypatch.setattr(config, "NOTIFY_URL", "")

    def handler(request):
        raise AssertionError("should not be called")

    async with client_for(handler) as http:
        assert not await notify.send_order_event(http, "order.paid", ORDER)
