import json
from urllib.parse import unquote

from kassa.providers.swish import (
    MESSAGE_MAX_LEN, build_deeplink, build_qr_payload, digits_only,
    format_amount, reference_for, render_qr_svg, sanitize_message,
)


def test_format_amount_uses_comma():
    assert format_amount(62000) == "620,00"
    assert format_amount(570) == "5,70"
    assert format_amount(5) == "0,05"


def test_digits_only():
    assert digits_only("123-055 89 73") == "1230558973"


def test_sanitize_message():
    assert sanitize_message("a;b;c") == "abc"
    assert len(sanitize_message("x" * 80)) == MESSAGE_MAX_LEN


def test_qr_payload_format():
    payload = build_qr_payload("123-055 8973", 57000,
                               reference_for("TN-20260101-ABC123"))
    assert payload == "C1230558973;570,00;SWISH-TN-20260101-ABC123;0"


def test_qr_payload_encodes_message():
    payload = build_qr_payload("1230558973", 100, "Order 7; thanks")
    _, _, msg, flag = payload.split(";")
    assert msg == "Order%207%20thanks"
    assert flag == "0"


def test_deeplink_carries_same_fields():
    link = build_deeplink("1230558973", 57000, "SWISH-TN-1")
    assert link.startswith("swish://payment?data=")
    data = json.loads(unquote(link.split("data=", 1)[1]))
    assert data["payee"]["value"] == "1230558973"
    assert data["amount"]["value"] == "570.00"
    assert data["message"]["value"] == "SWISH-TN-1"


def test_render_qr_svg():
    svg = render_qr_svg("C1230558973;570,00;SWISH-TN-1;0")
    assert "<svg" in svg
    assert "path" in svg
