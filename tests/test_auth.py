from conftest import ADMIN, BUYER
from kassa.helpers import hash_password, verify_password


def test_password_hash_roundtrip():
    encoded = hash_password("hunter2", iterations=1000)
    assert encoded.startswith("pbkdf2_sha256$1000$")
    assert verify_password("hunter2", encoded)
    assert not verify_password("hunter3", encoded)
    assert not verify_password("hunter2", None)
    assert not verify_password("hunter2", "md5$x")


async def test_login_and_logout(client, users):
    resp = await client.post("/auth/login", json={
        "email": BUYER[0].upper(), "password": BUYER[1],
    })
    assert resp.status_code == 200
    assert resp.json()["user_id"] == users["buyer"]

    resp = await client.post("/auth/logout")
    assert resp.json() == {"ok": True}
    assert (await client.get("/api/admin/orders")).status_code == 401


async def test_bad_credentials(client, users):
    resp = await client.post("/auth/login", json={
        "email": ADMIN[0], "password": "wrong",
    })
    assert resp.status_code == 401
    assert resp.json()["code"] == "bad_credentials"

    resp = await client.post("/auth/login", json={
        "email": "nobody@example.com", "password": "x",
    })
    assert resp.status_code == 401

    resp = await client.post("/auth/login", json={"email": ADMIN[0]})
    assert resp.status_code == 400


async def test_non_object_body_is_a_bad_request(client):
    resp = await client.post("/api/checkout", json=[1, 2])
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_body"
