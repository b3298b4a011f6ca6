import re
from datetime import datetime, timezone

import auth
import database
from tests.conftest import make_user


def register(client, email="new@example.com"):
    return client.post("/api/auth/register", json={
        "email": email, "password": "hunter22", "full_name": "New Shopper",
    })


def test_register_verify_login_flow(client, outbox):
    res = register(client)
    assert res.status_code == 201
    stored = database.db["users"].find_one({"email": "new@example.com"})
    assert stored["is_verified"] is False
    assert stored["password_hash"] != "hunter22"
    assert re.fullmatch(r"\d{6}", stored["otp"])
    assert outbox[0]["to"] == ["new@example.com"]
    assert stored["otp"] in outbox[0]["text"]

    res = client.post("/api/auth/login", json={"email": "new@example.com", "password": "hunter22"})
    assert res.status_code == 403

    res = client.post("/api/auth/verify-otp", json={"email": "new@example.com", "otp": "wrong-otp"})
    assert res.status_code == 401

    res = client.post("/api/auth/verify-otp", json={"email": "new@example.com", "otp": stored["otp"]})
    assert res.status_code == 200
    verified = database.db["users"].find_one({"email": "new@example.com"})
    assert verified["is_verified"] is True
    assert "otp" not in verified

    res = client.post("/api/auth/verify-otp", json={"email": "new@example.com", "otp": stored["otp"]})
    assert res.status_code == 401

    res = client.post("/api/auth/login", json={"email": "new@example.com", "password": "hunter22"})
    assert res.status_code == 200
    assert "token" in res.cookies
    me = client.get("/api/auth/me").json()["user"]
    assert me["email"] == "new@example.com"
    assert "password_hash" not in me


def test_register_duplicate_email(client):
    assert register(client).status_code == 201
    res = register(client)
    assert res.status_code == 409
    assert res.json() == {"error": "User already exists."}


def test_register_requires_fields(client):
    res = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert res.status_code == 400
    assert "error" in res.json()


def test_verify_unknown_user(client):
    res = client.post("/api/auth/verify-otp", json={"email": "ghost@example.com", "otp": "123456"})
    assert res.status_code == 404


def test_login_wrong_password(client):
    make_user(email="a@example.com")
    res = client.post("/api/auth/login", json={"email": "a@example.com", "password": "nope"})
    assert res.status_code == 401
    assert res.json()["error"] == "Invalid credentials."


def test_token_claims_and_expiry():
    token = auth.create_token({"id": "abc", "email": "a@example.com", "role": "admin"})
    claims = auth.read_token_claims(token)
    assert claims["userId"] == "abc"
    assert claims["role"] == "admin"
    remaining = claims["exp"] - datetime.now(timezone.utc).timestamp()
    assert 7 * 86400 - 60 < remaining <= 7 * 86400
    assert auth.read_token_claims("garbage") is None


def test_me_requires_auth(client):
    res = client.get("/api/auth/me")
    assert res.status_code == 401
    assert res.json() == {"error": "Not authenticated."}


def test_bearer_header_is_accepted(client):
    user_id = make_user(email="b@example.com")
    token = auth.create_token({"id": user_id, "email": "b@example.com", "role": "user"})
    res = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.json()["user"]["id"] == user_id


def test_update_profile(client, shopper):
    res = client.patch("/api/auth/me", json={"address": "12 MG Road"})
    assert res.status_code == 200
    assert res.json()["user"]["address"] == "12 MG Road"
    assert client.patch("/api/auth/me", json={}).status_code == 400


def test_logout_clears_cookie(client, shopper):
    res = client.post("/api/auth/logout")
    assert res.status_code == 200
    assert "Max-Age=0" in res.headers["set-cookie"]
    assert "HttpOnly" in res.headers["set-cookie"]


def test_admin_api_gate(client, shopper):
    res = client.get("/api/admin/users")
    assert res.status_code == 403
    client.cookies.clear()
    assert client.get("/api/admin/users").status_code == 401


def test_admin_pages_redirect_to_sign_in(client, shopper):
    res = client.get("/admin/orders", follow_redirects=False)
    assert res.status_code == 307
    assert res.headers["location"] == "/sign-in?redirect_url=/admin/orders"
    client.cookies.clear()
    res = client.get("/checkout", follow_redirects=False)
    assert res.headers["location"] == "/sign-in?redirect_url=/checkout"


def test_demoted_admin_is_rejected_by_route_check(admin_client):
    database.db["users"].update_one(
        {"_id": database.parse_object_id(admin_client.admin_id)}, {"$set": {"role": "user"}}
    )
    res = admin_client.get("/api/admin/users")
    assert res.status_code == 403


def test_register_rolls_back_when_otp_email_fails(client, monkeypatch):
    import mailer

    def broken_send(to, subject, text, html):
        raise RuntimeError("mail provider down")

    monkeypatch.setattr(mailer, "send_email", broken_send)
    res = register(client)
    assert res.status_code == 500
    assert res.json() == {"error": "Registration failed."}
    assert database.db["users"].find_one({"email": "new@example.com"}) is None
