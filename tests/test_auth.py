"""Signup, login and current-user lookup."""

from datetime import timedelta

import main
from auth import Identity, create_access_token
from database import kv_delete, kv_get


def test_signup_creates_user_and_empty_indexes(client):
    res = client.post("/signup", json={
        "email": "Ann@Example.com", "password": "pw123456", "name": "Ann",
    })
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    user = body["user"]
    assert user["role"] == "user"
    assert user["email"] == "ann@example.com"

    stored = kv_get(f"users:{user['id']}")
    assert stored["name"] == "Ann"
    assert "createdAt" in stored
    assert kv_get(f"user_products:{user['id']}") == []
    assert kv_get(f"user_orders:{user['id']}") == []


def test_signup_requires_email_password_and_name(client):
    res = client.post("/signup", json={"email": "a@example.com", "password": "pw"})
    assert res.status_code == 400
    assert res.json() == {"error": "Email, password, and name are required"}


def test_signup_rejects_malformed_email(client):
    res = client.post("/signup", json={"email": "nope", "password": "pw", "name": "X"})
    assert res.status_code == 400
    assert "email" in res.json()["error"]


def test_signup_duplicate_email_surfaces_provider_message(client, signup):
    signup("dup@example.com", "First")
    res = client.post("/signup", json={
        "email": "dup@example.com", "password": "pw", "name": "Second",
    })
    assert res.status_code == 400
    assert "already been registered" in res.json()["error"]


def test_current_user_role_matches_signup_request(client, signup):
    for email, role in (("u@example.com", None), ("a@example.com", "admin"), ("x@example.com", "superuser")):
        _, headers = signup(email, "Someone", role=role)
        res = client.get("/user", headers=headers)
        assert res.status_code == 200
        expected = "admin" if role == "admin" else "user"
        assert res.json()["user"]["role"] == expected


def test_admin_signup_can_be_disabled(client, signup, monkeypatch):
    monkeypatch.setattr(main, "ALLOW_ADMIN_SIGNUP", False)
    user, _ = signup("wannabe@example.com", "Wannabe", role="admin")
    assert user["role"] == "user"


def test_login_with_wrong_password(client, signup):
    signup("ann@example.com", "Ann")
    res = client.post("/auth/token", data={"username": "ann@example.com", "password": "wrong"})
    assert res.status_code == 400
    assert res.json() == {"error": "Incorrect username or password"}


def test_current_user_without_token(client):
    res = client.get("/user")
    assert res.status_code == 401
    assert res.json() == {"error": "No access token provided"}
    assert res.headers["www-authenticate"] == "Bearer"


def test_current_user_with_garbage_token(client):
    res = client.get("/user", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json() == {"error": "Invalid or expired token"}


def test_current_user_with_expired_token(client, signup):
    user, _ = signup()
    token = create_access_token(Identity(id=user["id"], email=user["email"]), timedelta(minutes=-1))
    res = client.get("/user", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_current_user_missing_mirror_record(client, signup):
    user, headers = signup()
    kv_delete(f"users:{user['id']}")
    res = client.get("/user", headers=headers)
    assert res.status_code == 404
    assert res.json() == {"error": "User data not found"}
