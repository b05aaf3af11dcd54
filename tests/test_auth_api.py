from __future__ import annotations

from red2blue import config


def test_register_login_me(client):
    r = client.post(
        "/api/auth/register",
        json={"email": "Sam@Example.com", "username": "sam", "password": "Password123!"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["email"] == "sam@example.com"
    assert r.json()["subscription_tier"] == "free"
    assert r.json()["is_subscribed"] is False

    # session cookie alone is enough
    assert client.get("/api/auth/me").json()["username"] == "sam"

    client.post("/api/auth/logout")
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401

    token = client.post("/api/auth/login", json={"username": "sam@example.com", "password": "Password123!"})
    assert token.status_code == 200
    bearer = {"Authorization": f"Bearer {token.json()['access_token']}"}
    assert client.get("/api/auth/me", headers=bearer).json()["email"] == "sam@example.com"


def test_register_conflicts(client, make_user):
    make_user(email="taken@example.com", username="taken")

    r = client.post("/api/auth/register", json={"email": "taken@example.com", "username": "x-new", "password": "Password123!"})
    assert r.status_code == 409
    assert r.json()["detail"]["field"] == "email"

    r = client.post("/api/auth/register", json={"email": "new@example.com", "username": "taken", "password": "Password123!"})
    assert r.status_code == 409
    assert r.json()["detail"]["field"] == "username"


def test_bad_login(client, make_user):
    make_user(username="golfer", password="Password123!")
    r = client.post("/api/auth/login", json={"username": "golfer", "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "INVALID_CREDENTIALS"


def test_oauth_form_login(client, make_user):
    make_user(username="formuser", password="Password123!")
    r = client.post("/api/auth/token", data={"username": "formuser", "password": "Password123!"})
    assert r.status_code == 200
    assert r.json()["token_type"] == "bearer"
    assert config.SESSION_COOKIE_NAME in client.cookies


def test_inactive_user_is_treated_as_signed_out(client, db, make_user, headers_for):
    user = make_user()
    h = headers_for(user)
    user.is_active = False
    db.commit()

    assert client.get("/api/auth/me", headers=h).status_code == 401


def test_garbage_token_is_signed_out(client):
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "SIGN_IN_REQUIRED"
