from __future__ import annotations

from red2blue import billing, config, models

SIGNUP_FORM = {"email": "formgolfer@example.com", "username": "formgolfer", "password": "Password123!"}


def _confirmed_checkout(db, tier="premium", session_id="cs_form_1"):
    record = models.CheckoutRecord(tier=tier, state="confirmed", amount_cents=49000, stripe_session_id=session_id)
    db.add(record)
    db.commit()
    return record


# -------------------------------------------------
# Signup after payment (browser form)
# -------------------------------------------------
def test_signup_form_posts_to_the_server(client):
    page = client.get("/signup-after-payment?tier=premium&session_id=cs_form_1")
    assert "method='post' action='/signup-after-payment'" in page.text
    assert "value='cs_form_1'" in page.text


def test_signup_form_creates_entitled_account(client, db, monkeypatch):
    monkeypatch.setattr(billing, "retrieve_paid_session", lambda session_id: None)
    _confirmed_checkout(db)

    r = client.post(
        "/signup-after-payment",
        data={**SIGNUP_FORM, "tier": "premium", "session_id": "cs_form_1"},
        follow_redirects=False,
    )
    assert r.status_code == 303
    assert r.headers["location"] == "/account"
    assert config.SESSION_COOKIE_NAME in client.cookies

    user = db.query(models.User).filter_by(email="formgolfer@example.com").one()
    assert user.subscription_tier == "premium"
    assert user.is_subscribed is True

    account = client.get("/account")
    assert account.status_code == 200
    assert "formgolfer" in account.text
    assert "$490" in account.text


def test_signup_form_conflict_keeps_tier_and_hides_password(client, db, make_user, monkeypatch):
    monkeypatch.setattr(billing, "retrieve_paid_session", lambda session_id: None)
    _confirmed_checkout(db)
    make_user(email=SIGNUP_FORM["email"], password="SomethingElse1!")

    r = client.post("/signup-after-payment", data={**SIGNUP_FORM, "session_id": "cs_form_1"})
    assert r.status_code == 409
    assert "already registered" in r.text
    assert "value='premium'" in r.text
    assert "value='cs_form_1'" in r.text
    assert SIGNUP_FORM["password"] not in r.text


def test_signup_form_rejects_short_password(client, db):
    r = client.post("/signup-after-payment", data={**SIGNUP_FORM, "password": "short", "tier": "premium"})
    assert r.status_code == 422
    assert "8+ characters" in r.text
    assert db.query(models.User).count() == 0


# -------------------------------------------------
# Sign in + account
# -------------------------------------------------
def test_login_form(client, make_user):
    make_user("ultimate", username="pageuser", password="Password123!")

    bad = client.post("/login", data={"username": "pageuser", "password": "nope"})
    assert bad.status_code == 401
    assert "Invalid username or password" in bad.text

    ok = client.post("/login", data={"username": "pageuser", "password": "Password123!"}, follow_redirects=False)
    assert ok.status_code == 303
    assert ok.headers["location"] == "/account"

    account = client.get("/account")
    assert "Lifetime access" in account.text


def test_account_page_needs_sign_in(client):
    assert client.get("/account").status_code == 401
    r = client.get("/account", headers={"Accept": "text/html"}, follow_redirects=False)
    assert r.headers["location"] == "/login"


def test_login_page_form_method(client):
    assert "method='post' action='/login'" in client.get("/login").text


# -------------------------------------------------
# Upgrade button
# -------------------------------------------------
def test_upgrade_form_redirects_to_stripe(client, db, monkeypatch):
    monkeypatch.setattr(
        billing,
        "create_checkout_session",
        lambda **kw: {"id": "cs_form_up", "url": "https://checkout.stripe.test/cs_form_up"},
    )
    page = client.get("/upgrade?tier=ultimate")
    assert "method='post' action='/upgrade'" in page.text

    r = client.post("/upgrade", data={"tier": "ultimate"}, follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "https://checkout.stripe.test/cs_form_up"
    assert client.cookies.get(config.PENDING_TIER_COOKIE_NAME) == "ultimate"

    record = db.query(models.CheckoutRecord).filter_by(stripe_session_id="cs_form_up").one()
    assert record.state == "redirected"


def test_upgrade_form_when_billing_is_off(client, monkeypatch):
    monkeypatch.setenv("BILLING_ENABLED", "false")
    r = client.post("/upgrade", data={"tier": "premium"})
    assert r.status_code == 503
    assert "not available" in r.text
