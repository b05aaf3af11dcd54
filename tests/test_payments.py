from __future__ import annotations

import pytest

from red2blue import billing, config, models

SIGNUP = {"email": "newgolfer@example.com", "username": "newgolfer", "password": "Password123!"}


@pytest.fixture()
def no_stripe_lookup(monkeypatch):
    monkeypatch.setattr(billing, "retrieve_paid_session", lambda session_id: None)


def _record(db, tier="premium", state="redirected", session_id="cs_test_1", user_id=None):
    record = models.CheckoutRecord(
        tier=tier,
        state=state,
        amount_cents=49000 if tier == "premium" else 219000,
        stripe_session_id=session_id,
        user_id=user_id,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def _paid_event(session_id="cs_test_1", checkout_id=None):
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_status": "paid",
                "customer": "cus_123",
                "customer_details": {"email": "newgolfer@example.com"},
                "metadata": {"checkout_id": str(checkout_id)} if checkout_id else {},
            }
        },
    }


# -------------------------------------------------
# Success page
# -------------------------------------------------
def test_success_page_is_idempotent(client):
    first = client.get("/payment-success?tier=premium")
    second = client.get("/payment-success?tier=premium")

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert first.json()["tier"] == "premium"
    assert first.json()["next_url"] == "/signup-after-payment?tier=premium"
    assert first.json()["redirect_delay_seconds"] == config.PAYMENT_REDIRECT_DELAY_SECONDS
    assert client.cookies.get(config.PENDING_TIER_COOKIE_NAME) == "premium"


def test_success_page_html_redirects_after_delay(client):
    r = client.get("/payment-success?tier=premium", headers={"Accept": "text/html"})
    assert r.status_code == 200
    delay = config.PAYMENT_REDIRECT_DELAY_SECONDS
    assert f"content='{delay};url=/signup-after-payment?tier=premium'" in r.text


def test_signup_page_defaults_to_free(client):
    r = client.get("/api/payment/signup-context")
    assert r.json()["tier"] == "free"
    assert r.json()["source"] == "default"

    r = client.get("/api/payment/signup-context?tier=diamond")
    assert r.json()["tier"] == "free"


def test_pending_tier_cookie_is_used_when_url_has_none(client):
    client.get("/payment-success?tier=ultimate")
    r = client.get("/api/payment/signup-context")
    assert r.json()["tier"] == "ultimate"
    assert r.json()["source"] == "pending"


def test_success_then_signup_shows_premium_price(client):
    out = client.get("/payment-success?tier=premium").json()

    ctx = client.get("/api/payment/signup-context?tier=premium").json()
    assert ctx["tier"] == "premium"
    assert ctx["summary"]["price_display"] == "$490"
    assert ctx["summary"]["label"] == "Premium"

    page = client.get(out["next_url"])
    assert page.status_code == 200
    assert "$490" in page.text
    assert "value='premium'" in page.text


def test_success_page_prefers_the_checkout_record(client, db, no_stripe_lookup):
    _record(db, tier="ultimate", session_id="cs_test_u")

    out = client.get("/payment-success?tier=premium&session_id=cs_test_u").json()
    assert out["tier"] == "ultimate"
    assert out["state"] == "redirected"
    assert out["next_url"] == "/signup-after-payment?tier=ultimate&session_id=cs_test_u"


def test_success_page_confirms_with_stripe_when_webhook_is_late(client, db, monkeypatch):
    record = _record(db, session_id="cs_test_late")
    monkeypatch.setattr(
        billing,
        "retrieve_paid_session",
        lambda session_id: {"payment_status": "paid", "customer": "cus_9", "customer_details": {"email": "a@b.com"}},
    )

    out = client.get("/payment-success?session_id=cs_test_late").json()
    assert out["state"] == "setup_pending"

    db.refresh(record)
    assert record.stripe_customer_id == "cus_9"
    assert record.confirmed_at is not None


# -------------------------------------------------
# Checkout
# -------------------------------------------------
def test_checkout_creates_record_and_remembers_tier(client, db, monkeypatch):
    monkeypatch.setattr(
        billing,
        "create_checkout_session",
        lambda **kw: {"id": "cs_test_new", "url": "https://checkout.stripe.test/cs_test_new"},
    )

    r = client.post("/api/payment/checkout", json={"tier": "ultimate"})
    assert r.status_code == 200, r.text
    assert r.json()["url"].endswith("cs_test_new")
    assert client.cookies.get(config.PENDING_TIER_COOKIE_NAME) == "ultimate"

    record = db.get(models.CheckoutRecord, r.json()["checkout_id"])
    assert record.state == "redirected"
    assert record.amount_cents == 219000


def test_checkout_rejects_free_tier(client):
    assert client.post("/api/payment/checkout", json={"tier": "free"}).status_code == 422


def test_checkout_disabled_when_billing_off(client, monkeypatch):
    monkeypatch.setenv("BILLING_ENABLED", "false")
    r = client.post("/api/payment/checkout", json={"tier": "premium"})
    assert r.status_code == 503
    assert r.json()["detail"]["code"] == "BILLING_DISABLED"


# -------------------------------------------------
# Signup after payment
# -------------------------------------------------
def test_signup_with_confirmed_checkout_is_entitled(client, db, no_stripe_lookup):
    record = _record(db, state="confirmed")

    r = client.post("/api/payment/signup", json={**SIGNUP, "session_id": "cs_test_1"})
    assert r.status_code == 201, r.text
    assert r.json()["subscription_tier"] == "premium"
    assert r.json()["is_subscribed"] is True

    db.refresh(record)
    assert record.state == "entitled"
    assert record.user_id == r.json()["id"]
    assert config.PENDING_TIER_COOKIE_NAME not in client.cookies


def test_signup_resubmission_returns_same_account(client, db, no_stripe_lookup):
    _record(db, state="confirmed")

    first = client.post("/api/payment/signup", json={**SIGNUP, "session_id": "cs_test_1"})
    again = client.post("/api/payment/signup", json={**SIGNUP, "session_id": "cs_test_1"})

    assert first.status_code == 201
    assert again.status_code == 200
    assert again.json()["id"] == first.json()["id"]
    assert db.query(models.User).count() == 1


def test_url_tier_alone_does_not_grant_paid_access(client):
    client.get("/payment-success?tier=premium")

    r = client.post("/api/payment/signup", json={**SIGNUP, "tier": "premium"})
    assert r.status_code == 201
    assert r.json()["subscription_tier"] == "free"
    # still remembered for when the payment shows up
    assert client.cookies.get(config.PENDING_TIER_COOKIE_NAME) == "premium"


def test_url_tier_is_trusted_when_billing_is_off(client, monkeypatch):
    monkeypatch.setenv("BILLING_ENABLED", "false")
    r = client.post("/api/payment/signup", json={**SIGNUP, "tier": "ultimate"})
    assert r.status_code == 201
    assert r.json()["subscription_tier"] == "ultimate"


def test_signup_conflict_keeps_the_paid_tier(client, db, make_user, no_stripe_lookup):
    make_user("free", email=SIGNUP["email"], password="SomethingElse1!")
    _record(db, state="confirmed")

    r = client.post("/api/payment/signup", json={**SIGNUP, "session_id": "cs_test_1"})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "ACCOUNT_CONFLICT"
    assert detail["field"] == "email"
    assert detail["tier"] == "premium"
    assert detail["retry_url"] == "/signup-after-payment?tier=premium&session_id=cs_test_1"

    # retry with a fresh email still lands on premium
    retry = client.post(
        "/api/payment/signup",
        json={**SIGNUP, "email": "other@example.com", "username": "other", "session_id": "cs_test_1"},
    )
    assert retry.status_code == 201
    assert retry.json()["subscription_tier"] == "premium"


def test_username_conflict(client, make_user):
    make_user("free", username=SIGNUP["username"])
    r = client.post("/api/payment/signup", json={**SIGNUP, "tier": "premium"})
    assert r.status_code == 409
    assert r.json()["detail"]["field"] == "username"


# -------------------------------------------------
# Webhook
# -------------------------------------------------
def test_webhook_upgrades_account_created_before_confirmation(client, db, monkeypatch, no_stripe_lookup):
    record = _record(db)

    r = client.post("/api/payment/signup", json={**SIGNUP, "session_id": "cs_test_1"})
    assert r.status_code == 201
    assert r.json()["subscription_tier"] == "free"
    user_id = r.json()["id"]

    monkeypatch.setattr(billing, "construct_event", lambda payload, sig: _paid_event())
    for _ in range(2):
        hook = client.post("/api/payment/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1"})
        assert hook.status_code == 200
        assert hook.json()["state"] == "entitled"

    user = db.get(models.User, user_id)
    db.refresh(user)
    assert user.subscription_tier == "premium"
    assert user.is_subscribed is True
    assert user.stripe_customer_id == "cus_123"

    db.refresh(record)
    assert record.state == "entitled"


def test_webhook_finds_record_by_metadata(client, db, monkeypatch):
    record = _record(db, session_id="cs_other")
    monkeypatch.setattr(
        billing, "construct_event", lambda payload, sig: _paid_event(session_id="cs_missing", checkout_id=record.id)
    )

    hook = client.post("/api/payment/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1"})
    assert hook.json()["checkout_id"] == record.id

    db.refresh(record)
    assert record.state == "confirmed"


def test_webhook_ignores_other_events(client, monkeypatch):
    monkeypatch.setattr(billing, "construct_event", lambda payload, sig: {"type": "invoice.paid", "data": {"object": {}}})
    hook = client.post("/api/payment/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1"})
    assert hook.json()["ignored"] is True


def test_webhook_never_lowers_a_tier(client, db, make_user, monkeypatch):
    user = make_user("ultimate")
    record = _record(db, tier="premium", user_id=user.id)
    monkeypatch.setattr(billing, "construct_event", lambda payload, sig: _paid_event())

    client.post("/api/payment/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1"})

    db.refresh(user)
    db.refresh(record)
    assert user.subscription_tier == "ultimate"
    assert record.state == "entitled"


def test_status_reports_lifetime_entitlement(client, make_user, headers_for):
    r = client.get("/api/payment/status", headers=headers_for(make_user("premium")))
    assert r.json()["tier"] == "premium"
    assert r.json()["lifetime"] is True


# -------------------------------------------------
# Signup without a session id in the URL
# -------------------------------------------------
def test_signup_claims_confirmed_checkout_by_email(client, db, no_stripe_lookup):
    record = _record(db, state="confirmed")
    record.customer_email = "paid@example.com"
    db.commit()

    # only the tier cookie survived, no session id anywhere
    client.get("/payment-success?tier=premium")
    assert client.get("/api/payment/signup-context").json()["source"] == "pending"

    r = client.post("/api/payment/signup", json={**SIGNUP, "email": "paid@example.com"})
    assert r.status_code == 201, r.text
    assert r.json()["subscription_tier"] == "premium"
    assert r.json()["is_subscribed"] is True

    db.refresh(record)
    assert record.user_id == r.json()["id"]
    assert record.state == "entitled"


def test_checkout_cookie_finds_the_payment_after_webhook(client, db, monkeypatch):
    monkeypatch.setattr(
        billing,
        "create_checkout_session",
        lambda **kw: {"id": "cs_test_cookie", "url": "https://checkout.stripe.test/cs_test_cookie"},
    )
    checkout_id = client.post("/api/payment/checkout", json={"tier": "ultimate"}).json()["checkout_id"]
    assert client.cookies.get(config.PENDING_SESSION_COOKIE_NAME) == "cs_test_cookie"

    monkeypatch.setattr(
        billing, "construct_event", lambda payload, sig: _paid_event(session_id="cs_test_cookie")
    )
    client.post("/api/payment/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1"})

    r = client.post("/api/payment/signup", json=SIGNUP)
    assert r.status_code == 201, r.text
    assert r.json()["subscription_tier"] == "ultimate"
    assert config.PENDING_SESSION_COOKIE_NAME not in client.cookies

    record = db.get(models.CheckoutRecord, checkout_id)
    db.refresh(record)
    assert record.user_id == r.json()["id"]


def test_unconfirmed_checkout_is_not_claimed_by_email(client, db, no_stripe_lookup):
    record = _record(db)
    record.customer_email = SIGNUP["email"]
    db.commit()

    r = client.post("/api/payment/signup", json={**SIGNUP, "tier": "premium"})
    assert r.json()["subscription_tier"] == "free"
    db.refresh(record)
    assert record.user_id is None
