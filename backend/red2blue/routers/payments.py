# red2blue/routers/payments.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.orm import Session

from red2blue import auth, billing, config, models, payment_flow, schemas
from red2blue.database import get_db
from red2blue.emailer import send_email_if_configured
from red2blue.email_templates import payment_receipt, welcome
from red2blue.pages import render_payment_success, render_signup_after_payment, render_upgrade
from red2blue.tiers import PAID_TIERS, TIER_PRICES_CENTS, effective_tier, parse_tier, price_summary

router = APIRouter(tags=["payments"])

PENDING_MAX_AGE = 7 * 24 * 3600


def _wants_html(request: Request) -> bool:
    return "text/html" in (request.headers.get("accept") or "").lower()


def _set_pending(response: Response, tier: str, session_id: Optional[str] = None) -> None:
    """Remember what was bought so a signup without ?session_id= still finds the payment."""
    response.set_cookie(
        key=config.PENDING_TIER_COOKIE_NAME,
        value=tier,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
        max_age=PENDING_MAX_AGE,
    )
    if session_id:
        response.set_cookie(
            key=config.PENDING_SESSION_COOKIE_NAME,
            value=session_id,
            httponly=True,
            secure=config.COOKIE_SECURE,
            samesite="lax",
            max_age=PENDING_MAX_AGE,
        )


def _clear_pending(response: Response) -> None:
    response.delete_cookie(key=config.PENDING_TIER_COOKIE_NAME)
    response.delete_cookie(key=config.PENDING_SESSION_COOKIE_NAME)


def _sync_with_processor(db: Session, record: Optional[models.CheckoutRecord]) -> None:
    """
    Success page landed before the webhook: ask Stripe directly.
    Any failure leaves the record as-is for the webhook to finish.
    """
    if record is None or payment_flow.is_confirmed(record) or not config.billing_enabled():
        return
    try:
        session = billing.retrieve_paid_session(record.stripe_session_id)
    except HTTPException as e:
        logger.warning("skipping Stripe lookup for checkout {}: {}", record.id, e.detail)
        return
    if session is None:
        return

    details = billing.stripe_field(session, "customer_details", {}) or {}
    payment_flow.confirm_payment(
        db,
        record,
        customer_id=billing.stripe_field(session, "customer"),
        customer_email=billing.stripe_field(details, "email"),
    )


def _notify_entitled(user: models.User, record: Optional[models.CheckoutRecord], created: bool) -> None:
    base = config.app_base_url()
    if created:
        parts = welcome(user.username, base)
        send_email_if_configured(user.email, parts.subject, parts.body)
    if record is not None and payment_flow.is_confirmed(record) and user.is_subscribed:
        parts = payment_receipt(user.username, record.tier, record.id, base)
        send_email_if_configured(user.email, parts.subject, parts.body)


# -------------------------------------------------
# Checkout (CheckoutInitiated -> RedirectedToProcessor)
# -------------------------------------------------
def _begin_checkout(
    db: Session,
    tier: str,
    user: Optional[models.User],
    email: Optional[str],
) -> tuple[models.CheckoutRecord, dict]:
    record = payment_flow.start_checkout(
        db,
        tier,
        TIER_PRICES_CENTS[tier],
        user=user,
        email=email,
    )
    session = billing.create_checkout_session(
        tier=record.tier,
        checkout_id=record.id,
        customer_email=record.customer_email,
        user_id=record.user_id,
    )
    payment_flow.mark_redirected(db, record, session["id"])
    return record, session


@router.post("/api/payment/checkout", response_model=schemas.CheckoutOut)
def create_checkout(
    payload: schemas.CheckoutIn,
    response: Response,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(auth.get_optional_user),
):
    billing.require_billing_enabled()

    email = str(payload.email) if payload.email else None
    record, session = _begin_checkout(db, payload.tier, user, email)

    _set_pending(response, record.tier, record.stripe_session_id)
    return schemas.CheckoutOut(checkout_id=record.id, url=session["url"], tier=record.tier)


@router.post("/upgrade")
def upgrade_form(
    tier: str = Form(...),
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(auth.get_optional_user),
):
    """The upgrade page's button. Sends the browser straight to Stripe."""
    t = parse_tier(tier)
    if t not in PAID_TIERS:
        return HTMLResponse(render_upgrade(tier, error="Choose Premium or Ultimate."), status_code=422)
    if not config.billing_enabled():
        return HTMLResponse(render_upgrade(t, error="Payments are not available right now."), status_code=503)

    record, session = _begin_checkout(db, t, user, None)

    redirect = RedirectResponse(session["url"], status_code=303)
    _set_pending(redirect, record.tier, record.stripe_session_id)
    return redirect


# -------------------------------------------------
# Success page (RedirectedToProcessor -> PaymentConfirmed)
# -------------------------------------------------
@router.get("/payment-success")
def payment_success(
    request: Request,
    response: Response,
    tier: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Safe to reload: no charge, no account creation, same answer every time.
    """
    record = payment_flow.find_checkout(db, session_id)
    _sync_with_processor(db, record)

    pending = request.cookies.get(config.PENDING_TIER_COOKIE_NAME)
    capture = payment_flow.resolve_signup_tier(tier, pending, record)
    payment_flow.mark_setup_pending(db, record)

    sid = record.stripe_session_id if record is not None else None
    next_url = f"/signup-after-payment?tier={capture.tier}"
    if sid:
        next_url += f"&session_id={sid}"

    out = schemas.PaymentSuccessOut(
        tier=capture.tier,
        state=record.state if record is not None else "unverified",
        checkout_id=record.id if record is not None else None,
        next_url=next_url,
        redirect_delay_seconds=config.PAYMENT_REDIRECT_DELAY_SECONDS,
        summary=schemas.PriceSummaryOut(**price_summary(capture.tier)),
    )

    if _wants_html(request):
        html = HTMLResponse(render_payment_success(out))
        _set_pending(html, capture.tier, sid)
        return html

    _set_pending(response, capture.tier, sid)
    return out


# -------------------------------------------------
# Signup after payment (AccountSetupPending -> AccountEntitled)
# -------------------------------------------------
def _signup_context(
    request: Request,
    tier: Optional[str],
    session_id: Optional[str],
    db: Session,
    email: Optional[str] = None,
) -> tuple[payment_flow.TierCapture, Optional[models.CheckoutRecord]]:
    """
    Finds the checkout behind a signup: ?session_id=, then the pending
    checkout cookie, then (when the form is submitted) a confirmed
    unclaimed checkout paid with the same email.
    """
    record = payment_flow.find_checkout(db, session_id)
    if record is None:
        record = payment_flow.find_checkout(db, request.cookies.get(config.PENDING_SESSION_COOKIE_NAME))
        if record is not None and record.user_id is not None:
            # stale cookie from a checkout some account already holds
            record = None
    if record is None and email:
        record = payment_flow.find_unclaimed_checkout(db, email)
    pending = request.cookies.get(config.PENDING_TIER_COOKIE_NAME)
    return payment_flow.resolve_signup_tier(tier, pending, record), record


def _complete_signup(
    db: Session,
    request: Request,
    payload: schemas.SignupAfterPaymentIn,
    response: Response,
) -> tuple[models.User, bool]:
    """Shared by the JSON and form endpoints. Raises AccountConflictError."""
    capture, record = _signup_context(request, payload.tier, payload.session_id, db, email=str(payload.email))
    _sync_with_processor(db, record)

    user, created = payment_flow.signup_after_payment(
        db,
        email=str(payload.email),
        username=payload.username,
        password=payload.password,
        capture=capture,
        record=record,
    )

    token = auth.create_access_token(user_id=user.id, role=user.role)
    auth.set_session_cookie(response, token)

    # Only forget the pending checkout once the account holds the tier
    if effective_tier(user) == capture.tier:
        _clear_pending(response)

    _notify_entitled(user, record, created)
    return user, created


@router.get("/api/payment/signup-context", response_model=schemas.SignupContextOut)
def signup_context(
    request: Request,
    tier: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    capture, _ = _signup_context(request, tier, session_id, db)
    return schemas.SignupContextOut(
        tier=capture.tier,
        source=capture.source,
        summary=schemas.PriceSummaryOut(**price_summary(capture.tier)),
    )


@router.get("/signup-after-payment", response_class=HTMLResponse)
def signup_after_payment_page(
    request: Request,
    tier: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    capture, _ = _signup_context(request, tier, session_id, db)
    return HTMLResponse(render_signup_after_payment(capture, price_summary(capture.tier), session_id))


@router.post("/signup-after-payment", response_class=HTMLResponse)
def signup_after_payment_form(
    request: Request,
    email: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    tier: Optional[str] = Form(None),
    session_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
):
    """Browser form post. Errors re-render the form with the captured tier kept."""

    def _again(message: str, status_code: int, capture_tier: Optional[str] = None) -> HTMLResponse:
        capture, _ = _signup_context(request, capture_tier or tier, session_id, db)
        html = render_signup_after_payment(
            capture,
            price_summary(capture.tier),
            session_id,
            error=message,
            email=email,
            username=username,
        )
        return HTMLResponse(html, status_code=status_code)

    try:
        payload = schemas.SignupAfterPaymentIn(
            email=email,
            username=username,
            password=password,
            tier=tier,
            session_id=session_id,
        )
    except ValidationError:
        return _again("Enter a valid email, a username of 3+ characters and a password of 8+ characters.", 422)

    redirect = RedirectResponse("/account", status_code=303)
    try:
        _complete_signup(db, request, payload, redirect)
    except payment_flow.AccountConflictError as e:
        logger.info("post-payment signup conflict on {} (tier={})", e.field, e.tier)
        return _again(e.to_detail()["message"], 409, e.tier)
    return redirect


@router.post("/api/payment/signup", response_model=schemas.UserOut, status_code=201)
def signup_after_payment(
    payload: schemas.SignupAfterPaymentIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    try:
        user, created = _complete_signup(db, request, payload, response)
    except payment_flow.AccountConflictError as e:
        # pending cookies stay so the retry keeps the paid tier
        logger.info("post-payment signup conflict on {} (tier={})", e.field, e.tier)
        raise HTTPException(status_code=409, detail=e.to_detail())

    if not created:
        response.status_code = 200
    return user


# -------------------------------------------------
# Entitlement status
# -------------------------------------------------
@router.get("/api/payment/status", response_model=schemas.EntitlementOut)
def payment_status(user: models.User = Depends(auth.get_current_user)):
    tier = effective_tier(user)
    return schemas.EntitlementOut(
        tier=tier,
        is_subscribed=bool(user.is_subscribed),
        lifetime=tier != "free" and user.subscription_end_date is None,
        subscription_start_date=user.subscription_start_date,
        billing_enabled=config.billing_enabled(),
    )


# -------------------------------------------------
# Webhook (public) -- disabled when BILLING_ENABLED=false
# -------------------------------------------------
@router.post("/api/payment/stripe/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    payload = await request.body()
    event = billing.construct_event(payload, request.headers.get("stripe-signature"))

    etype = str(billing.stripe_field(event, "type", "")).strip()
    data = billing.stripe_field(event, "data", {}) or {}
    obj = billing.stripe_field(data, "object", {}) or {}

    if etype not in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        return {"ok": True, "ignored": True, "type": etype}

    if str(billing.stripe_field(obj, "payment_status", "")).lower() != "paid":
        return {"ok": True, "ignored": True, "type": etype, "reason": "unpaid"}

    record = payment_flow.find_checkout(db, billing.stripe_field(obj, "id"))
    if record is None:
        md = billing.stripe_field(obj, "metadata", {}) or {}
        checkout_id = billing.stripe_field(md, "checkout_id")
        if checkout_id:
            try:
                record = db.get(models.CheckoutRecord, int(checkout_id))
            except (TypeError, ValueError):
                record = None
    if record is None:
        logger.warning("webhook {} for unknown checkout session", etype)
        return {"ok": True, "ignored": True, "type": etype}

    details = billing.stripe_field(obj, "customer_details", {}) or {}
    was_confirmed = payment_flow.is_confirmed(record)
    payment_flow.confirm_payment(
        db,
        record,
        customer_id=billing.stripe_field(obj, "customer"),
        customer_email=billing.stripe_field(details, "email"),
    )

    if not was_confirmed and record.user_id is not None:
        user = db.get(models.User, record.user_id)
        if user is not None:
            _notify_entitled(user, record, created=False)

    return {"ok": True, "checkout_id": record.id, "state": record.state}
