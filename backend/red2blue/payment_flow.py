# red2blue/payment_flow.py
from __future__ import annotations

"""
Paid -> registered-with-entitlement transition.

    initiated -> redirected -> confirmed -> setup_pending -> entitled

Every step is safe to repeat: states only move forward, timestamps are
written once, and a signup resubmitted with the same credentials returns
the account it already created.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from red2blue import auth, config, models
from red2blue.tiers import (
    PAID_TIERS,
    TIER_FREE,
    apply_tier,
    effective_tier,
    normalize_tier,
    parse_tier,
    tier_rank,
)

STATE_INITIATED = "initiated"
STATE_REDIRECTED = "redirected"
STATE_CONFIRMED = "confirmed"
STATE_SETUP_PENDING = "setup_pending"
STATE_ENTITLED = "entitled"

STATE_ORDER = (
    STATE_INITIATED,
    STATE_REDIRECTED,
    STATE_CONFIRMED,
    STATE_SETUP_PENDING,
    STATE_ENTITLED,
)

SOURCE_CHECKOUT = "checkout"
SOURCE_URL = "url"
SOURCE_PENDING = "pending"
SOURCE_DEFAULT = "default"


class AccountConflictError(Exception):
    """Signup hit an existing email/username. Carries what the retry needs."""

    def __init__(self, field: str, tier: str, session_id: Optional[str] = None):
        self.field = field
        self.tier = tier
        self.session_id = session_id
        super().__init__(f"{field} already registered")

    @property
    def retry_url(self) -> str:
        url = f"/signup-after-payment?tier={self.tier}"
        if self.session_id:
            url += f"&session_id={self.session_id}"
        return url

    def to_detail(self) -> dict:
        return {
            "code": "ACCOUNT_CONFLICT",
            "message": f"That {self.field} is already registered. Choose another or sign in; your payment is kept.",
            "field": self.field,
            "tier": self.tier,
            "retry_url": self.retry_url,
        }


@dataclass(frozen=True)
class TierCapture:
    tier: str
    source: str

    @property
    def verified(self) -> bool:
        return self.source == SOURCE_CHECKOUT


# -------------------------------------------------
# State helpers
# -------------------------------------------------
def state_index(state: Optional[str]) -> int:
    try:
        return STATE_ORDER.index(state or STATE_INITIATED)
    except ValueError:
        return 0


def advance(record: models.CheckoutRecord, target: str) -> bool:
    """Moves record forward to target. Never moves backwards. Returns True if it moved."""
    if state_index(target) <= state_index(record.state):
        return False
    record.state = target
    return True


def is_confirmed(record: Optional[models.CheckoutRecord]) -> bool:
    return record is not None and state_index(record.state) >= state_index(STATE_CONFIRMED)


def find_checkout(db: Session, session_id: Optional[str]) -> Optional[models.CheckoutRecord]:
    sid = (session_id or "").strip()
    if not sid:
        return None
    return db.scalar(select(models.CheckoutRecord).where(models.CheckoutRecord.stripe_session_id == sid))


def find_unclaimed_checkout(db: Session, email: Optional[str]) -> Optional[models.CheckoutRecord]:
    """
    Newest confirmed checkout paid with this email that no account holds yet.
    Covers a signup that arrives without the session id (new browser, lost cookie).
    """
    email_n = (email or "").strip().lower()
    if not email_n:
        return None
    confirmed = STATE_ORDER[state_index(STATE_CONFIRMED):]
    stmt = (
        select(models.CheckoutRecord)
        .where(
            func.lower(models.CheckoutRecord.customer_email) == email_n,
            models.CheckoutRecord.user_id.is_(None),
            models.CheckoutRecord.state.in_(confirmed),
        )
        .order_by(models.CheckoutRecord.id.desc())
    )
    return db.scalars(stmt).first()


# -------------------------------------------------
# Tier capture
# -------------------------------------------------
def resolve_signup_tier(
    url_tier: Optional[str],
    pending_tier: Optional[str],
    record: Optional[models.CheckoutRecord] = None,
) -> TierCapture:
    """
    Which tier the signup form is for.
      1) the checkout record (what was actually bought)
      2) ?tier= on the URL
      3) the pending-tier cookie set at checkout
      4) free
    Unknown values are skipped, never an error.
    """
    if record is not None and parse_tier(record.tier):
        return TierCapture(tier=parse_tier(record.tier), source=SOURCE_CHECKOUT)

    t = parse_tier(url_tier)
    if t:
        return TierCapture(tier=t, source=SOURCE_URL)

    t = parse_tier(pending_tier)
    if t:
        return TierCapture(tier=t, source=SOURCE_PENDING)

    return TierCapture(tier=TIER_FREE, source=SOURCE_DEFAULT)


# -------------------------------------------------
# Transitions
# -------------------------------------------------
def start_checkout(
    db: Session,
    tier: str,
    amount_cents: int,
    user: Optional[models.User] = None,
    email: Optional[str] = None,
) -> models.CheckoutRecord:
    record = models.CheckoutRecord(
        tier=normalize_tier(tier),
        state=STATE_INITIATED,
        amount_cents=int(amount_cents),
        user_id=user.id if user is not None else None,
        customer_email=(email or getattr(user, "email", None) or None),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("checkout {} initiated tier={} user={}", record.id, record.tier, record.user_id)
    return record


def mark_redirected(db: Session, record: models.CheckoutRecord, stripe_session_id: str) -> models.CheckoutRecord:
    record.stripe_session_id = stripe_session_id
    advance(record, STATE_REDIRECTED)
    db.commit()
    return record


def entitle_user(
    db: Session,
    user: models.User,
    tier: str,
    record: Optional[models.CheckoutRecord] = None,
) -> models.User:
    """
    Grants tier to user. A payment never lowers an existing tier.
    Re-running with the same inputs changes nothing.
    """
    t = normalize_tier(tier)
    if tier_rank(t) > tier_rank(effective_tier(user)):
        apply_tier(user, t)
        logger.info("user {} entitled to {}", user.id, t)

    if record is not None:
        if record.user_id is None:
            record.user_id = user.id
        if record.stripe_customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = record.stripe_customer_id
        if is_confirmed(record) and advance(record, STATE_ENTITLED):
            record.entitled_at = datetime.utcnow()

    db.commit()
    db.refresh(user)
    return user


def confirm_payment(
    db: Session,
    record: models.CheckoutRecord,
    *,
    customer_id: Optional[str] = None,
    customer_email: Optional[str] = None,
) -> models.CheckoutRecord:
    """
    Processor said "paid". Idempotent: the first call stamps confirmed_at,
    later calls only fill in missing references. If the checkout already
    belongs to a user, that user is entitled straight away.
    """
    if customer_id and not record.stripe_customer_id:
        record.stripe_customer_id = customer_id
    if customer_email and not record.customer_email:
        record.customer_email = customer_email.strip().lower()

    if advance(record, STATE_CONFIRMED):
        record.confirmed_at = datetime.utcnow()
        logger.info("checkout {} confirmed tier={}", record.id, record.tier)
    db.commit()

    if record.user_id is not None:
        user = db.get(models.User, record.user_id)
        if user is not None:
            entitle_user(db, user, record.tier, record)
    return record


def mark_setup_pending(db: Session, record: Optional[models.CheckoutRecord]) -> None:
    """Success page handed the tier to the signup form."""
    if record is None or record.user_id is not None:
        return
    if is_confirmed(record) and advance(record, STATE_SETUP_PENDING):
        db.commit()


def grantable_tier(capture: TierCapture, record: Optional[models.CheckoutRecord]) -> str:
    """
    Tier a new account actually gets.
    Paid tiers need a confirmed checkout while billing is on. With billing
    off (local/demo) the captured tier is trusted as-is.
    """
    if capture.tier not in PAID_TIERS:
        return TIER_FREE
    if not config.billing_enabled():
        return capture.tier
    if is_confirmed(record):
        return normalize_tier(record.tier)
    return TIER_FREE


def signup_after_payment(
    db: Session,
    *,
    email: str,
    username: str,
    password: str,
    capture: TierCapture,
    record: Optional[models.CheckoutRecord] = None,
) -> tuple[models.User, bool]:
    """
    AccountSetupPending -> AccountEntitled.
    Returns (user, created). A resubmission with matching credentials
    returns the existing account instead of failing.
    Raises AccountConflictError if email/username belong to someone else.
    """
    email_n = email.strip().lower()
    username_n = username.strip()
    session_id = record.stripe_session_id if record is not None else None
    tier = grantable_tier(capture, record)

    existing = db.scalar(select(models.User).where(func.lower(models.User.email) == email_n))
    if existing is not None:
        same_owner = record is None or record.user_id in (None, existing.id)
        if same_owner and auth.verify_password(password, existing.hashed_password):
            return entitle_user(db, existing, tier, record), False
        raise AccountConflictError("email", capture.tier, session_id)

    if db.scalar(select(models.User).where(models.User.username == username_n)):
        raise AccountConflictError("username", capture.tier, session_id)

    if record is not None and record.user_id is not None:
        # checkout already claimed by a different account
        raise AccountConflictError("email", capture.tier, session_id)

    user = models.User(
        email=email_n,
        username=username_n,
        hashed_password=auth.hash_password(password),
    )
    apply_tier(user, TIER_FREE)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AccountConflictError("email", capture.tier, session_id)
    db.refresh(user)
    logger.info("account {} created after payment (captured={} via {})", user.id, capture.tier, capture.source)

    if record is not None:
        # unconfirmed checkouts stay linked; the webhook finishes the upgrade
        record.user_id = user.id
        db.commit()

    return entitle_user(db, user, tier, record), True
