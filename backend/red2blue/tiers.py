# red2blue/tiers.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from red2blue.feature_flags import rule_for

TIER_FREE = "free"
TIER_PREMIUM = "premium"
TIER_ULTIMATE = "ultimate"

VALID_TIERS = (TIER_FREE, TIER_PREMIUM, TIER_ULTIMATE)
PAID_TIERS = (TIER_PREMIUM, TIER_ULTIMATE)

TIER_RANK = {TIER_FREE: 0, TIER_PREMIUM: 1, TIER_ULTIMATE: 2}

TIER_LABELS = {
    TIER_FREE: "Free",
    TIER_PREMIUM: "Premium",
    TIER_ULTIMATE: "Ultimate",
}

# One-time lifetime prices, in cents. Single source for checkout and the signup summary.
TIER_PRICES_CENTS = {
    TIER_FREE: 0,
    TIER_PREMIUM: 49000,
    TIER_ULTIMATE: 219000,
}

ROLE_USER = "user"
ROLE_COACH = "coach"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_USER, ROLE_COACH, ROLE_ADMIN)

# Gate decisions
DECISION_ALLOW = "allow"
DECISION_REQUIRE_SIGN_IN = "deny_require_sign_in"
DECISION_REQUIRE_UPGRADE = "deny_require_upgrade"
DECISION_FORBIDDEN = "deny_forbidden"
DECISION_PENDING = "pending"


class _Pending:
    """Marker for "user is still loading". Pass PENDING instead of a user."""

    def __repr__(self) -> str:
        return "PENDING"

    def __bool__(self) -> bool:
        return False


PENDING = _Pending()


@dataclass(frozen=True)
class GateResult:
    decision: str
    feature: str = ""
    min_tier: Optional[str] = None
    current_tier: Optional[str] = None
    reason: str = ""          # e.g. "credits_exhausted"
    credits_remaining: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.decision == DECISION_ALLOW

    @property
    def cta(self) -> Optional[str]:
        if self.decision == DECISION_REQUIRE_UPGRADE and self.min_tier:
            return f"Upgrade to {TIER_LABELS.get(self.min_tier, self.min_tier.title())}"
        if self.decision == DECISION_REQUIRE_SIGN_IN:
            return "Sign in to continue"
        return None

    def to_dict(self) -> dict:
        return {
            "decision": self.decision,
            "feature": self.feature,
            "allowed": self.allowed,
            "min_tier": self.min_tier,
            "current_tier": self.current_tier,
            "reason": self.reason or None,
            "credits_remaining": self.credits_remaining,
            "cta": self.cta,
        }


# -------------------------------------------------
# Tier helpers
# -------------------------------------------------
def parse_tier(value) -> Optional[str]:
    """Returns the canonical tier name, or None if value is not a tier."""
    t = (str(value) if value is not None else "").strip().lower()
    return t if t in VALID_TIERS else None


def normalize_tier(value) -> str:
    return parse_tier(value) or TIER_FREE


def normalize_role(value) -> str:
    r = (value or "").strip().lower()
    return r if r in VALID_ROLES else ROLE_USER


def is_paid_tier(tier: Optional[str]) -> bool:
    return parse_tier(tier) in PAID_TIERS


def tier_rank(tier: Optional[str]) -> int:
    return TIER_RANK[normalize_tier(tier)]


def effective_tier(user) -> str:
    """
    Tier the user is actually entitled to right now.
      - paid tier needs is_subscribed
      - an end date in the past drops back to free (None = lifetime)
    """
    if user is None:
        return TIER_FREE

    tier = normalize_tier(getattr(user, "subscription_tier", None))
    if tier == TIER_FREE:
        return TIER_FREE

    if not getattr(user, "is_subscribed", False):
        return TIER_FREE

    end = getattr(user, "subscription_end_date", None)
    if end is not None and datetime.utcnow() > end.replace(tzinfo=None):
        return TIER_FREE

    return tier


def price_summary(tier: Optional[str]) -> dict:
    t = normalize_tier(tier)
    cents = TIER_PRICES_CENTS[t]
    return {
        "tier": t,
        "label": TIER_LABELS[t],
        "price_cents": cents,
        "price_display": f"${cents // 100:,}",
        "billing": "one-time" if t in PAID_TIERS else "free",
    }


def apply_tier(user, tier: str, *, now: Optional[datetime] = None) -> None:
    """
    Sets tier + is_subscribed together so the invariant
    (paid tier => is_subscribed) always holds after a write.
    """
    t = normalize_tier(tier)
    now = now or datetime.utcnow()

    user.subscription_tier = t
    if t in PAID_TIERS:
        user.is_subscribed = True
        if not getattr(user, "subscription_start_date", None):
            user.subscription_start_date = now
        user.subscription_end_date = None  # lifetime
    else:
        user.is_subscribed = False
        user.subscription_start_date = None
        user.subscription_end_date = None
    user.updated_at = now


# -------------------------------------------------
# Gate
# -------------------------------------------------
def gate_feature(user, feature: str, usage=None) -> GateResult:
    """
    Central decision. Never raises.

    user:
      None     -> not signed in
      PENDING  -> auth still resolving
      object   -> signed-in user (subscription_tier / is_subscribed / role)
    usage:
      optional UsageCounter for the viewer; only consulted for metered features.
    """
    feature = (feature or "").strip().lower()

    if user is PENDING:
        return GateResult(DECISION_PENDING, feature=feature)

    rule = rule_for(feature)
    if rule is None:
        return GateResult(DECISION_FORBIDDEN, feature=feature, reason="unknown_feature")

    remaining = None
    if usage is not None:
        remaining = int(usage.remaining())

    # Not signed in: only metered features, and only while credits last
    if user is None:
        if not rule.metered:
            return GateResult(DECISION_REQUIRE_SIGN_IN, feature=feature)
        if remaining is not None and remaining <= 0:
            return GateResult(
                DECISION_REQUIRE_UPGRADE,
                feature=feature,
                min_tier=rule.min_tier,
                reason="credits_exhausted",
                credits_remaining=0,
            )
        return GateResult(DECISION_ALLOW, feature=feature, credits_remaining=remaining)

    role = normalize_role(getattr(user, "role", None))
    tier = effective_tier(user)

    if role == ROLE_ADMIN:
        return GateResult(DECISION_ALLOW, feature=feature, current_tier=tier)

    # Role-only features ignore tier entirely
    if rule.role:
        return GateResult(DECISION_FORBIDDEN, feature=feature, current_tier=tier, reason="role_required")

    if rule.min_tier is None or tier_rank(tier) >= tier_rank(rule.min_tier):
        return GateResult(DECISION_ALLOW, feature=feature, current_tier=tier)

    if rule.metered and (remaining is None or remaining > 0):
        return GateResult(DECISION_ALLOW, feature=feature, current_tier=tier, credits_remaining=remaining)

    return GateResult(
        DECISION_REQUIRE_UPGRADE,
        feature=feature,
        min_tier=rule.min_tier,
        current_tier=tier,
        reason="credits_exhausted" if rule.metered else "tier_too_low",
        credits_remaining=0 if rule.metered else None,
    )
