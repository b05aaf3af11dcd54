# red2blue/tier_guard.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, status
from loguru import logger

from red2blue import auth, models
from red2blue.tiers import (
    DECISION_FORBIDDEN,
    DECISION_REQUIRE_SIGN_IN,
    DECISION_REQUIRE_UPGRADE,
    GateResult,
    gate_feature,
)

UPGRADE_MESSAGES = {
    "credits_exhausted": (
        "You've used your free credits! Sign up to keep using Flo and unlock personalized coaching, "
        "assessments, and unlimited conversations."
    ),
    "member_credits_exhausted": (
        "You've used your free credits! Upgrade to keep talking with Flo and get unlimited conversations."
    ),
    "tier_too_low": "This feature is part of a higher plan.",
}


def upgrade_message(result: GateResult) -> str:
    reason = result.reason
    if reason == "credits_exhausted" and result.current_tier:
        # signed in already, so the ask is an upgrade, not a signup
        reason = "member_credits_exhausted"
    return UPGRADE_MESSAGES.get(reason, UPGRADE_MESSAGES["tier_too_low"])


def upgrade_url(min_tier: Optional[str]) -> str:
    return f"/upgrade?tier={min_tier}" if min_tier else "/upgrade"


def gate_exception(result: GateResult) -> HTTPException:
    """
    Converts a denied GateResult into the HTTPException callers raise.
    401 -> sign in, 402 -> upgrade prompt, 403 -> role/feature not available.
    """
    if result.decision == DECISION_REQUIRE_SIGN_IN:
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "SIGN_IN_REQUIRED",
                "message": "Please sign in to use this feature.",
                "feature": result.feature,
                "cta": result.cta,
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    if result.decision == DECISION_REQUIRE_UPGRADE:
        code = "CREDITS_EXHAUSTED" if result.reason == "credits_exhausted" else "UPGRADE_REQUIRED"
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "code": code,
                "message": upgrade_message(result),
                "feature": result.feature,
                "min_tier": result.min_tier,
                "current_tier": result.current_tier,
                "cta": result.cta,
                "upgrade_url": upgrade_url(result.min_tier),
            },
        )

    if result.decision == DECISION_FORBIDDEN and result.reason == "role_required":
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "NOT_ADMIN", "message": "Admin privileges required"},
        )

    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "code": "ACCESS_DENIED",
            "message": "Access denied.",
            "feature": result.feature,
        },
    )


def require_feature(feature: str):
    """
    Router dependency factory:
        @router.get("/scenarios", dependencies=[Depends(require_feature(FEATURE_SCENARIOS))])
    Returns the signed-in user when allowed.
    """

    def _guard(user: Optional[models.User] = Depends(auth.get_optional_user)) -> models.User:
        result = gate_feature(user, feature)
        if result.allowed:
            return user

        logger.info(
            "gate denied feature={} user={} decision={} min_tier={}",
            feature,
            getattr(user, "id", None),
            result.decision,
            result.min_tier,
        )
        raise gate_exception(result)

    return _guard
