from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from red2blue.feature_flags import (
    FEATURE_ADMIN,
    FEATURE_AI_CHAT,
    FEATURE_COMMUNITY,
    FEATURE_GOALS,
    FEATURE_HUMAN_COACHING,
    FEATURE_RULES,
    FEATURE_SCENARIOS,
    FEATURE_UNLIMITED_ASSESSMENTS,
)
from red2blue.tiers import (
    DECISION_ALLOW,
    DECISION_FORBIDDEN,
    DECISION_PENDING,
    DECISION_REQUIRE_SIGN_IN,
    DECISION_REQUIRE_UPGRADE,
    PENDING,
    apply_tier,
    effective_tier,
    gate_feature,
    price_summary,
)
from red2blue.tier_guard import gate_exception
from red2blue.usage import UsageCounter

NON_METERED = [
    FEATURE_HUMAN_COACHING,
    FEATURE_SCENARIOS,
    FEATURE_COMMUNITY,
    FEATURE_GOALS,
    FEATURE_UNLIMITED_ASSESSMENTS,
]
TIERED = [f for f, rule in FEATURE_RULES.items() if rule.role is None]


def _user(tier="free", role="user", subscribed=None, end=None):
    return SimpleNamespace(
        id=1,
        role=role,
        subscription_tier=tier,
        is_subscribed=(tier != "free") if subscribed is None else subscribed,
        subscription_end_date=end,
    )


@pytest.mark.parametrize("feature", NON_METERED)
def test_anonymous_never_allowed_non_metered(feature):
    result = gate_feature(None, feature)
    assert result.decision == DECISION_REQUIRE_SIGN_IN
    assert result.cta == "Sign in to continue"


@pytest.mark.parametrize("feature", TIERED)
def test_ultimate_allows_every_tiered_feature(feature):
    assert gate_feature(_user("ultimate"), feature).decision == DECISION_ALLOW


def test_admin_feature_needs_admin_role_even_for_ultimate():
    result = gate_feature(_user("ultimate"), FEATURE_ADMIN)
    assert result.decision == DECISION_FORBIDDEN
    assert result.reason == "role_required"

    assert gate_feature(_user("free", role="admin"), FEATURE_ADMIN).allowed


def test_premium_human_coaching_needs_ultimate():
    result = gate_feature(_user("premium"), FEATURE_HUMAN_COACHING)
    assert result.decision == DECISION_REQUIRE_UPGRADE
    assert result.min_tier == "ultimate"
    assert result.cta == "Upgrade to Ultimate"


def test_free_member_premium_feature_upgrade_prompt():
    result = gate_feature(_user("free"), FEATURE_SCENARIOS)
    assert result.decision == DECISION_REQUIRE_UPGRADE
    assert result.min_tier == "premium"
    assert result.reason == "tier_too_low"
    assert result.cta == "Upgrade to Premium"


def test_pending_user_is_neither_allowed_nor_denied():
    result = gate_feature(PENDING, FEATURE_AI_CHAT)
    assert result.decision == DECISION_PENDING
    assert not result.allowed


def test_unknown_feature_is_forbidden():
    result = gate_feature(_user("ultimate"), "time-travel")
    assert result.decision == DECISION_FORBIDDEN
    assert result.reason == "unknown_feature"


def test_anonymous_chat_allowed_until_credits_run_out():
    counter = UsageCounter(ceiling=5)
    for _ in range(5):
        assert gate_feature(None, FEATURE_AI_CHAT, usage=counter).allowed
        counter.increment()

    result = gate_feature(None, FEATURE_AI_CHAT, usage=counter)
    assert result.decision == DECISION_REQUIRE_UPGRADE
    assert result.reason == "credits_exhausted"
    assert result.credits_remaining == 0


def test_free_member_gets_one_chat_then_upgrade():
    counter = UsageCounter(ceiling=1)
    assert gate_feature(_user("free"), FEATURE_AI_CHAT, usage=counter).allowed
    counter.increment()

    result = gate_feature(_user("free"), FEATURE_AI_CHAT, usage=counter)
    assert result.decision == DECISION_REQUIRE_UPGRADE
    assert result.min_tier == "premium"


def test_premium_chat_ignores_counter():
    counter = UsageCounter(ceiling=1, count=1)
    assert gate_feature(_user("premium"), FEATURE_AI_CHAT, usage=counter).allowed


def test_paid_tier_without_subscription_flag_is_free():
    user = _user("premium", subscribed=False)
    assert effective_tier(user) == "free"
    assert gate_feature(user, FEATURE_SCENARIOS).decision == DECISION_REQUIRE_UPGRADE


def test_expired_tier_falls_back_to_free():
    user = _user("ultimate", end=datetime.utcnow() - timedelta(days=1))
    assert effective_tier(user) == "free"


def test_apply_tier_keeps_subscription_flag_in_step():
    user = _user("free")
    user.subscription_start_date = None

    apply_tier(user, "premium")
    assert user.subscription_tier == "premium"
    assert user.is_subscribed is True
    assert user.subscription_end_date is None
    assert user.subscription_start_date is not None

    apply_tier(user, "free")
    assert user.subscription_tier == "free"
    assert user.is_subscribed is False


def test_apply_tier_unknown_value_means_free():
    user = _user("premium")
    user.subscription_start_date = datetime.utcnow()
    apply_tier(user, "platinum")
    assert user.subscription_tier == "free"
    assert user.is_subscribed is False


def test_price_summary():
    assert price_summary("premium")["price_display"] == "$490"
    assert price_summary("ultimate")["price_display"] == "$2,190"
    assert price_summary("nonsense")["tier"] == "free"


def test_broken_counter_is_not_hidden():
    class Broken:
        def remaining(self):
            raise RuntimeError("counter unavailable")

    with pytest.raises(RuntimeError):
        gate_feature(None, FEATURE_AI_CHAT, usage=Broken())


def test_exhausted_credits_message_depends_on_sign_in():
    counter = UsageCounter(ceiling=1, count=1)

    anon = gate_exception(gate_feature(None, FEATURE_AI_CHAT, usage=counter))
    assert "Sign up" in anon.detail["message"]

    member = gate_exception(gate_feature(_user("free"), FEATURE_AI_CHAT, usage=counter))
    assert "Sign up" not in member.detail["message"]
    assert "Upgrade" in member.detail["message"]
