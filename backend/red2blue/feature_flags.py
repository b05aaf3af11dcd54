# red2blue/feature_flags.py
from __future__ import annotations

"""
Central place to define access rules.

Each feature tag maps to one rule:
- min_tier: lowest subscription tier that unlocks it
- metered: below min_tier the feature is still usable while free chat credits remain
- role: when set, only that role unlocks it and tier is ignored (admin tools)

Anonymous visitors can only reach metered features. Everything else asks them to sign in.
"""

from dataclasses import dataclass
from typing import Optional

FEATURE_AI_CHAT = "ai-chat"
FEATURE_HUMAN_COACHING = "human-coaching"
FEATURE_SCENARIOS = "scenarios"
FEATURE_COMMUNITY = "community"
FEATURE_GOALS = "goals"
FEATURE_UNLIMITED_ASSESSMENTS = "unlimited-assessments"
FEATURE_ADMIN = "admin"


@dataclass(frozen=True)
class FeatureRule:
    min_tier: Optional[str]
    metered: bool = False
    role: Optional[str] = None


# Keep this table small and obvious. Tier names match red2blue.tiers.
FEATURE_RULES: dict[str, FeatureRule] = {
    FEATURE_AI_CHAT: FeatureRule(min_tier="premium", metered=True),
    FEATURE_HUMAN_COACHING: FeatureRule(min_tier="ultimate"),
    FEATURE_SCENARIOS: FeatureRule(min_tier="premium"),
    FEATURE_COMMUNITY: FeatureRule(min_tier="premium"),
    FEATURE_GOALS: FeatureRule(min_tier="premium"),
    FEATURE_UNLIMITED_ASSESSMENTS: FeatureRule(min_tier="premium"),
    FEATURE_ADMIN: FeatureRule(min_tier=None, role="admin"),
}


def rule_for(feature: str) -> Optional[FeatureRule]:
    return FEATURE_RULES.get((feature or "").strip().lower())
