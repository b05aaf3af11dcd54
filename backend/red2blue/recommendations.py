# red2blue/recommendations.py
from __future__ import annotations

"""
Rule-based personal recommendations.

Inputs are a member's recent assessments (newest first), recent chat
sessions (newest first) and the time of their last logged activity.
Same inputs always give the same list. Each item is a plain dict ready
to be stored as a models.Recommendation row.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

STORE_LIMIT = 10
RETURN_LIMIT = 5
RECENT_ASSESSMENTS = 5
RECENT_CHATS = 3
IDLE_DAYS = 14
IMPROVEMENT_POINTS = 5

PRACTICE_WORDS = ("practice", "technique", "exercise", "drill", "routine", "how do i", "help me")
STRESS_WORDS = ("nervous", "anxious", "pressure", "stress", "worried", "tight", "tense")
TECHNIQUE_WORDS = ("breathing", "visualization", "routine", "focus", "technique")
SCENARIO_WORDS = ("situation", "when you", "if you", "during", "pressure moment")
NAMED_TECHNIQUES = ("breathing", "visualization", "pre-shot routine", "focus point")

AREAS = (
    ("intensity_score", "Intensity"),
    ("decision_making_score", "Decision Making"),
    ("diversions_score", "Diversions"),
    ("execution_score", "Execution"),
)

AREA_STEPS = {
    "Intensity": [
        "Practice daily 10-minute breathing exercises",
        "Use visualization before each practice session",
        "Implement progressive muscle relaxation",
        "Track intensity levels throughout the day",
    ],
    "Decision Making": [
        "Practice the STOP-THINK-ACT method",
        "Review course strategy before each round",
        "Analyze successful and poor decisions post-round",
        "Use decision trees for complex situations",
    ],
    "Diversions": [
        "Practice single-point focus exercises",
        "Use the 'parking lot' technique for distracting thoughts",
        "Develop consistent refocusing rituals",
        "Practice in distracting environments",
    ],
    "Execution": [
        "Break down swing into checkpoints",
        "Practice commitment to shot selection",
        "Use positive self-talk during execution",
        "Develop post-shot routines regardless of outcome",
    ],
}


def _mentions(text: Optional[str], words: Sequence[str]) -> bool:
    t = (text or "").lower()
    return any(w in t for w in words)


def named_technique(text: Optional[str]) -> str:
    t = (text or "").lower()
    for name in NAMED_TECHNIQUES:
        if name in t:
            return name
    return "the suggested technique"


def _item(kind: str, priority: int, confidence: int, expires_in_days: Optional[int], **fields) -> dict:
    return {
        "recommendation_type": kind,
        "priority": priority,
        "confidence_score": confidence,
        "expires_in_days": expires_in_days,
        "follow_up_questions": [],
        **fields,
    }


# -------------------------------------------------
# Rules
# -------------------------------------------------
def from_chats(username: str, sessions_newest_first: Sequence) -> list[dict]:
    """
    Pairs each user turn with the assistant turn that answered it.
    A practice question that got an answer earns one follow-up; any
    stress language earns one stress plan.
    """
    out: list[dict] = []
    followed_up = False
    stressed = False

    for session in list(sessions_newest_first)[:RECENT_CHATS]:
        turns = [m for m in (session.messages or []) if isinstance(m, dict)]
        user_turns = [m for m in turns if m.get("role") == "user"]
        replies = [m for m in turns if m.get("role") == "assistant"]

        for i, turn in enumerate(user_turns):
            reply = replies[i] if i < len(replies) else None
            text = turn.get("content")

            if not followed_up and reply is not None and _mentions(text, PRACTICE_WORDS):
                technique = named_technique(reply.get("content"))
                out.append(
                    _item(
                        "chat_followup",
                        8,
                        85,
                        7,
                        title="Follow-up on Practice Recommendation",
                        description=f"Check progress on the technique we discussed: {technique}",
                        reasoning="You received specific practice advice that hasn't been followed up yet",
                        expected_outcome="Better understanding of technique effectiveness and areas for refinement",
                        personalized_message=(
                            f"Hi {username}, how did the {technique} practice go? "
                            "I'd love to hear about your experience."
                        ),
                        action_steps=[
                            "Ask about practice frequency and consistency",
                            "Assess effectiveness of the recommended technique",
                            "Identify any challenges or obstacles",
                            "Adjust technique or provide alternatives if needed",
                        ],
                        follow_up_questions=[
                            "How many times did you practice this technique?",
                            "What situations did you use it in?",
                            "What worked well and what was challenging?",
                            "How did it affect your performance?",
                        ],
                    )
                )
                followed_up = True

            if not stressed and _mentions(text, STRESS_WORDS):
                out.append(
                    _item(
                        "technique",
                        9,
                        90,
                        14,
                        title="Personalized Stress Management Strategy",
                        description="Based on your recent discussions about pressure situations, here's a targeted approach",
                        reasoning="You mentioned specific stress triggers in recent conversations",
                        expected_outcome="Improved ability to manage pressure and keep focus during critical moments",
                        personalized_message=(
                            "I noticed you've been discussing pressure situations. "
                            "Let's build a specific strategy for your stress triggers."
                        ),
                        action_steps=[
                            "Practice the 4-7-8 breathing technique daily",
                            "Implement pre-shot routine consistently",
                            "Use positive self-talk during pressure moments",
                            "Track stress levels and recovery patterns",
                        ],
                    )
                )
                stressed = True

    return out


def weakest_area(assessment) -> tuple[str, int]:
    # ties go to the first area in AREAS
    return min(((label, getattr(assessment, attr)) for attr, label in AREAS), key=lambda a: a[1])


def improving_area(latest, previous) -> Optional[tuple[str, int]]:
    gains = [(label, getattr(latest, attr) - getattr(previous, attr)) for attr, label in AREAS]
    best = max(gains, key=lambda g: g[1])
    return best if best[1] > IMPROVEMENT_POINTS else None


def from_assessments(assessments_newest_first: Sequence) -> list[dict]:
    recent = list(assessments_newest_first)[:RECENT_ASSESSMENTS]
    if not recent:
        return []

    out: list[dict] = []
    name, score = weakest_area(recent[0])
    area = name.lower()
    out.append(
        _item(
            "technique",
            10,
            95,
            21,
            title=f"Targeted {name} Improvement Plan",
            description=f"Personalized strategy to boost your {area} from {score}/100",
            reasoning=f"Your {area} score of {score} marks it as your primary area for growth",
            expected_outcome=f"15-20 point improvement in {area} within 2-3 weeks",
            personalized_message=f"Let's focus on strengthening your {area}. Here is a plan for your current level.",
            action_steps=list(AREA_STEPS[name]),
        )
    )

    if len(recent) > 1:
        gain = improving_area(recent[0], recent[1])
        if gain is not None:
            name, points = gain
            area = name.lower()
            out.append(
                _item(
                    "routine",
                    7,
                    80,
                    14,
                    title=f"Maintain Momentum in {name}",
                    description=f"You've improved {points} points. Let's keep this progress going",
                    reasoning=f"Positive trend detected in {area} scores",
                    expected_outcome=f"Sustained improvement and confidence in {area}",
                    personalized_message=f"Great progress on {area}! Here's how to keep it going.",
                    action_steps=[
                        "Continue current successful practices",
                        "Gradually increase difficulty level",
                        "Track progress weekly",
                        "Celebrate small wins",
                    ],
                )
            )
    return out


def from_engagement(last_activity: Optional[datetime], now: datetime) -> list[dict]:
    """Nudges members who were active once but have gone quiet."""
    if last_activity is None or now - last_activity < timedelta(days=IDLE_DAYS):
        return []
    return [
        _item(
            "scenario",
            6,
            75,
            10,
            title="Re-engagement Strategy",
            description="Let's get you back on track with some engaging practice scenarios",
            reasoning=f"No logged activity in the last {IDLE_DAYS} days",
            expected_outcome="Renewed motivation and consistent practice habits",
            personalized_message="A fresh approach can help. Here are some activities to get you going again.",
            action_steps=[
                "Try shorter, focused practice sessions",
                "Set small, achievable daily goals",
                "Mix up routine with new scenarios",
                "Connect with community challenges",
            ],
        )
    ]


def build_recommendations(
    username: str,
    assessments_newest_first: Sequence,
    chats_newest_first: Sequence,
    last_activity: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> list[dict]:
    """All rules, highest priority then confidence first, capped at STORE_LIMIT."""
    now = now or datetime.utcnow()
    items = [
        *from_chats(username, chats_newest_first),
        *from_assessments(assessments_newest_first),
        *from_engagement(last_activity, now),
    ]
    items.sort(key=lambda r: (-r["priority"], -r["confidence_score"]))
    return items[:STORE_LIMIT]


def follow_up_questions(messages: Sequence) -> list[str]:
    """Questions to open the next chat with, based on the coach's last reply."""
    replies = [m for m in (messages or []) if isinstance(m, dict) and m.get("role") == "assistant"]
    if not replies:
        return []

    last = replies[-1].get("content")
    questions: list[str] = []
    if _mentions(last, TECHNIQUE_WORDS):
        questions += [
            "How has the practice been going with the technique I suggested?",
            "Have you noticed any improvements in your performance?",
            "What challenges have you encountered while practicing?",
        ]
    if _mentions(last, SCENARIO_WORDS):
        questions += [
            "Have you experienced a similar situation since we talked?",
            "How did you handle it using what we discussed?",
            "What would you like to work on next?",
        ]
    return questions
