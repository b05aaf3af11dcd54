# red2blue/coaching.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional, Sequence

DIMENSIONS = (
    ("intensity_score", "Intensity management", ["Box Breathing", "Pressure Valve"]),
    ("decision_making_score", "Decision making", ["Control Circles", "25-second pre-shot routine"]),
    ("diversions_score", "Handling diversions", ["3-2-1 Focus Reset"]),
    ("execution_score", "Execution", ["Performance Anchor", "25-second pre-shot routine"]),
)

BLUE_HEAD_AVG = 75
RED_HEAD_AVG = 60
COACH_FOCUS_BELOW = 70


def total_score(intensity: int, decision_making: int, diversions: int, execution: int) -> int:
    return int(intensity) + int(decision_making) + int(diversions) + int(execution)


def average_score(assessment) -> float:
    return total_score(
        assessment.intensity_score,
        assessment.decision_making_score,
        assessment.diversions_score,
        assessment.execution_score,
    ) / 4


def analyze_assessment(assessment) -> dict:
    """
    Rule-based read of one assessment. Same scores always give the same analysis.
      avg >= 75 blue_head, avg < 60 red_head, otherwise transitional
    """
    avg = average_score(assessment)
    if avg >= BLUE_HEAD_AVG:
        state = "blue_head"
    elif avg < RED_HEAD_AVG:
        state = "red_head"
    else:
        state = "transitional"

    scored = [(getattr(assessment, attr), label, techniques) for attr, label, techniques in DIMENSIONS]

    strengths = [label for score, label, _ in scored if score >= BLUE_HEAD_AVG]
    weak = [(score, label, techniques) for score, label, techniques in scored if score < BLUE_HEAD_AVG]
    if not weak:
        # everything strong: keep sharpening the lowest one
        weak = [min(scored, key=lambda s: s[0])]
    weak.sort(key=lambda s: s[0])

    recommended: list[str] = []
    for _, _, techniques in weak:
        for t in techniques:
            if t not in recommended:
                recommended.append(t)

    next_steps = [f"Practice {recommended[0]} daily for the next week"] if recommended else []
    next_steps.append("Retake the assessment after your next round")
    if state == "red_head":
        next_steps.insert(0, "Use box breathing before every tee shot")

    return {
        "overall_state": state,
        "strengths": strengths,
        "opportunities": [label for _, label, _ in weak],
        "recommended_techniques": recommended,
        "next_steps": next_steps,
    }


# -------------------------------------------------
# Coach dashboard
# -------------------------------------------------
def risk_level(latest) -> str:
    if latest is None:
        return "unknown"
    avg = average_score(latest)
    if avg < RED_HEAD_AVG:
        return "high"
    if avg < BLUE_HEAD_AVG:
        return "medium"
    return "low"


def trend(assessments_newest_first: Sequence) -> str:
    if len(assessments_newest_first) < 2:
        return "stable"
    change = assessments_newest_first[0].total_score - assessments_newest_first[1].total_score
    if change > 5:
        return "improving"
    if change < -5:
        return "declining"
    return "stable"


def student_summary(user, assessments_newest_first: Sequence) -> dict:
    latest: Optional[object] = assessments_newest_first[0] if assessments_newest_first else None
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "subscription_tier": user.subscription_tier,
        "assessment_count": len(assessments_newest_first),
        "latest_total_score": latest.total_score if latest is not None else None,
        "average_score": round(average_score(latest), 1) if latest is not None else None,
        "risk_level": risk_level(latest),
        "trend": trend(assessments_newest_first),
    }


# -------------------------------------------------
# Community
# -------------------------------------------------
POINTS_PER_ASSESSMENT = 10
POINTS_PER_PROGRESS_ENTRY = 5
POINTS_PER_XCHECK = 5


def activity_points(assessments: int, progress_entries: int, xchecks: int) -> int:
    return (
        assessments * POINTS_PER_ASSESSMENT
        + progress_entries * POINTS_PER_PROGRESS_ENTRY
        + xchecks * POINTS_PER_XCHECK
    )


# -------------------------------------------------
# Coach notes
# -------------------------------------------------
def coach_notes(latest) -> list[str]:
    """What a coach should work on next, one line per area under 70."""
    notes = []
    if latest is not None:
        if latest.intensity_score < COACH_FOCUS_BELOW:
            notes.append("Focus on intensity management techniques - practice breathing exercises")
        if latest.decision_making_score < COACH_FOCUS_BELOW:
            notes.append("Work on decision-making clarity - use visualization drills")
        if latest.diversions_score < COACH_FOCUS_BELOW:
            notes.append("Improve focus and attention - practice mindfulness meditation")
        if latest.execution_score < COACH_FOCUS_BELOW:
            notes.append("Build execution confidence - work on pre-shot routine consistency")
    return notes or ["Continue current training program - performance is strong"]


# -------------------------------------------------
# Technique practice
# -------------------------------------------------
INTERMEDIATE_AFTER = 10
ADVANCED_AFTER = 20


def mastery_level(practice_count: int) -> str:
    if practice_count >= ADVANCED_AFTER:
        return "advanced"
    if practice_count >= INTERMEDIATE_AFTER:
        return "intermediate"
    return "beginner"


def streak_days(practice_days: Sequence[date], today: date) -> int:
    """
    Consecutive days with practice, ending today or yesterday.
    A gap of more than a day before the last practice means no streak.
    """
    days = set(practice_days)
    if not days:
        return 0
    day = today if today in days else today - timedelta(days=1)
    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def technique_progress(technique, sessions: Sequence, today: Optional[date] = None) -> dict:
    today = today or datetime.utcnow().date()
    count = len(sessions)
    last = max((s.practiced_at for s in sessions), default=None)
    return {
        "technique_id": technique.id,
        "technique_name": technique.name,
        "category": technique.category,
        "practice_count": count,
        "total_minutes": sum(int(s.duration_minutes or 0) for s in sessions),
        "mastery_level": mastery_level(count),
        "last_practiced": last,
        "streak_days": streak_days([s.practiced_at.date() for s in sessions], today),
    }
