# red2blue/routers/community.py
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from red2blue import auth, config, models, schemas
from red2blue.coaching import activity_points, coach_notes, student_summary
from red2blue.database import get_db
from red2blue.feature_flags import FEATURE_COMMUNITY, FEATURE_HUMAN_COACHING
from red2blue.tier_guard import require_feature
from red2blue.tiers import ROLE_USER

router = APIRouter(prefix="/api", tags=["community"])


def _counts_by_user(db: Session, model) -> dict[int, int]:
    rows = db.execute(select(model.user_id, func.count(model.id)).group_by(model.user_id)).all()
    return {user_id: n for user_id, n in rows}


# -------------------------------------------------
# Leaderboard (premium)
# -------------------------------------------------
@router.get("/community/leaderboard", response_model=list[schemas.LeaderboardEntryOut])
def leaderboard(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_feature(FEATURE_COMMUNITY)),
):
    assessments = _counts_by_user(db, models.Assessment)
    progress = _counts_by_user(db, models.UserProgress)
    xchecks = _counts_by_user(db, models.MentalSkillsXCheck)

    members = db.scalars(select(models.User).where(models.User.is_active == True)).all()  # noqa: E712
    scored = [
        (
            activity_points(assessments.get(m.id, 0), progress.get(m.id, 0), xchecks.get(m.id, 0)),
            assessments.get(m.id, 0),
            m,
        )
        for m in members
    ]
    # ties keep the older account first
    scored.sort(key=lambda s: (-s[0], s[2].id))

    return [
        schemas.LeaderboardEntryOut(
            rank=i,
            display_name=m.username,
            points=points,
            assessments=n,
            is_you=m.id == user.id,
        )
        for i, (points, n, m) in enumerate(scored[:limit], start=1)
    ]


# -------------------------------------------------
# Human coaching (ultimate)
# -------------------------------------------------
@router.get("/human-coaching")
def human_coaching(user: models.User = Depends(require_feature(FEATURE_HUMAN_COACHING))):
    return {
        "included": True,
        "sessions_per_month": config.COACHING_SESSIONS_PER_MONTH,
        "session_minutes": 45,
        "booking_email": config.COACHING_BOOKING_EMAIL,
        "message": f"Hi {user.username}, book your next one-on-one session with a Red2Blue coach.",
    }


# -------------------------------------------------
# Coach dashboard
# -------------------------------------------------
@router.get("/coach/students", response_model=list[schemas.StudentSummaryOut])
def coach_students(
    db: Session = Depends(get_db),
    coach: models.User = Depends(auth.require_coach),
):
    students = db.scalars(
        select(models.User).where(models.User.role == ROLE_USER).order_by(models.User.username)
    ).all()

    by_user = defaultdict(list)
    rows = db.scalars(
        select(models.Assessment).order_by(models.Assessment.created_at.desc(), models.Assessment.id.desc())
    ).all()
    for a in rows:
        by_user[a.user_id].append(a)

    return [student_summary(s, by_user[s.id]) for s in students]


@router.get("/coach/student-detail/{user_id}", response_model=schemas.StudentDetailOut)
def coach_student_detail(
    user_id: int,
    db: Session = Depends(get_db),
    coach: models.User = Depends(auth.require_coach),
):
    student = db.get(models.User, user_id)
    if student is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Student not found"})

    assessments = db.scalars(
        select(models.Assessment)
        .where(models.Assessment.user_id == user_id)
        .order_by(models.Assessment.created_at.desc(), models.Assessment.id.desc())
    ).all()

    since = datetime.utcnow() - timedelta(days=30)
    progress_entries = db.scalar(
        select(func.count(models.UserProgress.id)).where(
            models.UserProgress.user_id == user_id, models.UserProgress.date >= since
        )
    )

    def _last_used(model):
        return db.scalar(select(func.max(model.created_at)).where(model.user_id == user_id))

    # oldest first, for charting
    history = [
        schemas.AssessmentPointOut(
            date=a.created_at,
            total_score=a.total_score,
            intensity=a.intensity_score,
            decision_making=a.decision_making_score,
            diversions=a.diversions_score,
            execution=a.execution_score,
        )
        for a in reversed(assessments[:10])
    ]

    return schemas.StudentDetailOut(
        student=schemas.StudentSummaryOut(**student_summary(student, assessments)),
        assessment_history=history,
        progress_entries_30d=progress_entries or 0,
        tool_usage=[
            schemas.ToolUsageOut(name="Mental Skills X-Check", last_used=_last_used(models.MentalSkillsXCheck)),
            schemas.ToolUsageOut(name="Control Circles", last_used=_last_used(models.ControlCircle)),
            schemas.ToolUsageOut(name="Pre-Shot Routine", last_used=_last_used(models.PreShotRoutine)),
        ],
        recommendations=coach_notes(assessments[0] if assessments else None),
    )


# -------------------------------------------------
# Shared ideas (premium, shown without author)
# -------------------------------------------------
IDEA_THANKS = (
    "Thank you for sharing your technique idea! I've received: \"{idea}\". "
    "Ideas like this help me understand what works for golfers like you, "
    "and other members can now learn from it too."
)


@router.post("/share-idea", response_model=schemas.IdeaSharedOut, status_code=201)
def share_idea(
    payload: schemas.IdeaIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_feature(FEATURE_COMMUNITY)),
):
    text = payload.idea.strip()
    if not text:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": "Idea content is required", "field": "idea"},
        )

    idea = models.CommunityIdea(
        user_id=user.id,
        content=text,
        category=(payload.category or "").strip().lower() or "general",
    )
    db.add(idea)

    # the coach acknowledges it in the member's chat history
    now = datetime.utcnow().isoformat()
    session = models.ChatSession(
        user_id=user.id,
        messages=[
            {"role": "user", "content": f"I'd like to share a technique idea: {text}", "timestamp": now},
            {"role": "assistant", "content": IDEA_THANKS.format(idea=text), "timestamp": now},
        ],
    )
    db.add(session)
    db.commit()
    db.refresh(idea)
    db.refresh(session)
    logger.info("user {} shared idea {}", user.id, idea.id)

    return schemas.IdeaSharedOut(
        message="Idea shared with your coach and the community",
        idea=schemas.IdeaOut.model_validate(idea),
        chat_session_id=session.id,
    )


@router.get("/community-ideas", response_model=list[schemas.IdeaOut])
def community_ideas(
    category: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: models.User = Depends(require_feature(FEATURE_COMMUNITY)),
):
    stmt = select(models.CommunityIdea)
    if category:
        stmt = stmt.where(models.CommunityIdea.category == category.strip().lower())
    stmt = stmt.order_by(models.CommunityIdea.created_at.desc(), models.CommunityIdea.id.desc()).limit(limit)
    return db.scalars(stmt).all()
