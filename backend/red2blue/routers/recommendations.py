# red2blue/routers/recommendations.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from red2blue import auth, models, schemas
from red2blue.database import get_db
from red2blue.recommendations import RECENT_ASSESSMENTS, RETURN_LIMIT, build_recommendations, follow_up_questions

router = APIRouter(
    prefix="/api",
    tags=["recommendations"],
    dependencies=[Depends(auth.get_current_user)],
)

NOT_FOUND = {"code": "NOT_FOUND", "message": "Recommendation not found"}


def _last_activity(db: Session, user_id: int) -> Optional[datetime]:
    stamps = [
        db.scalar(select(func.max(models.Assessment.created_at)).where(models.Assessment.user_id == user_id)),
        db.scalar(select(func.max(models.UserProgress.date)).where(models.UserProgress.user_id == user_id)),
        db.scalar(select(func.max(models.MentalSkillsXCheck.created_at)).where(models.MentalSkillsXCheck.user_id == user_id)),
        db.scalar(select(func.max(models.TechniquePractice.practiced_at)).where(models.TechniquePractice.user_id == user_id)),
        db.scalar(select(func.max(models.ChatSession.updated_at)).where(models.ChatSession.user_id == user_id)),
    ]
    stamps = [s for s in stamps if s is not None]
    return max(stamps) if stamps else None


# -------------------------------------------------
# Generate + stored
# -------------------------------------------------
@router.get("/recommendations/{user_id}", response_model=list[schemas.RecommendationOut])
def generate_recommendations(
    user_id: int,
    db: Session = Depends(get_db),
    viewer: models.User = Depends(auth.get_current_user),
):
    """
    Fresh recommendations for a member. The previous batch is deactivated,
    up to ten new ones are stored and the top five are returned.
    """
    auth.ensure_can_view(viewer, user_id)
    member = db.get(models.User, user_id)
    if member is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "User not found"})

    assessments = db.scalars(
        select(models.Assessment)
        .where(models.Assessment.user_id == user_id)
        .order_by(models.Assessment.created_at.desc(), models.Assessment.id.desc())
        .limit(RECENT_ASSESSMENTS)
    ).all()
    chats = db.scalars(
        select(models.ChatSession)
        .where(models.ChatSession.user_id == user_id)
        .order_by(models.ChatSession.updated_at.desc(), models.ChatSession.id.desc())
        .limit(10)
    ).all()

    now = datetime.utcnow()
    items = build_recommendations(member.username, assessments, chats, _last_activity(db, user_id), now)

    db.execute(
        update(models.Recommendation)
        .where(models.Recommendation.user_id == user_id, models.Recommendation.is_active == True)  # noqa: E712
        .values(is_active=False)
    )

    rows = []
    for item in items:
        days = item.pop("expires_in_days", None)
        row = models.Recommendation(
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(days=days) if days else None,
            **item,
        )
        db.add(row)
        rows.append(row)
    db.commit()
    for row in rows:
        db.refresh(row)

    logger.info("generated {} recommendations for user {}", len(rows), user_id)
    return rows[:RETURN_LIMIT]


@router.get("/recommendations/{user_id}/stored", response_model=list[schemas.RecommendationOut])
def stored_recommendations(
    user_id: int,
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
    viewer: models.User = Depends(auth.get_current_user),
):
    auth.ensure_can_view(viewer, user_id)
    stmt = select(models.Recommendation).where(models.Recommendation.user_id == user_id)
    if active is not None:
        stmt = stmt.where(models.Recommendation.is_active == active)
    stmt = stmt.order_by(
        models.Recommendation.created_at.desc(),
        models.Recommendation.priority.desc(),
        models.Recommendation.id,
    )
    return db.scalars(stmt).all()


@router.post("/recommendations/{recommendation_id}/feedback", response_model=schemas.RecommendationOut)
def recommendation_feedback(
    recommendation_id: int,
    payload: schemas.RecommendationFeedbackIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    rec = db.get(models.Recommendation, recommendation_id)
    if rec is None or rec.user_id != user.id:
        raise HTTPException(status_code=404, detail=NOT_FOUND)

    if payload.feedback is not None:
        rec.feedback = payload.feedback
        rec.feedback_comments = payload.comments
    if payload.effectiveness_measure is not None:
        rec.effectiveness = payload.effectiveness_measure
        if rec.applied_at is None:
            rec.applied_at = datetime.utcnow()
    db.commit()
    db.refresh(rec)

    if (rec.feedback or 0) >= 4:
        logger.info(
            "recommendation {} ({}) rated {} by user {}", rec.id, rec.recommendation_type, rec.feedback, user.id
        )
    return rec


# -------------------------------------------------
# Chat follow-ups
# -------------------------------------------------
@router.get("/chat/{session_id}/followup", response_model=schemas.FollowUpOut)
def chat_followup(
    session_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    session = db.get(models.ChatSession, session_id)
    if session is None or session.user_id != user.id:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Chat session not found"})
    return schemas.FollowUpOut(session_id=session.id, follow_up_questions=follow_up_questions(session.messages))
