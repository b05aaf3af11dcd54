# red2blue/routers/coaching.py
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from red2blue import auth, config, models, schemas
from red2blue.coaching import analyze_assessment, technique_progress, total_score
from red2blue.database import get_db
from red2blue.feature_flags import FEATURE_GOALS, FEATURE_UNLIMITED_ASSESSMENTS
from red2blue.seed import DEFAULT_ROUTINE
from red2blue.tier_guard import gate_exception, require_feature
from red2blue.tiers import gate_feature

router = APIRouter(
    prefix="/api",
    tags=["coaching"],
    dependencies=[Depends(auth.get_current_user)],  # router-wide login requirement
)


def _newest(model):
    return (model.created_at.desc(), model.id.desc())


# -------------------------------------------------
# ASSESSMENTS
# -------------------------------------------------
@router.post("/assessments", response_model=schemas.AssessmentCreatedOut, status_code=201)
def create_assessment(
    payload: schemas.AssessmentIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    # Free accounts keep FREE_ASSESSMENT_LIMIT assessments; more needs unlimited-assessments
    count = db.scalar(select(func.count(models.Assessment.id)).where(models.Assessment.user_id == user.id)) or 0
    if count >= config.FREE_ASSESSMENT_LIMIT:
        decision = gate_feature(user, FEATURE_UNLIMITED_ASSESSMENTS)
        if not decision.allowed:
            raise gate_exception(decision)

    a = models.Assessment(
        user_id=user.id,
        intensity_score=payload.intensity_score,
        decision_making_score=payload.decision_making_score,
        diversions_score=payload.diversions_score,
        execution_score=payload.execution_score,
        total_score=total_score(
            payload.intensity_score,
            payload.decision_making_score,
            payload.diversions_score,
            payload.execution_score,
        ),
    )
    db.add(a)
    db.commit()
    db.refresh(a)

    return {"assessment": a, "analysis": analyze_assessment(a)}


@router.get("/assessments", response_model=list[schemas.AssessmentOut])
def list_assessments(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    stmt = select(models.Assessment).where(models.Assessment.user_id == user.id).order_by(*_newest(models.Assessment))
    return db.scalars(stmt).all()


@router.get("/assessments/latest", response_model=schemas.AssessmentCreatedOut)
def latest_assessment(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    a = db.scalar(
        select(models.Assessment).where(models.Assessment.user_id == user.id).order_by(*_newest(models.Assessment))
    )
    if not a:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "No assessments yet"})
    return {"assessment": a, "analysis": analyze_assessment(a)}


# -------------------------------------------------
# PROGRESS
# -------------------------------------------------
@router.post("/progress", response_model=schemas.ProgressOut, status_code=201)
def create_progress(
    payload: schemas.ProgressIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    p = models.UserProgress(
        user_id=user.id,
        date=payload.date or datetime.utcnow(),
        overall_score=payload.overall_score,
        red_head_instances=payload.red_head_instances,
        blue_head_instances=payload.blue_head_instances,
        techniques_used=list(payload.techniques_used),
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


@router.get("/progress", response_model=list[schemas.ProgressOut])
def list_progress(
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    since = datetime.utcnow() - timedelta(days=days)
    stmt = (
        select(models.UserProgress)
        .where(models.UserProgress.user_id == user.id, models.UserProgress.date >= since)
        .order_by(models.UserProgress.date.asc())
    )
    return db.scalars(stmt).all()


# -------------------------------------------------
# TECHNIQUE PRACTICE
# -------------------------------------------------
def _practice_progress(db: Session, user_id: int, technique: models.Technique) -> dict:
    sessions = db.scalars(
        select(models.TechniquePractice).where(
            models.TechniquePractice.user_id == user_id,
            models.TechniquePractice.technique_id == technique.id,
        )
    ).all()
    return technique_progress(technique, sessions)


@router.post("/progress/practice-session", response_model=schemas.PracticeSessionOut, status_code=201)
def log_practice_session(
    payload: schemas.PracticeSessionIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    technique = db.get(models.Technique, payload.technique_id)
    if technique is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Technique not found"})

    s = models.TechniquePractice(
        user_id=user.id,
        technique_id=technique.id,
        duration_minutes=payload.duration_minutes,
        practiced_at=payload.practiced_at or datetime.utcnow(),
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    logger.info("user {} practiced technique {} for {}m", user.id, technique.id, s.duration_minutes)

    return {"session_id": s.id, "progress": _practice_progress(db, user.id, technique)}


@router.get("/progress/techniques/{user_id}", response_model=list[schemas.TechniqueProgressOut])
def technique_progress_for(
    user_id: int,
    db: Session = Depends(get_db),
    viewer: models.User = Depends(auth.get_current_user),
):
    """Per-technique practice totals, most practiced first. Coaches can look at any member."""
    auth.ensure_can_view(viewer, user_id)

    by_technique = defaultdict(list)
    rows = db.scalars(select(models.TechniquePractice).where(models.TechniquePractice.user_id == user_id)).all()
    for s in rows:
        by_technique[s.technique_id].append(s)

    out = [technique_progress(s[0].technique, s) for s in by_technique.values()]
    out.sort(key=lambda p: (-p["practice_count"], p["technique_name"]))
    return out


# -------------------------------------------------
# TOOLS: X-Check, Control Circles, Pre-shot routines
# -------------------------------------------------
@router.post("/tools/xchecks", response_model=schemas.XCheckOut, status_code=201)
def create_xcheck(
    payload: schemas.XCheckIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    x = models.MentalSkillsXCheck(user_id=user.id, **payload.model_dump())
    db.add(x)
    db.commit()
    db.refresh(x)
    return x


@router.get("/tools/xchecks", response_model=list[schemas.XCheckOut])
def list_xchecks(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    stmt = (
        select(models.MentalSkillsXCheck)
        .where(models.MentalSkillsXCheck.user_id == user.id)
        .order_by(*_newest(models.MentalSkillsXCheck))
    )
    return db.scalars(stmt).all()


@router.get("/tools/xchecks/latest", response_model=schemas.XCheckOut)
def latest_xcheck(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    x = db.scalar(
        select(models.MentalSkillsXCheck)
        .where(models.MentalSkillsXCheck.user_id == user.id)
        .order_by(*_newest(models.MentalSkillsXCheck))
    )
    if not x:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "No X-Check yet"})
    return x


@router.post("/tools/control-circles", response_model=schemas.ControlCircleOut, status_code=201)
def create_control_circle(
    payload: schemas.ControlCircleIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    c = models.ControlCircle(user_id=user.id, **payload.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


@router.get("/tools/control-circles", response_model=list[schemas.ControlCircleOut])
def list_control_circles(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    stmt = (
        select(models.ControlCircle)
        .where(models.ControlCircle.user_id == user.id)
        .order_by(*_newest(models.ControlCircle))
    )
    return db.scalars(stmt).all()


@router.get("/tools/control-circles/latest", response_model=schemas.ControlCircleOut)
def latest_control_circle(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    c = db.scalar(
        select(models.ControlCircle)
        .where(models.ControlCircle.user_id == user.id)
        .order_by(*_newest(models.ControlCircle))
    )
    if not c:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "No control circle yet"})
    return c


@router.post("/tools/pre-shot-routines", response_model=schemas.PreShotRoutineOut, status_code=201)
def create_routine(
    payload: schemas.PreShotRoutineIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    steps = [s.model_dump() for s in payload.steps]

    # only one active routine per user
    if payload.is_active:
        db.execute(
            update(models.PreShotRoutine)
            .where(models.PreShotRoutine.user_id == user.id)
            .values(is_active=False)
        )

    r = models.PreShotRoutine(
        user_id=user.id,
        name=payload.name.strip(),
        steps=steps,
        total_duration=sum(s["duration"] for s in steps),
        is_active=payload.is_active,
    )
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


@router.get("/tools/pre-shot-routines", response_model=list[schemas.PreShotRoutineOut])
def list_routines(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    stmt = (
        select(models.PreShotRoutine)
        .where(models.PreShotRoutine.user_id == user.id)
        .order_by(*_newest(models.PreShotRoutine))
    )
    return db.scalars(stmt).all()


@router.get("/tools/pre-shot-routines/active")
def active_routine(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    r = db.scalar(
        select(models.PreShotRoutine)
        .where(models.PreShotRoutine.user_id == user.id, models.PreShotRoutine.is_active == True)  # noqa: E712
        .order_by(*_newest(models.PreShotRoutine))
    )
    if r:
        return {"is_default": False, "routine": schemas.PreShotRoutineOut.model_validate(r)}

    # nothing saved yet: offer the standard routine as a template
    return {
        "is_default": True,
        "routine": {
            "name": DEFAULT_ROUTINE["name"],
            "steps": DEFAULT_ROUTINE["steps"],
            "total_duration": sum(s["duration"] for s in DEFAULT_ROUTINE["steps"]),
        },
    }


# -------------------------------------------------
# GOALS (premium)
# -------------------------------------------------
@router.get("/goals", response_model=list[schemas.GoalOut])
def list_goals(
    db: Session = Depends(get_db),
    user: models.User = Depends(require_feature(FEATURE_GOALS)),
):
    stmt = select(models.Goal).where(models.Goal.user_id == user.id).order_by(*_newest(models.Goal))
    return db.scalars(stmt).all()


@router.post("/goals", response_model=schemas.GoalOut, status_code=201)
def create_goal(
    payload: schemas.GoalIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_feature(FEATURE_GOALS)),
):
    g = models.Goal(user_id=user.id, **payload.model_dump())
    db.add(g)
    db.commit()
    db.refresh(g)
    return g


@router.patch("/goals/{goal_id}/complete", response_model=schemas.GoalOut)
def complete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(require_feature(FEATURE_GOALS)),
):
    g = db.get(models.Goal, goal_id)
    if not g or g.user_id != user.id:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Goal not found"})
    g.is_completed = True
    db.commit()
    db.refresh(g)
    return g
