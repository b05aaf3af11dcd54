# red2blue/routers/admin.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from red2blue import auth, models, payment_flow, schemas, usage
from red2blue.database import get_db
from red2blue.tiers import VALID_TIERS, apply_tier

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(auth.require_admin)],  # admin required
)


def _get_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "User not found"})
    return user


@router.get("/users", response_model=list[schemas.UserOut])
def admin_list_users(db: Session = Depends(get_db)):
    return db.scalars(select(models.User).order_by(models.User.created_at.desc(), models.User.id.desc())).all()


@router.patch("/users/{user_id}/tier", response_model=schemas.UserOut)
def admin_set_tier(
    user_id: int,
    payload: schemas.AdminTierUpdateIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    """
    Explicit upgrade, downgrade or reset. The only path that can lower a tier.
    """
    user = _get_user(db, user_id)
    before = user.subscription_tier

    apply_tier(user, payload.tier)
    db.commit()
    db.refresh(user)

    if payload.reset_credits:
        usage.reset_usage(db, usage.subject_key(user=user))

    logger.info("admin {} set user {} tier {} -> {}", admin.id, user.id, before, user.subscription_tier)
    return user


@router.patch("/users/{user_id}/role", response_model=schemas.UserOut)
def admin_set_role(
    user_id: int,
    payload: schemas.AdminRoleUpdateIn,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    user = _get_user(db, user_id)
    if user.id == admin.id and payload.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "VALIDATION_ERROR", "message": "You cannot remove your own admin role", "field": "role"},
        )

    user.role = payload.role
    db.commit()
    db.refresh(user)
    logger.info("admin {} set user {} role {}", admin.id, user.id, user.role)
    return user


@router.get("/stats")
def admin_stats(db: Session = Depends(get_db)):
    by_tier = dict.fromkeys(VALID_TIERS, 0)
    for tier, n in db.execute(
        select(models.User.subscription_tier, func.count(models.User.id)).group_by(models.User.subscription_tier)
    ).all():
        by_tier[tier] = n

    confirmed_states = payment_flow.STATE_ORDER[payment_flow.state_index(payment_flow.STATE_CONFIRMED):]
    paid = db.execute(
        select(func.count(models.CheckoutRecord.id), func.coalesce(func.sum(models.CheckoutRecord.amount_cents), 0))
        .where(models.CheckoutRecord.state.in_(confirmed_states))
    ).one()

    return {
        "users": sum(by_tier.values()),
        "users_by_tier": by_tier,
        "assessments": db.scalar(select(func.count(models.Assessment.id))) or 0,
        "chat_sessions": db.scalar(select(func.count(models.ChatSession.id))) or 0,
        "confirmed_payments": paid[0],
        "revenue_cents": int(paid[1]),
    }
