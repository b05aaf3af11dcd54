# red2blue/routers/chat.py
from __future__ import annotations

import asyncio
import secrets
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from red2blue import auth, config, models, schemas, usage
from red2blue.chat_relay import ChatValidationError, relay_message
from red2blue.coach_client import CoachAdapter, get_coach_client
from red2blue.database import get_db
from red2blue.feature_flags import FEATURE_AI_CHAT, rule_for
from red2blue.tier_guard import gate_exception
from red2blue.tiers import effective_tier, gate_feature

router = APIRouter(prefix="/api", tags=["chat"])


# -------------------------------------------------
# Viewer helpers
# -------------------------------------------------
def _anon_key(request: Request, response: Response) -> str:
    """Anonymous browser session id (owns the transcript). Issued on first send."""
    key = (request.cookies.get(config.ANON_COOKIE_NAME) or "").strip()
    if key:
        return key
    key = secrets.token_urlsafe(16)
    response.set_cookie(
        key=config.ANON_COOKIE_NAME,
        value=key,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
    )
    return key


def _usage_subject(request: Request, user: Optional[models.User]) -> str:
    # Anonymous credits follow the client IP so clearing cookies doesn't refill them.
    if user is not None:
        return usage.subject_key(user=user)
    return usage.subject_key(client_ip=usage.get_client_ip(request))


def _viewer_counter(db: Session, request: Request, user: Optional[models.User]) -> Optional[usage.UsageCounter]:
    ceiling = usage.ceiling_for(user)
    if ceiling is None:
        return None
    return usage.load_counter(db, _usage_subject(request, user), ceiling)


def _session_for(
    db: Session,
    session_id: Optional[int],
    user: Optional[models.User],
    anon_key: Optional[str],
) -> Optional[models.ChatSession]:
    if session_id is None:
        return None
    s = db.get(models.ChatSession, session_id)
    owned = s is not None and (
        (user is not None and s.user_id == user.id)
        or (user is None and anon_key is not None and s.anon_key == anon_key)
    )
    if not owned:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Chat session not found"})
    return s


def _coach_context(db: Session, user: Optional[models.User]) -> Optional[dict]:
    if user is None:
        return None
    latest = db.scalar(
        select(models.Assessment)
        .where(models.Assessment.user_id == user.id)
        .order_by(models.Assessment.created_at.desc(), models.Assessment.id.desc())
    )
    if latest is None:
        return None
    return {
        "latest_assessment": {
            "intensity": latest.intensity_score,
            "decision_making": latest.decision_making_score,
            "diversions": latest.diversions_score,
            "execution": latest.execution_score,
            "total": latest.total_score,
        }
    }


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(0.25)


def _turn(role: str, content: str) -> dict:
    return {"role": role, "content": content, "timestamp": datetime.utcnow().isoformat()}


# -------------------------------------------------
# Chat
# -------------------------------------------------
@router.post("/chat", response_model=schemas.ChatOut)
async def send_chat(
    payload: schemas.ChatIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(auth.get_optional_user),
    coach: Optional[CoachAdapter] = Depends(get_coach_client),
):
    text = (payload.message or "").strip()
    if not text:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": "Message cannot be empty", "field": "message"},
        )

    anon_key = _anon_key(request, response) if user is None else None
    session = _session_for(db, payload.session_id, user, anon_key)

    # Gate before anything leaves the building
    ceiling = usage.ceiling_for(user)
    counter = None
    if ceiling is not None:
        subject = _usage_subject(request, user)
        counter = usage.load_counter(db, subject, ceiling)

    decision = gate_feature(user, FEATURE_AI_CHAT, usage=counter)
    if not decision.allowed:
        raise gate_exception(decision)

    # Charged on attempt: a timeout or fallback still spends the credit
    if ceiling is not None:
        result, counter = usage.charge(db, subject, ceiling)
        if result == usage.AT_LIMIT:
            raise gate_exception(gate_feature(user, FEATURE_AI_CHAT, usage=counter))

    if session is not None:
        history = list(session.messages or [])
    else:
        history = [t.model_dump(mode="json") for t in payload.history]

    cancel_event = asyncio.Event()
    watcher = asyncio.ensure_future(_watch_disconnect(request, cancel_event))
    try:
        result = await relay_message(
            text,
            history,
            client=coach,
            cancel_event=cancel_event,
            context=_coach_context(db, user),
        )
    except ChatValidationError as e:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": str(e)})
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)

    credits = schemas.CreditsOut(**counter.to_dict()) if counter is not None else None

    if result.cancelled:
        return schemas.ChatOut(session_id=session.id if session else None, cancelled=True, credits=credits)

    if session is None:
        session = models.ChatSession(
            user_id=user.id if user is not None else None,
            anon_key=anon_key,
            messages=[],
        )
        db.add(session)

    session.messages = [
        *(session.messages or []),
        _turn("user", text),
        _turn("assistant", result.reply.message),
    ]
    session.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(session)

    logger.info(
        "chat reply session={} user={} fallback={} remaining={}",
        session.id,
        getattr(user, "id", None),
        result.fallback,
        credits.remaining if credits else "unlimited",
    )

    return schemas.ChatOut(
        session_id=session.id,
        reply=schemas.CoachingReplyOut(**result.reply.to_dict()),
        fallback=result.fallback,
        credits=credits,
    )


@router.get("/chat/limitations", response_model=schemas.ChatLimitationsOut)
def chat_limitations(
    request: Request,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(auth.get_optional_user),
):
    counter = _viewer_counter(db, request, user)
    decision = gate_feature(user, FEATURE_AI_CHAT, usage=counter)
    return schemas.ChatLimitationsOut(
        signed_in=user is not None,
        tier=effective_tier(user),
        can_chat=decision.allowed,
        unlimited=counter is None,
        credits=schemas.CreditsOut(**counter.to_dict()) if counter is not None else None,
        gate=decision.to_dict(),
    )


@router.get("/chat/sessions", response_model=list[schemas.ChatSessionOut])
def chat_sessions(
    db: Session = Depends(get_db),
    user: models.User = Depends(auth.get_current_user),
):
    stmt = (
        select(models.ChatSession)
        .where(models.ChatSession.user_id == user.id)
        .order_by(models.ChatSession.updated_at.desc(), models.ChatSession.id.desc())
    )
    return db.scalars(stmt).all()


# -------------------------------------------------
# Gate introspection (clients render the right prompt from this)
# -------------------------------------------------
@router.get("/access/{feature}")
def access_decision(
    feature: str,
    request: Request,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(auth.get_optional_user),
):
    rule = rule_for(feature)
    counter = _viewer_counter(db, request, user) if rule is not None and rule.metered else None
    return gate_feature(user, feature, usage=counter).to_dict()
