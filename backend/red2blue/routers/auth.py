# red2blue/routers/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from red2blue import auth, config, models, schemas
from red2blue.database import get_db
from red2blue.emailer import send_email_if_configured
from red2blue.email_templates import welcome
from red2blue.tiers import TIER_FREE, apply_tier

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _conflict(field: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"code": "ACCOUNT_CONFLICT", "message": f"That {field} is already registered.", "field": field},
    )


def _invalid_login() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "INVALID_CREDENTIALS", "message": "Invalid username or password"},
    )


def _issue(response: Response, user: models.User) -> schemas.TokenOut:
    token = auth.create_access_token(user_id=user.id, role=user.role)
    auth.set_session_cookie(response, token)
    return schemas.TokenOut(access_token=token, user_id=user.id)


@router.post("/register", response_model=schemas.UserOut, status_code=201)
def register(payload: schemas.RegisterIn, response: Response, db: Session = Depends(get_db)):
    email = str(payload.email).strip().lower()
    username = payload.username.strip()

    if db.scalar(select(models.User).where(func.lower(models.User.email) == email)):
        raise _conflict("email")
    if db.scalar(select(models.User).where(models.User.username == username)):
        raise _conflict("username")

    user = models.User(email=email, username=username, hashed_password=auth.hash_password(payload.password))
    apply_tier(user, TIER_FREE)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise _conflict("email")
    db.refresh(user)
    logger.info("user {} registered", user.id)

    _issue(response, user)

    parts = welcome(user.username, config.app_base_url())
    send_email_if_configured(user.email, parts.subject, parts.body)
    return user


@router.post("/login", response_model=schemas.TokenOut)
def login(payload: schemas.LoginIn, response: Response, db: Session = Depends(get_db)):
    user = auth.authenticate(db, payload.username, payload.password)
    if not user:
        raise _invalid_login()
    if not user.is_active:
        raise HTTPException(status_code=403, detail={"code": "INACTIVE", "message": "Account is inactive"})
    return _issue(response, user)


# Swagger "Authorize" button posts form data here
@router.post("/token", response_model=schemas.TokenOut)
def login_form(
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    user = auth.authenticate(db, form_data.username, form_data.password)
    if not user or not user.is_active:
        raise _invalid_login()
    return _issue(response, user)


@router.post("/logout")
def logout(response: Response):
    auth.clear_session_cookie(response)
    return {"ok": True}


@router.get("/me", response_model=schemas.UserOut)
def me(user: models.User = Depends(auth.get_current_user)):
    return user
