# red2blue/routers/pages.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Form, Query
from fastapi.responses import HTMLResponse, RedirectResponse
from loguru import logger
from sqlalchemy.orm import Session

from red2blue import auth, models
from red2blue.database import get_db
from red2blue.pages import render_account, render_login, render_upgrade

router = APIRouter(tags=["pages"])


@router.get("/login", response_class=HTMLResponse)
def login_page():
    return HTMLResponse(render_login())


@router.post("/login", response_class=HTMLResponse)
def login_form(
    username: str = Form(""),
    password: str = Form(""),
    db: Session = Depends(get_db),
):
    user = auth.authenticate(db, username, password) if username and password else None
    if not user or not user.is_active:
        logger.info("browser sign-in failed for {!r}", username)
        return HTMLResponse(render_login(error="Invalid username or password", username=username), status_code=401)

    redirect = RedirectResponse("/account", status_code=303)
    auth.set_session_cookie(redirect, auth.create_access_token(user_id=user.id, role=user.role))
    return redirect


@router.get("/account", response_class=HTMLResponse)
def account_page(user: models.User = Depends(auth.get_current_user)):
    return HTMLResponse(render_account(user))


@router.get("/upgrade", response_class=HTMLResponse)
def upgrade_page(tier: Optional[str] = Query(None)):
    return HTMLResponse(render_upgrade(tier))
