# red2blue/auth.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from red2blue import config
from red2blue.database import get_db
from red2blue.models import User
from red2blue.tiers import ROLE_ADMIN, ROLE_COACH, normalize_role

ALGORITHM = "HS256"

# -------------------------------------------------------------------
# Password hashing
# -------------------------------------------------------------------
pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)

# Swagger uses this to send: Authorization: Bearer <token>
# auto_error=False so the session cookie can stand in for the header.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# -------------------------------------------------------------------
# JWT create/verify
# -------------------------------------------------------------------
def create_access_token(*, user_id: int, role: Optional[str] = None, expires_minutes: Optional[int] = None) -> str:
    """
    Token claims:
      sub: user id (string)
      rol: role at issue time (informational; the DB row is authoritative)
      exp: expiry datetime
    """
    expire = datetime.utcnow() + timedelta(minutes=expires_minutes or config.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(int(user_id)),
        "rol": normalize_role(role),
        "exp": expire,
    }
    return jwt.encode(payload, config.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
        if not payload.get("sub"):
            raise ValueError("Token missing required claims")
        return payload
    except (JWTError, ValueError) as e:
        raise ValueError("Invalid token") from e


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=config.SESSION_COOKIE_NAME)


# -------------------------------------------------------------------
# Lookups
# -------------------------------------------------------------------
def find_user_by_login(db: Session, identifier: str) -> Optional[User]:
    ident = (identifier or "").strip()
    if not ident:
        return None
    return db.scalar(
        select(User).where(or_(User.username == ident, User.email == ident.lower()))
    )


def authenticate(db: Session, identifier: str, password: str) -> Optional[User]:
    user = find_user_by_login(db, identifier)
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def _auth_401() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "SIGN_IN_REQUIRED", "message": "Not authenticated"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_from_request(request: Request, bearer: Optional[str]) -> Optional[str]:
    if bearer:
        return bearer.strip() or None
    cookie = request.cookies.get(config.SESSION_COOKIE_NAME)
    return cookie.strip() if cookie else None


# -------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------
def get_optional_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """
    The only source of "is signed in": a User, or None.
    Bad/expired tokens and inactive users resolve to None.
    """
    token = _token_from_request(request, bearer)
    if not token:
        return None

    try:
        payload = decode_token(token)
        user_id = int(payload["sub"])
    except (ValueError, KeyError, TypeError):
        return None

    user = db.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise _auth_401()
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if normalize_role(user.role) != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "NOT_ADMIN", "message": "Admin privileges required"},
        )
    return user


def require_coach(user: User = Depends(get_current_user)) -> User:
    """Coaches see their students; admins can too."""
    if normalize_role(user.role) not in (ROLE_COACH, ROLE_ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "NOT_COACH", "message": "Coach privileges required"},
        )
    return user


def ensure_can_view(viewer: User, user_id: int) -> None:
    """Members see their own records; coaches and admins see anyone's."""
    if viewer.id == user_id or normalize_role(viewer.role) in (ROLE_COACH, ROLE_ADMIN):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "FORBIDDEN", "message": "You can only view your own records"},
    )
