# red2blue/usage.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import Request
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from red2blue import config, models
from red2blue.tiers import TIER_FREE, effective_tier, normalize_role, ROLE_ADMIN

# increment() results
INCREMENTED = "incremented"
AT_LIMIT = "at_limit"


class UsageCounter:
    """
    Free chat credits for one subject.

    count never exceeds ceiling; increment() at the ceiling is a no-op
    that reports AT_LIMIT. Only reset() lowers the count.
    """

    def __init__(self, ceiling: int, count: int = 0):
        self.ceiling = max(int(ceiling), 0)
        self.count = min(max(int(count), 0), self.ceiling)

    def increment(self) -> str:
        if self.count >= self.ceiling:
            return AT_LIMIT
        self.count += 1
        return INCREMENTED

    def remaining(self) -> int:
        return max(self.ceiling - self.count, 0)

    def reset(self) -> None:
        self.count = 0

    @property
    def at_limit(self) -> bool:
        return self.count >= self.ceiling

    def to_dict(self) -> dict:
        return {"used": self.count, "ceiling": self.ceiling, "remaining": self.remaining()}

    def __repr__(self) -> str:
        return f"UsageCounter(count={self.count}, ceiling={self.ceiling})"


# -------------------------------------------------
# Subject + ceiling
# -------------------------------------------------
def get_client_ip(request: Request) -> str:
    """
    Peer address of the request. Forwarded headers are not read here:
    ProxyHeadersMiddleware (main.py) rewrites request.client, and only for
    hops listed in FORWARDED_ALLOW_IPS.
    """
    if request.client:
        return request.client.host
    return "unknown"


def subject_key(user=None, client_ip: Optional[str] = None) -> str:
    if user is not None:
        return f"user:{user.id}"
    return f"ip:{client_ip or 'unknown'}"


def ceiling_for(user) -> Optional[int]:
    """
    Free-credit ceiling for a viewer, or None when chat is unmetered
    (paid tiers and admins).
    """
    if user is None:
        return config.ANON_CHAT_CREDITS
    if normalize_role(getattr(user, "role", None)) == ROLE_ADMIN:
        return None
    if effective_tier(user) == TIER_FREE:
        return config.FREE_MEMBER_CHAT_CREDITS
    return None


# -------------------------------------------------
# Persistence (chat_usage table)
# -------------------------------------------------
def _get_or_create_row(db: Session, key: str, ceiling: int) -> models.ChatUsage:
    row = db.scalar(select(models.ChatUsage).where(models.ChatUsage.subject_key == key))
    if row:
        if row.ceiling != ceiling:
            row.ceiling = ceiling
            db.commit()
        return row

    row = models.ChatUsage(subject_key=key, used=0, ceiling=ceiling)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # another request created it first
        db.rollback()
        row = db.scalar(select(models.ChatUsage).where(models.ChatUsage.subject_key == key))
    db.refresh(row)
    return row


def load_counter(db: Session, key: str, ceiling: int) -> UsageCounter:
    row = _get_or_create_row(db, key, ceiling)
    return UsageCounter(ceiling=ceiling, count=row.used)


def charge(db: Session, key: str, ceiling: int) -> tuple[str, UsageCounter]:
    """
    Spend one credit. The conditional UPDATE keeps used <= ceiling even
    when two sends race for the last credit.
    """
    _get_or_create_row(db, key, ceiling)

    result = db.execute(
        update(models.ChatUsage)
        .where(models.ChatUsage.subject_key == key, models.ChatUsage.used < ceiling)
        .values(used=models.ChatUsage.used + 1, updated_at=datetime.utcnow())
    )
    db.commit()

    counter = load_counter(db, key, ceiling)
    if result.rowcount == 0:
        logger.info("chat credit refused: {} at limit ({}/{})", key, counter.count, counter.ceiling)
        return AT_LIMIT, counter

    return INCREMENTED, counter


def reset_usage(db: Session, key: str) -> None:
    row = db.scalar(select(models.ChatUsage).where(models.ChatUsage.subject_key == key))
    if not row:
        return
    row.used = 0
    row.updated_at = datetime.utcnow()
    db.commit()
    logger.info("chat credits reset for {}", key)
