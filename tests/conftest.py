from __future__ import annotations

import asyncio
import json
import os
from typing import Generator, Optional

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["EMAIL_ENABLED"] = "0"
os.environ["COACH_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from red2blue import auth, models
from red2blue.coach_client import CoachAdapter, get_coach_client
from red2blue.database import Base, get_db
from red2blue.main import app
from red2blue.seed import seed_catalogs
from red2blue.tiers import apply_tier

DEFAULT_COACH_REPLY = {
    "message": "Take a breath. Pick a small target and commit to it.",
    "suggestions": ["Box breathing before the shot"],
    "redHeadIndicators": ["rushing"],
    "blueHeadTechniques": ["Box breathing"],
    "urgencyLevel": "medium",
}


class FakeCoach(CoachAdapter):
    """Stands in for the LLM. Counts calls so tests can assert none were made."""

    def __init__(self) -> None:
        self.calls = 0
        self.reply = json.dumps(DEFAULT_COACH_REPLY)
        self.delay = 0.0
        self.error: Optional[Exception] = None
        self.last_messages = None

    async def complete(self, messages, **kwargs) -> str:
        self.calls += 1
        self.last_messages = messages
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    def get_model_info(self) -> dict:
        return {"provider": "fake", "model": "fake-coach"}


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fake_coach() -> FakeCoach:
    return FakeCoach()


@pytest.fixture()
def client(session_factory, fake_coach, monkeypatch) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("BILLING_ENABLED", "true")

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_coach_client] = lambda: fake_coach
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def seeded(db) -> Session:
    seed_catalogs(db)
    return db


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(tier: str = "free", role: str = "user", password: str = "Password123!", **kw) -> models.User:
        counter["n"] += 1
        n = counter["n"]
        user = models.User(
            email=kw.get("email") or f"golfer{n}@example.com",
            username=kw.get("username") or f"golfer{n}",
            hashed_password=auth.hash_password(password),
            role=role,
        )
        apply_tier(user, tier)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def auth_headers(user: models.User) -> dict:
    token = auth.create_access_token(user_id=user.id, role=user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def headers_for():
    return auth_headers
