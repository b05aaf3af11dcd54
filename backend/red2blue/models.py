# red2blue/models.py
from __future__ import annotations

from datetime import datetime, date

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from red2blue.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    username: Mapped[str] = mapped_column(String(80), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Values: "user" | "coach" | "admin"
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")

    # Entitlement. Values: free / premium / ultimate
    # Invariant: subscription_tier != "free" implies is_subscribed
    subscription_tier: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    is_subscribed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    subscription_start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # None on a paid tier means lifetime access
    subscription_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    assessments = relationship("Assessment", back_populates="user", order_by="Assessment.created_at")
    chat_sessions = relationship("ChatSession", back_populates="user")


# -------------------------------------------------
# Chat + usage
# -------------------------------------------------
class ChatSession(Base):
    """
    One conversation. Owned by a user, or by an anonymous browser session
    (anon_key) when nobody is signed in.
    messages: list of {"role": "user"|"assistant", "content": str, "timestamp": iso}
    """

    __tablename__ = "chat_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    anon_key: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    messages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="chat_sessions")


class ChatUsage(Base):
    """
    Server-side free chat credits, keyed by subject:
      "user:<id>" for signed-in users
      "ip:<addr>" for anonymous visitors (the cookie only owns transcripts)
    """

    __tablename__ = "chat_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    subject_key: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ceiling: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# -------------------------------------------------
# Payments
# -------------------------------------------------
class CheckoutRecord(Base):
    """
    One attempt to buy a tier. Survives reloads of the success page and
    failed signups, so the paid tier is never lost.
    state: initiated / redirected / confirmed / setup_pending / entitled
    """

    __tablename__ = "checkout_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    state: Mapped[str] = mapped_column(String(30), nullable=False, default="initiated")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    stripe_session_id: Mapped[str | None] = mapped_column(String(255), unique=True, index=True, nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    entitled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    user = relationship("User")


# -------------------------------------------------
# Coaching records (owned by a user)
# -------------------------------------------------
class Assessment(Base):
    __tablename__ = "assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # 0-100 each; total_score is their sum
    intensity_score: Mapped[int] = mapped_column(Integer, nullable=False)
    decision_making_score: Mapped[int] = mapped_column(Integer, nullable=False)
    diversions_score: Mapped[int] = mapped_column(Integer, nullable=False)
    execution_score: Mapped[int] = mapped_column(Integer, nullable=False)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="assessments")


class UserProgress(Base):
    __tablename__ = "user_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    overall_score: Mapped[int] = mapped_column(Integer, nullable=False)
    red_head_instances: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    blue_head_instances: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    techniques_used: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class MentalSkillsXCheck(Base):
    __tablename__ = "mental_skills_xchecks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    intensity: Mapped[int] = mapped_column(Integer, nullable=False)
    decision_making: Mapped[int] = mapped_column(Integer, nullable=False)
    diversions: Mapped[int] = mapped_column(Integer, nullable=False)
    execution: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ControlCircle(Base):
    __tablename__ = "control_circles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # inner = full control, middle = influence, outer = no control
    inner_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    middle_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    outer_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class PreShotRoutine(Base):
    __tablename__ = "pre_shot_routines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # list of {"name", "duration", "description"}
    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# -------------------------------------------------
# Global catalogs
# -------------------------------------------------
class Technique(Base):
    __tablename__ = "techniques"
    __table_args__ = (UniqueConstraint("name", name="uq_techniques_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)  # breathing / focus / pressure / anchor
    description: Mapped[str] = mapped_column(Text, nullable=False)
    instructions: Mapped[str] = mapped_column(Text, nullable=False)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)  # beginner / intermediate / advanced


class Scenario(Base):
    __tablename__ = "scenarios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    pressure_level: Mapped[str] = mapped_column(String(20), nullable=False)  # low / medium / high
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    red_head_triggers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    blue_head_techniques: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


# -------------------------------------------------
# Practice, recommendations, community
# -------------------------------------------------
class TechniquePractice(Base):
    """One logged practice session of a catalog technique."""

    __tablename__ = "technique_practice"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    technique_id: Mapped[int] = mapped_column(ForeignKey("techniques.id"), nullable=False, index=True)

    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    practiced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    technique = relationship("Technique")


class Recommendation(Base):
    """
    Stored output of the recommendation engine.
    Regenerating deactivates the previous batch; feedback stays attached to the row it was given on.
    """

    __tablename__ = "recommendations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    # technique / scenario / routine / chat_followup
    recommendation_type: Mapped[str] = mapped_column(String(30), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    expected_outcome: Mapped[str] = mapped_column(Text, nullable=False)
    personalized_message: Mapped[str] = mapped_column(Text, nullable=False)
    action_steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    follow_up_questions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    feedback: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-5
    feedback_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    effectiveness: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0-100
    applied_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class CommunityIdea(Base):
    """A technique idea shared with the community. Author is kept but never shown."""

    __tablename__ = "community_ideas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    content: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False, default="general")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
