# red2blue/schemas.py
from datetime import datetime, date
from typing import Optional, Literal

from pydantic import BaseModel, EmailStr, Field

Tier = Literal["free", "premium", "ultimate"]
PaidTier = Literal["premium", "ultimate"]
Role = Literal["user", "coach", "admin"]


# -----------------------------
# AUTH
# -----------------------------
class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: Optional[int] = None


class LoginIn(BaseModel):
    # username or email
    username: str
    password: str


class RegisterIn(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=80)
    password: str = Field(min_length=8)


class UserOut(BaseModel):
    id: int
    email: EmailStr
    username: str
    role: str
    subscription_tier: str
    is_subscribed: bool
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


# -----------------------------
# CHAT
# -----------------------------
class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: Optional[datetime] = None


class ChatIn(BaseModel):
    message: str = Field(max_length=4000)
    session_id: Optional[int] = None
    # Only used when there's no stored session to read context from
    history: list[ChatTurn] = Field(default_factory=list)


class CreditsOut(BaseModel):
    used: int
    ceiling: int
    remaining: int


class CoachingReplyOut(BaseModel):
    message: str
    suggestions: list[str] = Field(default_factory=list)
    red_head_indicators: list[str] = Field(default_factory=list)
    blue_head_techniques: list[str] = Field(default_factory=list)
    urgency_level: Literal["low", "medium", "high"] = "low"


class ChatOut(BaseModel):
    session_id: Optional[int] = None
    reply: Optional[CoachingReplyOut] = None
    fallback: bool = False
    cancelled: bool = False
    credits: Optional[CreditsOut] = None


class ChatLimitationsOut(BaseModel):
    signed_in: bool
    tier: str
    can_chat: bool
    unlimited: bool
    credits: Optional[CreditsOut] = None
    gate: dict


class ChatSessionOut(BaseModel):
    id: int
    messages: list[dict]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# -----------------------------
# ASSESSMENTS
# -----------------------------
class AssessmentIn(BaseModel):
    intensity_score: int = Field(ge=0, le=100)
    decision_making_score: int = Field(ge=0, le=100)
    diversions_score: int = Field(ge=0, le=100)
    execution_score: int = Field(ge=0, le=100)


class AssessmentOut(BaseModel):
    id: int
    intensity_score: int
    decision_making_score: int
    diversions_score: int
    execution_score: int
    total_score: int
    created_at: datetime

    class Config:
        from_attributes = True


class AssessmentAnalysisOut(BaseModel):
    overall_state: Literal["red_head", "blue_head", "transitional"]
    strengths: list[str]
    opportunities: list[str]
    recommended_techniques: list[str]
    next_steps: list[str]


class AssessmentCreatedOut(BaseModel):
    assessment: AssessmentOut
    analysis: AssessmentAnalysisOut


# -----------------------------
# PROGRESS + TOOLS
# -----------------------------
class ProgressIn(BaseModel):
    date: Optional[datetime] = None
    overall_score: int = Field(ge=0, le=400)
    red_head_instances: int = Field(default=0, ge=0)
    blue_head_instances: int = Field(default=0, ge=0)
    techniques_used: list[str] = Field(default_factory=list)


class ProgressOut(ProgressIn):
    id: int
    date: datetime

    class Config:
        from_attributes = True


class XCheckIn(BaseModel):
    intensity: int = Field(ge=0, le=100)
    decision_making: int = Field(ge=0, le=100)
    diversions: int = Field(ge=0, le=100)
    execution: int = Field(ge=0, le=100)
    notes: Optional[str] = None


class XCheckOut(XCheckIn):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


class ControlCircleIn(BaseModel):
    inner_items: list[str] = Field(default_factory=list)
    middle_items: list[str] = Field(default_factory=list)
    outer_items: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class ControlCircleOut(ControlCircleIn):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


class RoutineStep(BaseModel):
    name: str
    duration: int = Field(ge=0)
    description: Optional[str] = None


class PreShotRoutineIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    steps: list[RoutineStep] = Field(default_factory=list)
    is_active: bool = True


class PreShotRoutineOut(BaseModel):
    id: int
    name: str
    steps: list[RoutineStep]
    total_duration: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class GoalIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    target_date: Optional[date] = None


class GoalOut(GoalIn):
    id: int
    is_completed: bool
    created_at: datetime

    class Config:
        from_attributes = True


# -----------------------------
# CATALOGS
# -----------------------------
class TechniqueOut(BaseModel):
    id: int
    name: str
    category: str
    description: str
    instructions: str
    duration: Optional[int] = None
    difficulty: str

    class Config:
        from_attributes = True


class ScenarioOut(BaseModel):
    id: int
    title: str
    description: str
    pressure_level: str
    category: str
    red_head_triggers: list[str]
    blue_head_techniques: list[str]

    class Config:
        from_attributes = True


# -----------------------------
# PAYMENTS
# -----------------------------
class CheckoutIn(BaseModel):
    tier: PaidTier
    email: Optional[EmailStr] = None


class CheckoutOut(BaseModel):
    checkout_id: int
    url: str
    tier: str


class PriceSummaryOut(BaseModel):
    tier: str
    label: str
    price_cents: int
    price_display: str
    billing: str


class PaymentSuccessOut(BaseModel):
    tier: str
    state: str
    checkout_id: Optional[int] = None
    next_url: str
    redirect_delay_seconds: int
    summary: PriceSummaryOut


class SignupContextOut(BaseModel):
    tier: str
    source: Literal["checkout", "url", "pending", "default"]
    summary: PriceSummaryOut


class SignupAfterPaymentIn(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=80)
    password: str = Field(min_length=8)
    tier: Optional[str] = None
    session_id: Optional[str] = None


class EntitlementOut(BaseModel):
    tier: str
    is_subscribed: bool
    lifetime: bool
    subscription_start_date: Optional[datetime] = None
    billing_enabled: bool


# -----------------------------
# ADMIN / COACH / COMMUNITY
# -----------------------------
class AdminTierUpdateIn(BaseModel):
    tier: Tier
    reset_credits: bool = False


class AdminRoleUpdateIn(BaseModel):
    role: Role


class StudentSummaryOut(BaseModel):
    id: int
    username: str
    email: EmailStr
    subscription_tier: str
    assessment_count: int
    latest_total_score: Optional[int] = None
    average_score: Optional[float] = None
    risk_level: Literal["low", "medium", "high", "unknown"]
    trend: Literal["improving", "declining", "stable"]


class LeaderboardEntryOut(BaseModel):
    rank: int
    display_name: str
    points: int
    assessments: int
    is_you: bool = False


class AssessmentPointOut(BaseModel):
    date: datetime
    total_score: int
    intensity: int
    decision_making: int
    diversions: int
    execution: int


class ToolUsageOut(BaseModel):
    name: str
    last_used: Optional[datetime] = None


class StudentDetailOut(BaseModel):
    student: StudentSummaryOut
    assessment_history: list[AssessmentPointOut]
    progress_entries_30d: int
    tool_usage: list[ToolUsageOut]
    recommendations: list[str]


# -----------------------------
# PRACTICE
# -----------------------------
class PracticeSessionIn(BaseModel):
    technique_id: int
    duration_minutes: int = Field(ge=1, le=240)
    practiced_at: Optional[datetime] = None


class TechniqueProgressOut(BaseModel):
    technique_id: int
    technique_name: str
    category: str
    practice_count: int
    total_minutes: int
    mastery_level: Literal["beginner", "intermediate", "advanced"]
    last_practiced: Optional[datetime] = None
    streak_days: int


class PracticeSessionOut(BaseModel):
    session_id: int
    progress: TechniqueProgressOut


# -----------------------------
# RECOMMENDATIONS
# -----------------------------
class RecommendationOut(BaseModel):
    id: int
    recommendation_type: str
    priority: int
    confidence_score: int
    title: str
    description: str
    reasoning: str
    expected_outcome: str
    personalized_message: str
    action_steps: list[str]
    follow_up_questions: list[str]
    is_active: bool
    feedback: Optional[int] = None
    feedback_comments: Optional[str] = None
    effectiveness: Optional[int] = None
    applied_at: Optional[datetime] = None
    created_at: datetime
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecommendationFeedbackIn(BaseModel):
    feedback: Optional[int] = Field(default=None, ge=1, le=5)
    comments: Optional[str] = None
    effectiveness_measure: Optional[int] = Field(default=None, ge=0, le=100)


class FollowUpOut(BaseModel):
    session_id: int
    follow_up_questions: list[str]


# -----------------------------
# COMMUNITY IDEAS
# -----------------------------
class IdeaIn(BaseModel):
    idea: str = Field(max_length=2000)
    category: Optional[str] = Field(default=None, max_length=40)


class IdeaOut(BaseModel):
    id: int
    content: str
    category: str
    created_at: datetime

    class Config:
        from_attributes = True


class IdeaSharedOut(BaseModel):
    message: str
    idea: IdeaOut
    chat_session_id: int
