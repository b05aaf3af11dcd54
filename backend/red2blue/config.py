# red2blue/config.py
from __future__ import annotations

import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv

# -------------------------------------------------
# LOAD .env ONCE (before any getenv use)
# -------------------------------------------------
_env_path = find_dotenv(usecwd=True)
load_dotenv(_env_path)


def env_str(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v.strip() if v and v.strip() else default


def truthy(name: str, default: bool = False) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


def env_int(name: str, default: int, minimum: Optional[int] = None) -> int:
    try:
        value = int((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = default
    if minimum is not None and value < minimum:
        value = minimum
    return value


def env_float(name: str, default: float) -> float:
    try:
        return float((os.getenv(name) or "").strip() or default)
    except ValueError:
        return default


# -------------------------------------------------
# Core
# -------------------------------------------------
DATABASE_URL = env_str("DATABASE_URL", "sqlite:///./red2blue.db")
LOG_LEVEL = env_str("LOG_LEVEL", "INFO").upper()

SECRET_KEY = env_str("SECRET_KEY", "CHANGE_ME_TO_SOMETHING_RANDOM_AND_LONG")
ACCESS_TOKEN_EXPIRE_MINUTES = env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 1440, minimum=1)

SESSION_COOKIE_NAME = env_str("SESSION_COOKIE_NAME", "r2b_session")
ANON_COOKIE_NAME = env_str("ANON_COOKIE_NAME", "r2b_anon")
PENDING_TIER_COOKIE_NAME = env_str("PENDING_TIER_COOKIE_NAME", "r2b_pending_tier")
PENDING_SESSION_COOKIE_NAME = env_str("PENDING_SESSION_COOKIE_NAME", "r2b_pending_checkout")
COOKIE_SECURE = truthy("COOKIE_SECURE")

# Proxies whose X-Forwarded-For is believed (comma separated, "*" for any).
# Anonymous chat credits are keyed on the resulting client address.
FORWARDED_ALLOW_IPS = env_str("FORWARDED_ALLOW_IPS", "127.0.0.1")


def app_base_url() -> str:
    """
    Used for Stripe redirects and email links.
    In production set APP_BASE_URL, e.g. https://red2blue.example
    """
    base = env_str("APP_BASE_URL").rstrip("/")
    return base or "http://127.0.0.1:8000"


# -------------------------------------------------
# Chat credits (server-side quota)
# -------------------------------------------------
ANON_CHAT_CREDITS = env_int("ANON_CHAT_CREDITS", 5, minimum=0)
FREE_MEMBER_CHAT_CREDITS = env_int("FREE_MEMBER_CHAT_CREDITS", 1, minimum=0)
FREE_ASSESSMENT_LIMIT = env_int("FREE_ASSESSMENT_LIMIT", 1, minimum=0)

# -------------------------------------------------
# Coach (LLM) client
# -------------------------------------------------
COACH_MODEL = env_str("COACH_MODEL", "gpt-4o")
COACH_BASE_URL = env_str("COACH_BASE_URL") or None
COACH_TIMEOUT_SECONDS = env_float("COACH_TIMEOUT_SECONDS", 8.0)
COACH_MAX_TOKENS = env_int("COACH_MAX_TOKENS", 800, minimum=1)
COACH_TEMPERATURE = env_float("COACH_TEMPERATURE", 0.7)
COACH_HISTORY_TURNS = env_int("COACH_HISTORY_TURNS", 3, minimum=0)


def coach_api_key() -> str:
    return env_str("COACH_API_KEY") or env_str("OPENAI_API_KEY")


# -------------------------------------------------
# Billing (Stripe, one-time lifetime payments)
# -------------------------------------------------
def billing_enabled() -> bool:
    # default = enabled unless explicitly false-like
    v = (os.getenv("BILLING_ENABLED") or "").strip().lower()
    return v not in ("0", "false", "no", "off")


PAYMENT_REDIRECT_DELAY_SECONDS = env_int("PAYMENT_REDIRECT_DELAY_SECONDS", 3, minimum=0)
PAYMENT_CURRENCY = env_str("PAYMENT_CURRENCY", "usd")

# -------------------------------------------------
# Human coaching (ultimate)
# -------------------------------------------------
COACHING_BOOKING_EMAIL = env_str("COACHING_BOOKING_EMAIL", "coaching@red2blue.app")
COACHING_SESSIONS_PER_MONTH = env_int("COACHING_SESSIONS_PER_MONTH", 2, minimum=0)
