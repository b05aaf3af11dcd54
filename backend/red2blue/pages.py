# red2blue/pages.py
from __future__ import annotations

"""
Small server-rendered pages for the payment, upgrade and sign-in screens.
Everything else is JSON. Forms post urlencoded to their page URL; the
handlers live next to the JSON endpoints they share logic with.
"""

from html import escape
from typing import Optional

from red2blue.tiers import TIER_LABELS, effective_tier, parse_tier, price_summary

_STYLE = """
body{font-family:system-ui,sans-serif;max-width:560px;margin:48px auto;padding:0 16px;color:#0f172a}
h1{color:#1d4ed8}.card{border:1px solid #cbd5e1;border-radius:12px;padding:20px;margin:16px 0}
.price{font-size:1.6em;font-weight:700}.btn{display:inline-block;background:#1d4ed8;color:#fff;
padding:10px 18px;border-radius:8px;text-decoration:none}.muted{color:#64748b}
.error{color:#b91c1c;border:1px solid #fecaca;background:#fef2f2;border-radius:8px;padding:10px}
"""


def _page(title: str, body: str, head_extra: str = "") -> str:
    return (
        "<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{escape(title)}</title>{head_extra}<style>{_STYLE}</style></head>"
        f"<body>{body}</body></html>"
    )


def _summary_card(summary: dict) -> str:
    return (
        "<div class='card'>"
        f"<div>{escape(summary['label'])} plan</div>"
        f"<div class='price'>{escape(summary['price_display'])}</div>"
        f"<div class='muted'>{escape(summary['billing'])}</div>"
        "</div>"
    )


def _error(message: Optional[str]) -> str:
    if not message:
        return ""
    return f"<p class='error' role='alert'>{escape(message)}</p>"


def _hidden(name: str, value: Optional[str]) -> str:
    if not value:
        return ""
    return f"<input type='hidden' name='{name}' value='{escape(value, quote=True)}'>"


def render_payment_success(out) -> str:
    """Confirmation page; auto-advances to signup after the configured delay."""
    delay = int(out.redirect_delay_seconds)
    next_url = escape(out.next_url, quote=True)
    refresh = f"<meta http-equiv='refresh' content='{delay};url={next_url}'>"
    body = (
        "<h1>Payment successful</h1>"
        f"<p>Thanks! Your {escape(TIER_LABELS.get(out.tier, out.tier))} access is being set up.</p>"
        f"{_summary_card(out.summary.model_dump())}"
        f"<p class='muted'>Taking you to account setup in {delay} seconds...</p>"
        f"<a class='btn' href='{next_url}'>Continue now</a>"
    )
    return _page("Payment successful", body, refresh)


def render_signup_after_payment(
    capture,
    summary: dict,
    session_id: Optional[str] = None,
    *,
    error: Optional[str] = None,
    email: str = "",
    username: str = "",
) -> str:
    """
    Account form for a finished checkout. Re-rendered with the same tier
    and session when creation fails, so a retry never needs a new payment.
    The password is never echoed back.
    """
    body = (
        "<h1>Create your account</h1>"
        f"{_summary_card(summary)}"
        f"{_error(error)}"
        "<form id='signup' method='post' action='/signup-after-payment'>"
        f"{_hidden('tier', capture.tier)}{_hidden('session_id', session_id)}"
        f"<p><input name='email' type='email' placeholder='Email' value='{escape(email, quote=True)}' required></p>"
        f"<p><input name='username' placeholder='Username' minlength='3' value='{escape(username, quote=True)}' required></p>"
        "<p><input name='password' type='password' placeholder='Password' minlength='8' required></p>"
        "<p><button class='btn' type='submit'>Create account</button></p>"
        "</form>"
        "<p class='muted'>Already have an account? <a href='/login'>Sign in</a></p>"
    )
    return _page("Create your account", body)


def render_upgrade(tier: Optional[str], error: Optional[str] = None) -> str:
    t = parse_tier(tier)
    if t not in ("premium", "ultimate"):
        t = "premium"
    label = TIER_LABELS[t]
    body = (
        f"<h1>Upgrade to {escape(label)}</h1>"
        "<p>This part of Red2Blue is included in a higher plan.</p>"
        f"{_summary_card(price_summary(t))}"
        f"{_error(error)}"
        "<form id='upgrade' method='post' action='/upgrade'>"
        f"{_hidden('tier', t)}"
        f"<button class='btn' type='submit'>Upgrade to {escape(label)}</button>"
        "</form>"
    )
    return _page(f"Upgrade to {label}", body)


def render_login(error: Optional[str] = None, username: str = "") -> str:
    body = (
        "<h1>Sign in</h1>"
        f"{_error(error)}"
        "<form id='login' method='post' action='/login'>"
        f"<p><input name='username' placeholder='Username or email' value='{escape(username, quote=True)}' required></p>"
        "<p><input name='password' type='password' placeholder='Password' required></p>"
        "<p><button class='btn' type='submit'>Sign in</button></p>"
        "</form>"
    )
    return _page("Sign in", body)


def render_account(user) -> str:
    tier = effective_tier(user)
    body = f"<h1>Welcome, {escape(user.username)}</h1>{_summary_card(price_summary(tier))}"
    if tier == "free":
        body += "<p><a class='btn' href='/upgrade?tier=premium'>See Premium</a></p>"
    else:
        body += "<p class='muted'>Lifetime access. Nothing more to pay.</p>"
    return _page("Your account", body)
