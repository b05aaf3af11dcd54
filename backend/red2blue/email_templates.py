# red2blue/email_templates.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from red2blue.tiers import price_summary

ORG_NAME = "Red2Blue Coaching"


@dataclass(frozen=True)
class EmailParts:
    subject: str
    body: str


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


def _line(label: str, value: Optional[str]) -> str:
    v = _clean(value) or "-"
    return f"{label}: {v}"


def _footer() -> str:
    return (
        "\n\n"
        "See you on the course,\n"
        f"Flo and the {ORG_NAME} team\n"
    )


def _links_block(base_url: str) -> str:
    base = _clean(base_url).rstrip("/")
    if not base:
        return ""
    return (
        "\n\n"
        "Links:\n"
        f"- Sign in:     {base}/login\n"
        f"- Coach chat:  {base}/api/chat\n"
    )


def welcome(username: str, base_url: str = "") -> EmailParts:
    subject = f"Welcome to {ORG_NAME}"
    body = (
        f"Hello {_clean(username) or 'there'},\n\n"
        "Your account is ready. Start with a Mental Skills assessment, then ask Flo anything "
        "about pressure, focus, or your pre-shot routine."
        f"{_links_block(base_url)}"
        f"{_footer()}"
    )
    return EmailParts(subject=subject, body=body)


def payment_receipt(username: str, tier: str, checkout_id: Optional[int] = None, base_url: str = "") -> EmailParts:
    summary = price_summary(tier)
    subject = f"{ORG_NAME} - {summary['label']} access confirmed"
    body = (
        f"Hello {_clean(username) or 'there'},\n\n"
        "Thanks for your payment. Your lifetime access is active.\n\n"
        f"{_line('Plan', summary['label'])}\n"
        f"{_line('Amount', summary['price_display'])}\n"
        f"{_line('Billing', summary['billing'])}\n"
        f"{_line('Reference', str(checkout_id) if checkout_id else None)}"
        f"{_links_block(base_url)}"
        f"{_footer()}"
    )
    return EmailParts(subject=subject, body=body)
