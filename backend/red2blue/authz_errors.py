# red2blue/authz_errors.py
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from red2blue.tier_guard import upgrade_url

UPGRADE_CODES = ("UPGRADE_REQUIRED", "CREDITS_EXHAUSTED")


def _wants_html(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    # browsers usually send text/html
    return "text/html" in accept


def _detail(exc: StarletteHTTPException) -> dict:
    detail = getattr(exc, "detail", None)
    return detail if isinstance(detail, dict) else {}


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    headers = getattr(exc, "headers", None)
    detail = _detail(exc)

    # Unauthenticated -> login page in browser
    if exc.status_code == 401 and _wants_html(request):
        return RedirectResponse(url="/login", status_code=303)

    # Upgrade prompt -> upgrade page for the required tier
    if exc.status_code == 402 and _wants_html(request) and detail.get("code") in UPGRADE_CODES:
        return RedirectResponse(url=upgrade_url(detail.get("min_tier")), status_code=303)

    # Everything else: normal JSON
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)
