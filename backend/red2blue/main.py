# red2blue/main.py
from __future__ import annotations

from fastapi import FastAPI
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from red2blue import config, models  # noqa: F401  (models registers tables on Base)
from red2blue.authz_errors import http_exception_handler
from red2blue.database import Base, SessionLocal, engine
from red2blue.logging_setup import configure_logging
from red2blue.seed import seed_catalogs

from red2blue.routers import admin
from red2blue.routers import auth as auth_routes
from red2blue.routers import catalog
from red2blue.routers import chat
from red2blue.routers import coaching
from red2blue.routers import community
from red2blue.routers import pages
from red2blue.routers import payments
from red2blue.routers import recommendations

configure_logging()


# -------------------------------------------------
# DB SETUP
# -------------------------------------------------
Base.metadata.create_all(bind=engine)


# -------------------------------------------------
# APP SETUP
# -------------------------------------------------
app = FastAPI(title="Red2Blue Coaching Backend", version="1.0.0")

app.add_exception_handler(StarletteHTTPException, http_exception_handler)

# request.client becomes the forwarded address only behind a trusted proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=config.FORWARDED_ALLOW_IPS)

# Routers
app.include_router(auth_routes.router)
app.include_router(chat.router)
app.include_router(coaching.router)
app.include_router(catalog.router)
app.include_router(community.router)
app.include_router(recommendations.router)
app.include_router(payments.router)
app.include_router(admin.router)
app.include_router(pages.router)


# -------------------------------------------------
# ROOT + HEALTH
# -------------------------------------------------
@app.get("/")
def root():
    return {"name": "Red2Blue", "status": "ok", "docs": "/docs"}


@app.get("/health")
def health():
    return {"status": "ok", "billing_enabled": config.billing_enabled()}


# -------------------------------------------------
# STARTUP: catalog seed
# -------------------------------------------------
@app.on_event("startup")
def bootstrap_startup():
    db = SessionLocal()
    try:
        seed_catalogs(db)
    finally:
        db.close()
    logger.info("red2blue started (billing_enabled={})", config.billing_enabled())
