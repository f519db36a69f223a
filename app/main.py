"""
Facebook Ads Analytics - FastAPI Application
REST API for ad account analytics, the public ad library and subscription billing
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from datetime import datetime, timezone
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.database import init_db
from app.config import settings
from app.core.error_handlers import register_error_handlers

from app.api.routes import (
    health,
    auth,
    users,
    facebook,
    ad_accounts,
    campaigns,
    insights,
    ad_library,
    payments,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting %s...", settings.app_name)
    try:
        init_db()
        logger.info("Database initialized")
    except Exception:
        logger.exception("Database initialization failed")
    logger.info("API running on %s environment", settings.app_env)
    yield
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Backend API for Facebook ad analytics and billing",
    version="1.0.0",
    debug=settings.app_debug,
    lifespan=lifespan,
)

# Respect proxy forwarded proto/host so redirects don't downgrade to http.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


prefix = settings.api_v1_prefix

app.include_router(health.router, prefix=prefix, tags=["Health"])
app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["Auth"])
app.include_router(users.router, prefix=f"{prefix}/users", tags=["Users"])
app.include_router(facebook.router, prefix=f"{prefix}/facebook", tags=["Facebook"])
app.include_router(ad_accounts.router, prefix=f"{prefix}/ad-accounts", tags=["Ad Accounts"])
app.include_router(campaigns.router, prefix=f"{prefix}/campaigns", tags=["Campaigns"])
app.include_router(insights.router, prefix=f"{prefix}/insights", tags=["Insights"])
app.include_router(ad_library.router, prefix=f"{prefix}/ad-library", tags=["Ad Library"])
app.include_router(payments.router, prefix=f"{prefix}/payments", tags=["Payments"])
