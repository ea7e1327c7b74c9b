"""
Health and readiness endpoints.

Lightweight checks for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from career_compass.core.database import check_connection, get_engine

logger = logging.getLogger("career_compass")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "profiles",
    "user_subscriptions",
    "usage_events",
    "usage_tickets",
    "referrals",
    "ai_analyses",
    "billing_events",
]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    inspector = inspect(get_engine())
    missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    return {"status": "ok"}
