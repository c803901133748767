"""
Health check endpoints with Supabase reachability and configuration checks.
"""

import time

import httpx
from fastapi import APIRouter, Request

from rentals.config import settings
from rentals.infrastructure.observability.logging import log_readiness_check

router = APIRouter()


async def check_supabase_auth() -> bool:
    """GoTrue answers /health without a user session."""
    async with httpx.AsyncClient(timeout=5.0) as client:
        response = await client.get(
            f"{settings.auth_url()}/health", headers={"apikey": settings.SUPABASE_ANON_KEY}
        )
        return response.status_code == 200


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "rental-marketplace-client"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: Supabase Auth reachability, configuration and session state.
    """
    checks = {}
    overall_ok = True

    # 1) Supabase Auth
    t0 = time.time()
    try:
        auth_ok = await check_supabase_auth()
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["supabase_auth"] = {"ok": auth_ok, "latency_ms": latency_ms}
        log_readiness_check("supabase_auth", auth_ok, latency_ms=latency_ms)
        overall_ok = overall_ok and auth_ok
    except httpx.HTTPError as e:
        error = f"{type(e).__name__}: {e}"
        checks["supabase_auth"] = {"ok": False, "error": error}
        log_readiness_check("supabase_auth", False, error=error)
        overall_ok = False

    # 2) Configuration
    config_issues = []
    if not settings.SUPABASE_ANON_KEY:
        config_issues.append("SUPABASE_ANON_KEY not set")
    if not settings.SUPABASE_DB_URL:
        config_issues.append("SUPABASE_DB_URL not set (real-time messages disabled)")

    config_ok = bool(settings.SUPABASE_ANON_KEY)
    checks["configuration"] = {
        "ok": config_ok,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    if config_issues:
        log_readiness_check("configuration", config_ok, error="; ".join(config_issues))
    overall_ok = overall_ok and config_ok

    # 3) Session state
    session = getattr(request.app.state, "session", None)
    coordinator = getattr(request.app.state, "coordinator", None)
    checks["session"] = {
        "ok": session is not None,
        "status": session.status.value if session else None,
        "realtime_subscribed": coordinator.subscribed if coordinator else False,
    }
    overall_ok = overall_ok and session is not None

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
