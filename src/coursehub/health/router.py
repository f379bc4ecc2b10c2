"""Liveness, readiness and version endpoints."""

import time

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.config import get_settings
from coursehub.database import get_session
from coursehub.redis_client import get_optional_redis

router = APIRouter(tags=["Health"])

CHECK_OK = "ok"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    request: Request,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness check.

    The database is the only hard dependency. Redis and the payment provider
    client are reported, and their absence marks the instance as degraded.
    """
    checks: dict[str, str] = {}
    latency: dict[str, float] = {}

    started = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = CHECK_OK
    except Exception as exc:
        checks["database"] = f"error: {exc}"
    latency["database"] = _elapsed_ms(started)

    redis = get_optional_redis()
    if redis is None:
        checks["redis"] = "error: not initialized"
    else:
        started = time.perf_counter()
        try:
            await redis.ping()
            checks["redis"] = CHECK_OK
        except Exception as exc:
            checks["redis"] = f"error: {exc}"
        latency["redis"] = _elapsed_ms(started)

    provider = getattr(request.app.state, "payment_provider", None)
    checks["payment_provider"] = CHECK_OK if provider is not None else "error: not configured"

    all_ok = all(v == CHECK_OK for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks, "latency_ms": latency}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
