from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import text

from app.core.settings import settings
from app.db.session import engine
from app.utils.redis_client import get_redis_client

APP_VERSION = "0.1.0"

# Probes that must pass for the service to take traffic.
CRITICAL_CHECKS = frozenset({"database"})


async def _timed(probe: Callable[[], Awaitable[Any]]) -> dict[str, Any]:
    started = time.perf_counter()
    try:
        await probe()
    except Exception as exc:
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


async def _check_db() -> dict[str, Any]:
    async def probe() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    return await _timed(probe)


async def _check_redis() -> dict[str, Any]:
    return await _timed(get_redis_client().ping)


def _channels() -> dict[str, str]:
    """Outbound notification channels are configuration, not probes."""
    return {
        "in_app": "enabled",
        "push": "enabled" if settings.fcm_server_key else "disabled",
        "email": "enabled" if settings.smtp_host else "disabled",
    }


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload() -> dict[str, Any]:
    checks = {
        "database": await _check_db(),
        # Redis only backs the menu-pattern cache; an outage degrades without blocking.
        "redis": await _check_redis(),
    }
    failing = {name for name, check in checks.items() if check["status"] != "ok"}
    return {
        "status": "degraded" if failing else "ok",
        "ready": not (failing & CRITICAL_CHECKS),
        "environment": settings.environment,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
        "channels": _channels(),
    }
