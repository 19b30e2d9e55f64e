"""Health check route."""

import time
from typing import Any

from fastapi import APIRouter

from strategist import __version__
from strategist.core.circuit_breaker import CircuitState, get_all_circuit_breakers
from strategist.core.config import settings

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()


@router.get("")
async def health_check() -> dict[str, Any]:
    """Process health with circuit breaker states. No authentication required.

    Reports "degraded" while any provider circuit is open.
    """
    breakers = {name: cb.snapshot() for name, cb in get_all_circuit_breakers().items()}
    degraded = any(snap["state"] == CircuitState.OPEN.value for snap in breakers.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "version": __version__,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "circuit_breakers": breakers,
        "services": {
            "web_search": settings.search_configured,
            "grok": settings.grok_configured,
            "instagram": settings.instagram_configured,
        },
    }
