"""Health check endpoints — liveness and full health.

- GET /health/live — fast liveness check (no auth)
- GET /health — engine health with optional auth
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from kidsnet.access.engine import AccessEngine
from kidsnet.api.auth import optional_api_key
from kidsnet.api.dependencies import get_engine
from kidsnet.api.schemas import HealthFullResponse, HealthMinimalResponse

router = APIRouter()

# Tick outcomes that mean the firewall could not be reconciled
_DEGRADED_OUTCOMES = {"aborted", "commit_failed"}


class LivenessResponse(BaseModel):
    """Liveness check response — no sensitive data."""

    status: str


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_check() -> LivenessResponse:
    """Fast liveness check — is the process running?"""
    return LivenessResponse(status="alive")


@router.get("/health")
async def health_check(
    request: Request,
    api_key: str | None = Depends(optional_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> HealthMinimalResponse | HealthFullResponse:
    """Check engine health.

    Without authentication: returns minimal {"status": "healthy"}.
    With valid API key: loop state, override counts, and the last tick.
    """
    if api_key is None:
        return HealthMinimalResponse(status="healthy")

    last_tick = engine.last_tick
    degraded = not engine.running or (last_tick is not None and last_tick.outcome in _DEGRADED_OUTCOMES)

    return HealthFullResponse(
        status="degraded" if degraded else "healthy",
        loop_running=engine.running,
        subject_count=len(engine.subjects),
        active_timers=len(engine.timers),
        active_skips=len(engine.skips),
        last_tick_at=last_tick.started_at if last_tick else None,
        last_tick_outcome=last_tick.outcome if last_tick else None,
    )
