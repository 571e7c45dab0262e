"""GET/PUT /api/home/schedules — recurring-window schedules per subject."""

from fastapi import APIRouter, Depends, Request

from kidsnet.access.engine import AccessEngine
from kidsnet.api.auth import require_api_key
from kidsnet.api.dependencies import get_engine
from kidsnet.api.rate_limit import SCHEDULE_SAVE_LIMIT, limiter
from kidsnet.api.schemas import SchedulesPayload

router = APIRouter()


@router.get("/api/home/schedules", response_model=SchedulesPayload)
async def get_schedules(
    request: Request,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> SchedulesPayload:
    return SchedulesPayload(schedules=engine.get_schedule_config())


@router.put("/api/home/schedules", response_model=SchedulesPayload)
@limiter.limit(SCHEDULE_SAVE_LIMIT)
async def save_schedules(
    request: Request,
    body: SchedulesPayload,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> SchedulesPayload:
    """Save schedules for the listed subjects. Windows are validated on the way in.

    Subjects not in the body keep their current schedule. An unknown tracker
    rejects the whole request with no state change.
    """
    saved = await engine.save_schedule_config(body.schedules)
    return SchedulesPayload(schedules=saved)
