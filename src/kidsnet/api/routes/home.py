"""Household access routes under /api/home.

- GET  /api/home/rules — snapshot of every subject
- POST /api/home/rules/{tracker}/toggle — flip the block rule
- POST /api/home/rules/{tracker}/toggle-schedule — flip the schedule flag
- POST /api/home/rules/{tracker}/timed-allow — allow for N minutes
- POST /api/home/rules/{tracker}/cancel-timer
- POST /api/home/rules/{tracker}/skip — force blocked through the current/next window
- POST /api/home/rules/{tracker}/cancel-skip
- POST /api/home/allow-all, /api/home/block-all, /api/home/allow-all-timed
- POST /api/home/reconcile — run one tick now
"""

from fastapi import APIRouter, Depends, Request

from kidsnet.access.engine import AccessEngine
from kidsnet.api.auth import require_api_key
from kidsnet.api.dependencies import get_engine
from kidsnet.api.rate_limit import HOUSEHOLD_ACTION_LIMIT, SUBJECT_ACTION_LIMIT, limiter
from kidsnet.api.schemas import (
    BulkResponse,
    CancelResponse,
    CorrectionResponse,
    ReconcileResponse,
    RulesResponse,
    ScheduleToggleResponse,
    SkipResponse,
    SubjectStateResponse,
    TimedAllowAllResponse,
    TimedAllowRequest,
    TimerResponse,
    ToggleResponse,
)

router = APIRouter()


@router.get("/api/home/rules", response_model=RulesResponse)
async def list_rules(
    request: Request,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> RulesResponse:
    """Every subject with its live rule state, schedule, timer, and skip."""
    states = await engine.get_subject_states()
    return RulesResponse(subjects=[SubjectStateResponse.from_state(s) for s in states])


@router.post("/api/home/rules/{tracker}/toggle", response_model=ToggleResponse)
@limiter.limit(SUBJECT_ACTION_LIMIT)
async def toggle_rule(
    request: Request,
    tracker: int,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> ToggleResponse:
    allowed = await engine.toggle_manual(tracker)
    return ToggleResponse(tracker=tracker, allowed=allowed)


@router.post("/api/home/rules/{tracker}/toggle-schedule", response_model=ScheduleToggleResponse)
@limiter.limit(SUBJECT_ACTION_LIMIT)
async def toggle_schedule(
    request: Request,
    tracker: int,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> ScheduleToggleResponse:
    enabled = await engine.toggle_schedule_enabled(tracker)
    return ScheduleToggleResponse(tracker=tracker, enabled=enabled)


@router.post("/api/home/rules/{tracker}/timed-allow", response_model=TimerResponse)
@limiter.limit(SUBJECT_ACTION_LIMIT)
async def timed_allow(
    request: Request,
    tracker: int,
    body: TimedAllowRequest,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> TimerResponse:
    """Allow a subject now and re-block it after `minutes` (1-120)."""
    timer = await engine.start_timed_allow(tracker, body.minutes)
    return TimerResponse.from_timer(timer)


@router.post("/api/home/rules/{tracker}/cancel-timer", response_model=CancelResponse)
@limiter.limit(SUBJECT_ACTION_LIMIT)
async def cancel_timer(
    request: Request,
    tracker: int,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> CancelResponse:
    cancelled = await engine.cancel_timer(tracker)
    return CancelResponse(tracker=tracker, cancelled=cancelled)


@router.post("/api/home/rules/{tracker}/skip", response_model=SkipResponse)
@limiter.limit(SUBJECT_ACTION_LIMIT)
async def start_skip(
    request: Request,
    tracker: int,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> SkipResponse:
    """Skip the current or next schedule window. 409 if there is none within a week."""
    skip = await engine.start_skip(tracker)
    return SkipResponse(tracker=tracker, until=skip.until)


@router.post("/api/home/rules/{tracker}/cancel-skip", response_model=CancelResponse)
@limiter.limit(SUBJECT_ACTION_LIMIT)
async def cancel_skip(
    request: Request,
    tracker: int,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> CancelResponse:
    cancelled = await engine.cancel_skip(tracker)
    return CancelResponse(tracker=tracker, cancelled=cancelled)


@router.post("/api/home/allow-all", response_model=BulkResponse)
@limiter.limit(HOUSEHOLD_ACTION_LIMIT)
async def allow_all(
    request: Request,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> BulkResponse:
    changed = await engine.allow_all()
    return BulkResponse(changed=[CorrectionResponse.from_correction(c) for c in changed])


@router.post("/api/home/block-all", response_model=BulkResponse)
@limiter.limit(HOUSEHOLD_ACTION_LIMIT)
async def block_all(
    request: Request,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> BulkResponse:
    """Block every subject. Cancels all pending timers first."""
    changed = await engine.block_all()
    return BulkResponse(changed=[CorrectionResponse.from_correction(c) for c in changed])


@router.post("/api/home/allow-all-timed", response_model=TimedAllowAllResponse)
@limiter.limit(HOUSEHOLD_ACTION_LIMIT)
async def allow_all_timed(
    request: Request,
    body: TimedAllowRequest,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> TimedAllowAllResponse:
    timers = await engine.start_timed_allow_all(body.minutes)
    return TimedAllowAllResponse(timers=[TimerResponse.from_timer(t) for t in timers])


@router.post("/api/home/reconcile", response_model=ReconcileResponse)
@limiter.limit(HOUSEHOLD_ACTION_LIMIT)
async def reconcile_now(
    request: Request,
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> ReconcileResponse:
    """Run one reconciliation tick and report what it corrected."""
    result = await engine.run_reconciliation_tick()
    return ReconcileResponse.from_result(result)
