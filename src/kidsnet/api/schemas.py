"""Pydantic request/response schemas for all API endpoints.

These are wire-format schemas — separate from domain models (access/models.py)
and ORM models (db/models.py). They define what the API accepts and returns.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from kidsnet.access.engine import Correction, TickResult
from kidsnet.access.models import ScheduleConfig, ScheduleStatus, SubjectState
from kidsnet.access.timers import Timer

# --- Subject status ---


class ScheduleStatusResponse(BaseModel):
    enabled: bool
    active: bool
    current_window_end: datetime | None = None
    next_window_start: datetime | None = None
    next_window_end: datetime | None = None

    @classmethod
    def from_status(cls, status: ScheduleStatus) -> ScheduleStatusResponse:
        return cls(
            enabled=status.enabled,
            active=status.active,
            current_window_end=status.current_window_end,
            next_window_start=status.next_window_start,
            next_window_end=status.next_window_end,
        )


class SubjectStateResponse(BaseModel):
    """One subject's access snapshot. `blocked` is null when the rule is missing."""

    tracker: int
    name: str
    found: bool
    blocked: bool | None
    schedule_rule_enabled: bool | None
    schedule: ScheduleStatusResponse
    timer_ends_at: datetime | None
    skip_until: datetime | None
    known_devices: list[str]
    blocked_devices: list[str]

    @classmethod
    def from_state(cls, state: SubjectState) -> SubjectStateResponse:
        return cls(
            tracker=state.tracker,
            name=state.name,
            found=state.found,
            blocked=state.blocked,
            schedule_rule_enabled=state.schedule_rule_enabled,
            schedule=ScheduleStatusResponse.from_status(state.schedule),
            timer_ends_at=state.timer_ends_at,
            skip_until=state.skip_until,
            known_devices=list(state.known_devices),
            blocked_devices=list(state.blocked_devices),
        )


class RulesResponse(BaseModel):
    """GET /api/home/rules response."""

    subjects: list[SubjectStateResponse]


# --- Per-subject actions ---


class ToggleResponse(BaseModel):
    tracker: int
    allowed: bool


class ScheduleToggleResponse(BaseModel):
    tracker: int
    enabled: bool


class TimedAllowRequest(BaseModel):
    """POST timed-allow request body. Range is checked by the engine (1-120)."""

    model_config = ConfigDict(extra="forbid")

    minutes: int


class TimerResponse(BaseModel):
    tracker: int
    subject_name: str
    fires_at: datetime

    @classmethod
    def from_timer(cls, timer: Timer) -> TimerResponse:
        return cls(tracker=timer.tracker, subject_name=timer.subject_name, fires_at=timer.fires_at)


class TimedAllowAllResponse(BaseModel):
    timers: list[TimerResponse]


class SkipResponse(BaseModel):
    tracker: int
    until: datetime


class CancelResponse(BaseModel):
    tracker: int
    cancelled: bool


# --- Bulk actions and reconciliation ---


class CorrectionResponse(BaseModel):
    tracker: int
    name: str
    allowed: bool
    side_effect_failures: list[str] = Field(default_factory=list)

    @classmethod
    def from_correction(cls, correction: Correction) -> CorrectionResponse:
        return cls(
            tracker=correction.subject.tracker,
            name=correction.subject.name,
            allowed=correction.allowed,
            side_effect_failures=list(correction.report.failures) if correction.report else [],
        )


class BulkResponse(BaseModel):
    """POST /allow-all and /block-all response: the subjects that changed."""

    changed: list[CorrectionResponse]


class ReconcileResponse(BaseModel):
    tick_id: str
    outcome: str
    corrections: list[CorrectionResponse]
    failed_trackers: list[int]
    expired_skips: list[int]
    error: str | None = None

    @classmethod
    def from_result(cls, result: TickResult) -> ReconcileResponse:
        return cls(
            tick_id=result.tick_id,
            outcome=result.outcome,
            corrections=[CorrectionResponse.from_correction(c) for c in result.corrections],
            failed_trackers=result.failed_trackers,
            expired_skips=result.expired_skips,
            error=result.error,
        )


# --- Schedules ---


class SchedulesPayload(BaseModel):
    """GET/PUT /api/home/schedules body, keyed by subject tracker."""

    model_config = ConfigDict(extra="forbid")

    schedules: dict[int, ScheduleConfig]


# --- Audit log ---


class AuditEntryResponse(BaseModel):
    timestamp: datetime
    tracker: int | None
    subject_name: str
    action: str
    detail: str


class AuditLogResponse(BaseModel):
    entries: list[AuditEntryResponse]


# --- Health ---


class HealthMinimalResponse(BaseModel):
    """Health response without auth — no details."""

    status: str


class HealthFullResponse(BaseModel):
    """Health response with valid API key."""

    status: str
    loop_running: bool
    subject_count: int
    active_timers: int
    active_skips: int
    last_tick_at: datetime | None = None
    last_tick_outcome: str | None = None
