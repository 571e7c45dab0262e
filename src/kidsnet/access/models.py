"""Domain models for subjects, schedules, and collaborator records.

- Pydantic models: configuration and user-supplied schedules (validated at the edge)
- Dataclasses: normalized records returned by the firewall and wireless adapters
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")
_MAC_PATTERN = re.compile(r"^[0-9a-f]{2}(:[0-9a-f]{2}){5}$")


def parse_time_of_day(value: str, *, allow_end_of_day: bool = False) -> int:
    """Parse an "HH:MM" string into minutes since midnight.

    "24:00" is accepted only when allow_end_of_day is set, so a window can
    run to the end of the day.

    Raises:
        ValueError: If the value is not a valid time of day.
    """
    match = _TIME_PATTERN.match(value.strip())
    if match is None:
        raise ValueError(f"Time must be HH:MM, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if allow_end_of_day and hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if hours > 23 or minutes > 59:
        raise ValueError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def normalize_mac(value: str) -> str:
    """Lower-case a MAC address and use colon separators.

    Raises:
        ValueError: If the value is not a MAC address.
    """
    mac = value.strip().lower().replace("-", ":")
    if not _MAC_PATTERN.match(mac):
        raise ValueError(f"Not a MAC address: {value!r}")
    return mac


# --- Configuration ---


class Subject(BaseModel):
    """A managed owner of network devices, bound to one firewall block rule."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    tracker: int
    name: str = Field(min_length=1)
    schedule_tracker: int | None = None

    @field_validator("name")
    @classmethod
    def name_stripped(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Subject name must be a non-empty string")
        return stripped


class SubjectsConfig(BaseModel):
    """Top-level subjects file. Invalid configuration fails loudly."""

    model_config = ConfigDict(extra="forbid")

    subjects: list[Subject] = Field(min_length=1)
    excluded_macs: list[str] = Field(default_factory=list)

    @field_validator("subjects")
    @classmethod
    def trackers_unique(cls, v: list[Subject]) -> list[Subject]:
        """Ensure no two subjects share a block-rule tracker."""
        trackers = [s.tracker for s in v]
        if len(trackers) != len(set(trackers)):
            raise ValueError("Subject trackers must be unique")
        return v

    @field_validator("excluded_macs")
    @classmethod
    def macs_normalized(cls, v: list[str]) -> list[str]:
        return [normalize_mac(mac) for mac in v]


class ScheduleWindow(BaseModel):
    """A recurring weekday + time-of-day interval. Days use 0=Sun..6=Sat."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    days: tuple[int, ...] = Field(min_length=1)
    start: str
    end: str

    @field_validator("days")
    @classmethod
    def days_in_range(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        """Ensure weekdays are 0-6, deduplicated and sorted."""
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("Window days must be between 0 (Sun) and 6 (Sat)")
        return tuple(sorted(set(v)))

    @field_validator("start")
    @classmethod
    def start_valid(cls, v: str) -> str:
        parse_time_of_day(v)
        return v.strip()

    @field_validator("end")
    @classmethod
    def end_valid(cls, v: str) -> str:
        parse_time_of_day(v, allow_end_of_day=True)
        return v.strip()

    @model_validator(mode="after")
    def start_before_end(self) -> ScheduleWindow:
        # Overnight windows are expressed as two same-day windows.
        if self.start_minute >= self.end_minute:
            raise ValueError(
                f"Window end ({self.end}) must be after start ({self.start}); "
                "split overnight windows at 24:00"
            )
        return self

    @property
    def start_minute(self) -> int:
        return parse_time_of_day(self.start)

    @property
    def end_minute(self) -> int:
        return parse_time_of_day(self.end, allow_end_of_day=True)


class ScheduleConfig(BaseModel):
    """A subject's recurring-window schedule."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    windows: list[ScheduleWindow] = Field(default_factory=list)

    @field_validator("windows")
    @classmethod
    def windows_deduplicated(cls, v: list[ScheduleWindow]) -> list[ScheduleWindow]:
        """Drop repeated windows while keeping the submitted order."""
        seen: set[ScheduleWindow] = set()
        unique: list[ScheduleWindow] = []
        for window in v:
            if window not in seen:
                seen.add(window)
                unique.append(window)
        return unique


# --- Collaborator records ---


@dataclass(frozen=True)
class FirewallRule:
    """A firewall rule as reported by the firewall. Source is an address, range, or alias name."""

    id: int
    tracker: int
    disabled: bool
    source: str
    description: str = ""


@dataclass(frozen=True)
class AddressGroup:
    """A named address group (firewall alias) with normalized members."""

    id: int | None
    name: str
    members: tuple[str, ...]


@dataclass(frozen=True)
class WirelessClient:
    """A client known to the wireless controller."""

    mac: str
    ip: str | None
    associated: bool = True


# --- Evaluation results ---


@dataclass(frozen=True)
class ScheduleStatus:
    """Output of the schedule evaluator for one instant."""

    enabled: bool
    active: bool
    current_window_end: datetime | None = None
    next_window_start: datetime | None = None
    next_window_end: datetime | None = None


@dataclass(frozen=True)
class SubjectState:
    """Snapshot of one subject for status displays."""

    tracker: int
    name: str
    found: bool
    blocked: bool | None
    schedule_rule_enabled: bool | None
    schedule: ScheduleStatus
    timer_ends_at: datetime | None
    skip_until: datetime | None
    known_devices: tuple[str, ...]
    blocked_devices: tuple[str, ...]
