"""Schedule evaluator: is a subject inside a recurring window right now?

Pure functions with no side effects. Times are wall-clock in the timezone of
the supplied instant; weekdays use 0=Sun..6=Sat.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta

from kidsnet.access.models import ScheduleConfig, ScheduleStatus, ScheduleWindow

# Offsets 0..7 inclusive: a weekly window that already ended today is found next week.
LOOKAHEAD_DAYS = 7


def schedule_weekday(now: datetime) -> int:
    """Return the weekday of an instant with Sunday as 0."""
    return (now.weekday() + 1) % 7


def _at(now: datetime, day_offset: int, minute: int) -> datetime:
    """Build the wall-clock instant `minute` minutes after midnight, `day_offset` days from now."""
    midnight = datetime.combine(now.date() + timedelta(days=day_offset), time(0), tzinfo=now.tzinfo)
    return midnight + timedelta(minutes=minute)


def evaluate_schedule(config: ScheduleConfig | None, now: datetime) -> ScheduleStatus:
    """Evaluate a schedule at an instant.

    Args:
        config: The subject's schedule, or None if it has never been saved.
        now: The instant to evaluate, normally timezone-aware.

    Returns:
        A ScheduleStatus. When active, current_window_end is the latest end
        among the overlapping windows containing now. Otherwise the earliest
        upcoming start within the lookahead is reported with its paired end.
    """
    if config is None or not config.enabled or not config.windows:
        return ScheduleStatus(enabled=False, active=False)

    weekday = schedule_weekday(now)
    now_minute = now.hour * 60 + now.minute

    current_ends = [
        window.end_minute
        for window in config.windows
        if weekday in window.days and window.start_minute <= now_minute < window.end_minute
    ]
    if current_ends:
        return ScheduleStatus(
            enabled=True,
            active=True,
            current_window_end=_at(now, 0, max(current_ends)),
        )

    for offset in range(LOOKAHEAD_DAYS + 1):
        day = (weekday + offset) % 7
        candidates = [
            window
            for window in config.windows
            if day in window.days and (offset > 0 or window.start_minute > now_minute)
        ]
        if candidates:
            upcoming = _earliest(candidates)
            return ScheduleStatus(
                enabled=True,
                active=False,
                next_window_start=_at(now, offset, upcoming.start_minute),
                next_window_end=_at(now, offset, upcoming.end_minute),
            )

    return ScheduleStatus(enabled=True, active=False)


def _earliest(windows: list[ScheduleWindow]) -> ScheduleWindow:
    """Earliest start; among equal starts the one that runs longest."""
    return min(windows, key=lambda w: (w.start_minute, -w.end_minute))
