"""Desired-state resolution by fixed precedence.

Block rules have inverted semantics: a *disabled* block rule means the
subject is *allowed*. All code converts through the two functions below
instead of flipping booleans inline.
"""

from __future__ import annotations

from datetime import datetime

from kidsnet.access.models import FirewallRule, ScheduleStatus
from kidsnet.access.skips import Skip


def is_subject_allowed(rule: FirewallRule) -> bool:
    """A subject is allowed when its block rule is disabled."""
    return rule.disabled


def rule_disabled_for(allowed: bool) -> bool:
    """The block-rule `disabled` value that yields the requested access."""
    return allowed


def resolve_desired_state(
    *,
    timer_active: bool,
    skip: Skip | None,
    schedule: ScheduleStatus,
    now: datetime,
) -> bool | None:
    """Combine the authorities into one "should be allowed" value.

    Precedence, highest first:
    1. Active timer → allowed
    2. Active skip → blocked, overriding the schedule
    3. Schedule enabled → allowed iff a window is active
    4. Schedule disabled → None (no desired state asserted)
    """
    if timer_active:
        return True
    if skip is not None and skip.is_active(now):
        return False
    if schedule.enabled:
        return schedule.active
    return None
