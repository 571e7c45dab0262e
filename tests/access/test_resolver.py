"""Tests for kidsnet.access.resolver — rule inversion and precedence."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from kidsnet.access.models import FirewallRule, ScheduleStatus
from kidsnet.access.resolver import is_subject_allowed, resolve_desired_state, rule_disabled_for
from kidsnet.access.skips import Skip

NOW = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
ACTIVE = ScheduleStatus(enabled=True, active=True, current_window_end=NOW + timedelta(hours=7))
INACTIVE = ScheduleStatus(enabled=True, active=False)
DISABLED = ScheduleStatus(enabled=False, active=False)


class TestRuleInversion:
    def test_disabled_rule_means_allowed(self) -> None:
        rule = FirewallRule(id=1, tracker=10, disabled=True, source="10.0.0.1")
        assert is_subject_allowed(rule) is True

    def test_enabled_rule_means_blocked(self) -> None:
        rule = FirewallRule(id=1, tracker=10, disabled=False, source="10.0.0.1")
        assert is_subject_allowed(rule) is False

    def test_round_trip(self) -> None:
        for allowed in (True, False):
            rule = FirewallRule(id=1, tracker=10, disabled=rule_disabled_for(allowed), source="")
            assert is_subject_allowed(rule) is allowed


class TestPrecedence:
    def test_timer_beats_skip(self) -> None:
        skip = Skip(until=NOW + timedelta(hours=1))
        assert resolve_desired_state(timer_active=True, skip=skip, schedule=ACTIVE, now=NOW) is True

    def test_timer_beats_inactive_schedule(self) -> None:
        assert resolve_desired_state(timer_active=True, skip=None, schedule=INACTIVE, now=NOW) is True

    def test_skip_beats_active_schedule(self) -> None:
        skip = Skip(until=NOW + timedelta(hours=1))
        assert resolve_desired_state(timer_active=False, skip=skip, schedule=ACTIVE, now=NOW) is False

    def test_expired_skip_ignored(self) -> None:
        skip = Skip(until=NOW)
        assert resolve_desired_state(timer_active=False, skip=skip, schedule=ACTIVE, now=NOW) is True

    def test_schedule_active(self) -> None:
        assert resolve_desired_state(timer_active=False, skip=None, schedule=ACTIVE, now=NOW) is True

    def test_schedule_inactive(self) -> None:
        assert resolve_desired_state(timer_active=False, skip=None, schedule=INACTIVE, now=NOW) is False

    def test_schedule_disabled_asserts_nothing(self) -> None:
        assert resolve_desired_state(timer_active=False, skip=None, schedule=DISABLED, now=NOW) is None
