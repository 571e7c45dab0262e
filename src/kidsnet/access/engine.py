"""Access engine — owns every authority over subject access and reconciles the firewall toward it.

State owned here (never module-level globals):
    - schedules (durable, reloaded on every save)
    - timers and skips (memory-resident)
    - device caches (via the SideEffectOrchestrator, durable)

Mutation happens on a single event loop. Overlapping ticks are tolerated
rather than serialized: every correction is computed from a freshly fetched
rule set and every downstream action is idempotent.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kidsnet.access.audit import AuditSink
from kidsnet.access.errors import (
    AccessError,
    CollaboratorUnavailable,
    InvalidRequest,
    NoUpcomingWindow,
    RuleNotFound,
    SubjectNotFound,
)
from kidsnet.access.loader import load_subjects
from kidsnet.access.models import (
    FirewallRule,
    ScheduleConfig,
    Subject,
    SubjectsConfig,
    SubjectState,
)
from kidsnet.access.orchestrator import SideEffectOrchestrator, SideEffectReport
from kidsnet.access.resolver import is_subject_allowed, resolve_desired_state
from kidsnet.access.schedule import evaluate_schedule
from kidsnet.access.skips import Skip, SkipRegistry
from kidsnet.access.timers import Sleep, Timer, TimerRegistry
from kidsnet.config import Settings
from kidsnet.integrations.base import FirewallBackend, WirelessBackend
from kidsnet.integrations.notifier import CompositeNotifier, create_notifier
from kidsnet.integrations.pfsense import PfSenseClient
from kidsnet.integrations.unifi import UniFiClient
from kidsnet.observability.metrics import record_correction, record_tick, set_override_counts
from kidsnet.store import AccessStore, AuditRecord

logger = structlog.get_logger()

Clock = Callable[[], datetime]

MIN_TIMED_MINUTES = 1
MAX_TIMED_MINUTES = 120


@dataclass
class Correction:
    """One subject whose rule is being driven to a new access state."""

    subject: Subject
    rule: FirewallRule
    allowed: bool
    action: str = ""
    report: SideEffectReport | None = None


@dataclass
class TickResult:
    """Outcome of one reconciliation pass."""

    tick_id: str
    started_at: datetime
    outcome: str
    corrections: list[Correction] = field(default_factory=list)
    retried: list[Correction] = field(default_factory=list)
    failed_trackers: list[int] = field(default_factory=list)
    expired_skips: list[int] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0


def validate_minutes(minutes: int) -> int:
    """Reject timed-allow durations outside 1..120 minutes.

    Raises:
        InvalidRequest: If minutes is not an integer in range.
    """
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise InvalidRequest(f"minutes must be an integer, got {minutes!r}")
    if not MIN_TIMED_MINUTES <= minutes <= MAX_TIMED_MINUTES:
        raise InvalidRequest(
            f"minutes must be between {MIN_TIMED_MINUTES} and {MAX_TIMED_MINUTES}, got {minutes}"
        )
    return minutes


class AccessEngine:
    """Reconciliation engine for subject access.

    Args:
        subjects: Validated subjects configuration.
        firewall: Firewall rule and connection-state collaborator.
        wireless: Wireless controller, or None when not configured.
        store: Durable store for schedules, device caches, and audit.
        audit: Audit/notification sink.
        clock: Returns the current instant in the schedule timezone.
        sleep: Awaitable sleep used by timers and the loop (injectable for tests).
        interval_seconds: Period of the reconciliation loop.
    """

    def __init__(
        self,
        subjects: SubjectsConfig,
        firewall: FirewallBackend,
        wireless: WirelessBackend | None,
        store: AccessStore,
        audit: AuditSink,
        *,
        clock: Clock,
        sleep: Sleep = asyncio.sleep,
        interval_seconds: float = 15.0,
    ) -> None:
        self._subjects: dict[int, Subject] = {s.tracker: s for s in subjects.subjects}
        self._firewall = firewall
        self._wireless = wireless
        self._store = store
        self._audit = audit
        self._clock = clock
        self._sleep = sleep
        self._interval = interval_seconds

        self._schedules: dict[int, ScheduleConfig] = {}
        self.timers = TimerRegistry(sleep=sleep)
        self.skips = SkipRegistry()
        self.orchestrator = SideEffectOrchestrator(
            firewall=firewall,
            wireless=wireless,
            store=store,
            excluded_macs=set(subjects.excluded_macs),
        )

        self._loop_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[TickResult | None]] = set()
        self.last_tick: TickResult | None = None

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        firewall: FirewallBackend | None = None,
        wireless: WirelessBackend | None = None,
        notifier: CompositeNotifier | None = None,
    ) -> AccessEngine:
        """Factory method — build a loaded engine from settings.

        Collaborators are constructed from settings unless injected.
        """
        subjects = await load_subjects(settings.subjects_file_path)

        if firewall is None:
            firewall = PfSenseClient(
                base_url=settings.pfsense_url,
                api_key=settings.pfsense_api_key,
                timeout=settings.httpx_timeout_seconds,
                verify_tls=settings.pfsense_verify_tls,
            )

        if wireless is None and settings.unifi_url and settings.unifi_api_key:
            wireless = UniFiClient(
                base_url=settings.unifi_url,
                api_key=settings.unifi_api_key,
                site=settings.unifi_site,
                path_prefix=settings.unifi_path_prefix,
                timeout=settings.httpx_timeout_seconds,
                verify_tls=settings.unifi_verify_tls,
            )
        if wireless is None:
            await logger.ainfo("wireless_controller_not_configured")

        if notifier is None and settings.notifications_enabled:
            notifier = create_notifier(
                discord_webhook_url=str(settings.discord_webhook_url) if settings.discord_webhook_url else None,
                slack_webhook_url=str(settings.slack_webhook_url) if settings.slack_webhook_url else None,
                httpx_timeout=settings.httpx_timeout_seconds,
            )

        store = AccessStore(session_factory, audit_max_entries=settings.audit_log_max_entries)
        tz = settings.tzinfo
        engine = cls(
            subjects=subjects,
            firewall=firewall,
            wireless=wireless,
            store=store,
            audit=AuditSink(store, notifier),
            clock=lambda: datetime.now(tz),
            interval_seconds=settings.reconcile_interval_seconds,
        )
        await engine.load()
        return engine

    # --- Lifecycle ---

    async def load(self) -> None:
        """Load schedules and device caches from the store."""
        self._schedules = await self._store.load_schedules()
        await self.orchestrator.load()
        await logger.ainfo(
            "engine_loaded",
            subject_count=len(self._subjects),
            schedule_count=len(self._schedules),
        )

    async def start(self) -> None:
        """Start the periodic reconciliation loop (first tick runs immediately)."""
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run_loop(), name="reconcile-loop")
        await logger.ainfo("reconcile_loop_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the loop, background ticks, and every pending timer."""
        tasks = list(self._background)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.timers.cancel_all()
        set_override_counts(len(self.timers), len(self.skips))
        await logger.ainfo("reconcile_loop_stopped")

    async def close(self) -> None:
        """Stop the engine and close collaborator HTTP clients."""
        await self.stop()
        await self._firewall.close()
        if self._wireless is not None:
            await self._wireless.close()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def subjects(self) -> list[Subject]:
        return list(self._subjects.values())

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.run_reconciliation_tick()
            except Exception:
                await logger.aerror("reconcile_tick_crashed", exc_info=True)
            await self._sleep(self._interval)

    def trigger_reconciliation(self) -> asyncio.Task[TickResult | None]:
        """Schedule an out-of-band tick without awaiting it."""
        task = asyncio.create_task(self._safe_tick(), name="reconcile-trigger")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _safe_tick(self) -> TickResult | None:
        try:
            return await self.run_reconciliation_tick()
        except Exception:
            await logger.aerror("reconcile_tick_crashed", exc_info=True)
            return None

    # --- Lookups ---

    def _subject(self, tracker: int) -> Subject:
        subject = self._subjects.get(tracker)
        if subject is None:
            raise SubjectNotFound(f"No subject with tracker {tracker}")
        return subject

    async def _fetch_rules(self) -> dict[int, FirewallRule]:
        """One fresh fetch of the actual rule set, keyed by tracker."""
        return {rule.tracker: rule for rule in await self._firewall.list_rules()}

    async def _rule_for(self, subject: Subject) -> FirewallRule:
        rule = (await self._fetch_rules()).get(subject.tracker)
        if rule is None:
            raise RuleNotFound(f"No firewall rule with tracker {subject.tracker} for {subject.name}")
        return rule

    def _update_gauges(self) -> None:
        set_override_counts(len(self.timers), len(self.skips))

    # --- Direct drives ---

    async def _commit(self, own: list[Correction]) -> list[Correction]:
        """Commit staged patches and run the downstream effects of everything committed.

        `own` holds the caller's freshly patched corrections; the caller audits
        those. Transitions left staged by an earlier failed commit are finished
        here, audited under their original action, and returned.

        Raises:
            CollaboratorUnavailable: If the commit fails. Every transition stays staged.
        """
        committed = await self.orchestrator.commit()
        own_trackers = {c.subject.tracker for c in own}
        carried = [
            Correction(subject=t.subject, rule=t.rule, allowed=t.allowed, action=t.action)
            for t in committed
            if t.subject.tracker not in own_trackers
        ]

        for correction in [*own, *carried]:
            correction.report = await self.orchestrator.apply_side_effects(
                correction.subject, correction.rule, correction.allowed
            )

        for correction in carried:
            record_correction(correction.allowed)
            await logger.ainfo(
                "staged_transition_committed",
                tracker=correction.subject.tracker,
                action=correction.action,
                allowed=correction.allowed,
            )
            summary = correction.report.summary() if correction.report else ""
            await self._audit.record(
                correction.action,
                correction.subject,
                f"applied after an earlier failed commit; {summary}",
                notify=True,
            )
        return carried

    async def _transition(
        self, subject: Subject, rule: FirewallRule, allowed: bool, action: str
    ) -> SideEffectReport:
        """Patch, commit, and run downstream effects for one subject.

        Raises:
            CollaboratorUnavailable: If the rule patch or commit fails.
        """
        await self.orchestrator.patch_rule(subject, rule, allowed, action)
        correction = Correction(subject=subject, rule=rule, allowed=allowed, action=action)
        await self._commit([correction])
        return correction.report  # type: ignore[return-value]

    async def _drive(
        self,
        subject: Subject,
        allowed: bool,
        action: str,
        rule: FirewallRule | None = None,
    ) -> SideEffectReport | None:
        """Drive one subject to an access state. Returns None if it was already there.

        Raises:
            RuleNotFound: If the subject's rule is missing.
            CollaboratorUnavailable: If the rule patch or commit fails.
        """
        if rule is None:
            rule = await self._rule_for(subject)
        if is_subject_allowed(rule) == allowed:
            await logger.adebug("drive_noop", tracker=subject.tracker, allowed=allowed)
            return None
        return await self._transition(subject, rule, allowed, action)

    async def toggle_manual(self, tracker: int) -> bool:
        """Flip a subject's block rule. Returns the new "allowed" value."""
        subject = self._subject(tracker)
        rule = await self._rule_for(subject)
        allowed = not is_subject_allowed(rule)
        action = "toggle-allow" if allowed else "toggle-block"

        report = await self._transition(subject, rule, allowed, action)
        await self._audit.record(action, subject, report.summary(), notify=True)
        return allowed

    async def toggle_schedule_enabled(self, tracker: int) -> bool:
        """Flip a subject's schedule flag. Returns the new "enabled" value.

        The flag is mirrored onto the companion schedule rule when one is
        configured. Disabling also cancels the subject's skip.
        """
        subject = self._subject(tracker)
        current = self._schedules.get(tracker) or ScheduleConfig()
        enabled = not current.enabled

        schedules = dict(self._schedules)
        schedules[tracker] = ScheduleConfig(enabled=enabled, windows=list(current.windows))
        await self._store.save_schedules(schedules)
        self._schedules = schedules

        if not enabled and self.skips.cancel(tracker) is not None:
            await self._audit.record("skip-cancel", subject, "schedule disabled")
            self._update_gauges()

        if subject.schedule_tracker is not None:
            await self._mirror_schedule_rule(subject, enabled)

        await self._audit.record("schedule-enable" if enabled else "schedule-disable", subject)
        self.trigger_reconciliation()
        return enabled

    async def _mirror_schedule_rule(self, subject: Subject, enabled: bool) -> None:
        try:
            rules = await self._fetch_rules()
            rule = rules.get(subject.schedule_tracker)
            if rule is None:
                await logger.awarning(
                    "schedule_rule_missing",
                    tracker=subject.tracker,
                    schedule_tracker=subject.schedule_tracker,
                )
                return
            await self.orchestrator.patch_schedule_rule(rule, enabled)
            await self._commit([])
        except CollaboratorUnavailable as exc:
            await logger.awarning(
                "schedule_rule_patch_failed",
                tracker=subject.tracker,
                schedule_tracker=subject.schedule_tracker,
                error=str(exc),
            )

    # --- Timers ---

    async def start_timed_allow(self, tracker: int, minutes: int) -> Timer:
        """Allow a subject now and re-block it after `minutes`.

        Any existing timer for the subject is cancelled first.
        """
        validate_minutes(minutes)
        subject = self._subject(tracker)
        self.timers.cancel(tracker)

        report = await self._drive(subject, True, "timed-allow")
        timer = self._start_timer(subject, minutes)
        await self._audit.record(
            "timed-allow",
            subject,
            f"allowed for {minutes} min until {timer.fires_at.isoformat()}"
            + (f"; {report.summary()}" if report else ""),
            notify=True,
        )
        return timer

    async def start_timed_allow_all(self, minutes: int) -> list[Timer]:
        """Timed-allow every subject with one shared expiry and a single apply call."""
        validate_minutes(minutes)
        rules = await self._fetch_rules()

        corrections: list[Correction] = []
        targets: list[Subject] = []
        for subject in self._subjects.values():
            self.timers.cancel(subject.tracker)
            rule = rules.get(subject.tracker)
            if rule is None:
                await logger.awarning("rule_missing", tracker=subject.tracker, subject=subject.name)
                continue
            targets.append(subject)
            if not is_subject_allowed(rule):
                corrections.append(
                    Correction(subject=subject, rule=rule, allowed=True, action="allow-all-timed")
                )

        applied, _, failed = await self._apply_corrections(corrections)
        timers = [self._start_timer(s, minutes) for s in targets if s.tracker not in failed]

        names = ", ".join(t.subject_name for t in timers)
        await self._audit.record(
            "allow-all-timed",
            None,
            f"{names} allowed for {minutes} min ({len(applied)} changed)",
            notify=True,
        )
        return timers

    def _start_timer(self, subject: Subject, minutes: int) -> Timer:
        fires_at = self._clock() + timedelta(minutes=minutes)
        timer = self.timers.start(
            subject.tracker,
            subject.name,
            fires_at,
            minutes * 60,
            self._on_timer_fired,
        )
        self._update_gauges()
        return timer

    async def _on_timer_fired(self, timer: Timer) -> None:
        # Remove our own record first so a concurrent tick sees no active timer.
        if not self.timers.discard(timer):
            return
        self._update_gauges()

        subject = self._subjects.get(timer.tracker)
        if subject is None:
            return

        now = self._clock()
        status = evaluate_schedule(self._schedules.get(subject.tracker), now)
        if status.active and self.skips.get(subject.tracker, now) is None:
            await self._audit.record("timer-expire", subject, "schedule window active, access kept")
            return

        try:
            report = await self._drive(subject, False, "timer-expire")
        except AccessError as exc:
            await logger.awarning(
                "timer_reblock_failed",
                tracker=subject.tracker,
                subject=subject.name,
                error=str(exc),
            )
            return
        await self._audit.record(
            "timer-expire",
            subject,
            report.summary() if report else "already blocked",
            notify=report is not None,
        )

    async def cancel_timer(self, tracker: int) -> bool:
        """Cancel a subject's timer and drive it to its non-timer desired state.

        The drive happens even without a timer, so a grant left behind by a
        failed expiry re-block is still withdrawn. Returns False if the
        subject had no timer.
        """
        subject = self._subject(tracker)
        timer = self.timers.cancel(tracker)
        if timer is not None:
            self._update_gauges()
            await self._audit.record("timer-cancel", subject, f"was due {timer.fires_at.isoformat()}")

        now = self._clock()
        desired = resolve_desired_state(
            timer_active=False,
            skip=self.skips.get(tracker, now),
            schedule=evaluate_schedule(self._schedules.get(tracker), now),
            now=now,
        )
        allowed = bool(desired)
        action = "cancel-allow" if allowed else "cancel-block"
        report = await self._drive(subject, allowed, action)
        if timer is not None or report is not None:
            await self._audit.record(
                action,
                subject,
                report.summary() if report else "no change",
                notify=report is not None,
            )
        return timer is not None

    # --- Skips ---

    async def start_skip(self, tracker: int) -> Skip:
        """Force a subject blocked until the end of the current or next window.

        Raises:
            NoUpcomingWindow: If no window is active or upcoming within a week.
        """
        subject = self._subject(tracker)
        status = evaluate_schedule(self._schedules.get(tracker), self._clock())

        if status.active and status.current_window_end is not None:
            until = status.current_window_end
        elif status.next_window_end is not None:
            until = status.next_window_end
        else:
            raise NoUpcomingWindow(f"No active or upcoming schedule window for {subject.name}")

        skip = self.skips.start(tracker, until)
        self._update_gauges()
        await self._audit.record("skip-start", subject, f"until {until.isoformat()}")
        self.trigger_reconciliation()
        return skip

    async def cancel_skip(self, tracker: int) -> bool:
        """Remove a subject's skip. Returns False if there was none."""
        subject = self._subject(tracker)
        removed = self.skips.cancel(tracker)
        self._update_gauges()
        if removed is not None:
            await self._audit.record("skip-cancel", subject)
        self.trigger_reconciliation()
        return removed is not None

    # --- Schedules ---

    def get_schedule_config(self) -> dict[int, ScheduleConfig]:
        """Every subject's schedule; never-saved subjects get a disabled empty schedule."""
        return {
            tracker: self._schedules.get(tracker) or ScheduleConfig()
            for tracker in self._subjects
        }

    async def save_schedule_config(self, schedules: dict[int, ScheduleConfig]) -> dict[int, ScheduleConfig]:
        """Persist schedules for the given subjects and reload the full map.

        Raises:
            InvalidRequest: If the map names an unknown tracker.
        """
        unknown = sorted(set(schedules) - set(self._subjects))
        if unknown:
            raise InvalidRequest(f"Unknown subject trackers: {unknown}")

        merged = dict(self._schedules)
        merged.update(schedules)
        await self._store.save_schedules(merged)
        self._schedules = await self._store.load_schedules()

        for tracker, config in schedules.items():
            if not config.enabled and self.skips.cancel(tracker) is not None:
                await self._audit.record("skip-cancel", self._subjects[tracker], "schedule disabled")
        self._update_gauges()

        await self._audit.record(
            "schedule-save",
            None,
            ", ".join(self._subjects[t].name for t in sorted(schedules)),
        )
        self.trigger_reconciliation()
        return self.get_schedule_config()

    # --- Bulk ---

    async def allow_all(self) -> list[Correction]:
        """Allow every subject with a single apply call."""
        return await self._drive_all(True, "allow-all")

    async def block_all(self) -> list[Correction]:
        """Cancel every timer, then block every subject with a single apply call."""
        cancelled = self.timers.cancel_all()
        self._update_gauges()
        if cancelled:
            await logger.ainfo("timers_cancelled", count=len(cancelled))
        return await self._drive_all(False, "block-all")

    async def _drive_all(self, allowed: bool, action: str) -> list[Correction]:
        rules = await self._fetch_rules()
        corrections = [
            Correction(subject=subject, rule=rules[subject.tracker], allowed=allowed, action=action)
            for subject in self._subjects.values()
            if subject.tracker in rules and is_subject_allowed(rules[subject.tracker]) != allowed
        ]
        applied, _, _ = await self._apply_corrections(corrections)
        await self._audit.record(
            action,
            None,
            ", ".join(c.subject.name for c in applied) or "no change",
            notify=True,
        )
        return applied

    async def _apply_corrections(
        self, corrections: list[Correction]
    ) -> tuple[list[Correction], list[Correction], list[int]]:
        """Patch each rule, commit once, then run side effects per corrected subject.

        Returns the applied corrections, the transitions carried over from an
        earlier failed commit, and the trackers whose patch failed.

        Raises:
            CollaboratorUnavailable: If the commit fails.
        """
        applied: list[Correction] = []
        failed: list[int] = []
        for correction in corrections:
            try:
                await self.orchestrator.patch_rule(
                    correction.subject, correction.rule, correction.allowed, correction.action
                )
                applied.append(correction)
            except CollaboratorUnavailable as exc:
                failed.append(correction.subject.tracker)
                await logger.awarning(
                    "rule_patch_failed",
                    tracker=correction.subject.tracker,
                    subject=correction.subject.name,
                    allowed=correction.allowed,
                    error=str(exc),
                )

        carried: list[Correction] = []
        if applied or self.orchestrator.commit_pending:
            carried = await self._commit(applied)
        return applied, carried, failed

    # --- Reconciliation ---

    async def run_reconciliation_tick(self) -> TickResult:
        """Compare desired with actual state for every subject and correct drift."""
        tick_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        now = self._clock()
        result = TickResult(tick_id=tick_id, started_at=now, outcome="ok")

        with structlog.contextvars.bound_contextvars(tick_id=tick_id):
            result.expired_skips = self.skips.prune(now)
            for tracker in result.expired_skips:
                await logger.ainfo("skip_expired", tracker=tracker)

            try:
                rules = await self._fetch_rules()
            except CollaboratorUnavailable as exc:
                result.outcome = "aborted"
                result.error = str(exc)
                await logger.awarning("reconcile_fetch_failed", error=str(exc))
                return self._finish_tick(result, started)

            corrections = await self._plan_corrections(rules, now)

            try:
                applied, carried, failed = await self._apply_corrections(corrections)
            except CollaboratorUnavailable as exc:
                result.outcome = "commit_failed"
                result.error = str(exc)
                await logger.aerror("reconcile_commit_failed", error=str(exc))
                return self._finish_tick(result, started)

            result.corrections = applied
            result.retried = carried
            result.failed_trackers = failed
            if failed:
                result.outcome = "partial"

            for correction in applied:
                record_correction(correction.allowed)
                await self._audit.record(
                    correction.action,
                    correction.subject,
                    correction.report.summary() if correction.report else "",
                    notify=True,
                )

            result = self._finish_tick(result, started)
            await logger.ainfo(
                "reconcile_tick_complete",
                outcome=result.outcome,
                corrections=len(result.corrections),
                retried=len(result.retried),
                failed=len(result.failed_trackers),
                duration_seconds=round(result.duration_seconds, 3),
            )
            return result

    async def _plan_corrections(self, rules: dict[int, FirewallRule], now: datetime) -> list[Correction]:
        corrections: list[Correction] = []
        for subject in self._subjects.values():
            if self.timers.is_active(subject.tracker):
                continue
            config = self._schedules.get(subject.tracker)
            if config is None or not config.enabled:
                continue

            rule = rules.get(subject.tracker)
            if rule is None:
                await logger.awarning("rule_missing", tracker=subject.tracker, subject=subject.name)
                continue

            desired = resolve_desired_state(
                timer_active=False,
                skip=self.skips.get(subject.tracker, now),
                schedule=evaluate_schedule(config, now),
                now=now,
            )
            if desired is None or desired == is_subject_allowed(rule):
                continue
            correction = Correction(subject=subject, rule=rule, allowed=desired)
            correction.action = self._tick_action(correction, now)
            corrections.append(correction)
        return corrections

    def _tick_action(self, correction: Correction, now: datetime) -> str:
        if correction.allowed:
            return "schedule-allow"
        if self.skips.get(correction.subject.tracker, now) is not None:
            return "skip-block"
        return "schedule-block"

    def _finish_tick(self, result: TickResult, started: float) -> TickResult:
        result.duration_seconds = time.monotonic() - started
        record_tick(result.outcome, result.duration_seconds)
        self._update_gauges()
        self.last_tick = result
        return result

    # --- Status ---

    async def get_subject_states(self) -> list[SubjectState]:
        """Snapshot every subject from a fresh rule fetch."""
        rules = await self._fetch_rules()
        now = self._clock()

        states: list[SubjectState] = []
        for subject in self._subjects.values():
            rule = rules.get(subject.tracker)
            schedule_rule = rules.get(subject.schedule_tracker) if subject.schedule_tracker is not None else None
            timer = self.timers.get(subject.tracker)
            skip = self.skips.get(subject.tracker, now)
            states.append(SubjectState(
                tracker=subject.tracker,
                name=subject.name,
                found=rule is not None,
                blocked=(not is_subject_allowed(rule)) if rule is not None else None,
                schedule_rule_enabled=(not schedule_rule.disabled) if schedule_rule is not None else None,
                schedule=evaluate_schedule(self._schedules.get(subject.tracker), now),
                timer_ends_at=timer.fires_at if timer else None,
                skip_until=skip.until if skip else None,
                known_devices=tuple(sorted(self.orchestrator.known_devices(subject.tracker))),
                blocked_devices=tuple(sorted(self.orchestrator.blocked_devices(subject.tracker))),
            ))
        return states

    async def list_audit(self, limit: int = 100) -> list[AuditRecord]:
        return await self._store.list_audit(limit=limit)
