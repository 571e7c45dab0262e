"""Prometheus metrics for reconciliation, corrections, and side effects.

Served at GET /metrics (auth required).
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest

# --- Reconciliation ---

RECONCILE_TICK_TOTAL = Counter(
    "kidsnet_reconcile_tick_total",
    "Reconciliation ticks by outcome",
    ["outcome"],
)

RECONCILE_TICK_LATENCY = Histogram(
    "kidsnet_reconcile_tick_seconds",
    "Reconciliation tick duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

CORRECTION_TOTAL = Counter(
    "kidsnet_correction_total",
    "Rule corrections issued, by resulting access",
    ["direction"],
)

# --- Side effects ---

SIDE_EFFECT_FAILURE_TOTAL = Counter(
    "kidsnet_side_effect_failure_total",
    "Downstream calls that failed during a transition",
    ["action"],
)

# --- Overrides ---

ACTIVE_TIMERS = Gauge(
    "kidsnet_active_timers",
    "Subjects with a pending timed-allow",
)

ACTIVE_SKIPS = Gauge(
    "kidsnet_active_skips",
    "Subjects with an active schedule skip",
)

# --- Notifications ---

NOTIFICATION_TOTAL = Counter(
    "kidsnet_notification_total",
    "Notifications delivered",
    ["channel"],
)


def record_tick(outcome: str, duration_seconds: float) -> None:
    """Record a finished tick ("ok", "partial", "aborted", "commit_failed")."""
    RECONCILE_TICK_TOTAL.labels(outcome=outcome).inc()
    RECONCILE_TICK_LATENCY.observe(duration_seconds)


def record_correction(allowed: bool) -> None:
    CORRECTION_TOTAL.labels(direction="allowed" if allowed else "blocked").inc()


def record_side_effect_failure(action: str) -> None:
    SIDE_EFFECT_FAILURE_TOTAL.labels(action=action).inc()


def record_notification(channel: str) -> None:
    NOTIFICATION_TOTAL.labels(channel=channel).inc()


def set_override_counts(timers: int, skips: int) -> None:
    ACTIVE_TIMERS.set(timers)
    ACTIVE_SKIPS.set(skips)


def get_metrics_output() -> bytes:
    """Return all metrics in Prometheus exposition format."""
    return generate_latest()
