"""Shared test fixtures for the kidsnet test suite.

Provides an in-memory SQLite store, in-memory firewall and wireless
collaborators, a settable clock, and a manually advanced sleep so timer
firing is deterministic.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from kidsnet.access.audit import AuditSink
from kidsnet.access.engine import AccessEngine
from kidsnet.access.errors import CollaboratorUnavailable
from kidsnet.access.models import AddressGroup, FirewallRule, Subject, SubjectsConfig, WirelessClient
from kidsnet.db.session import init_db
from kidsnet.integrations.base import FirewallBackend, WirelessBackend
from kidsnet.store import AccessStore

TESTS_DIR = Path(__file__).parent
PROJECT_ROOT = TESTS_DIR.parent
SAMPLE_SUBJECTS_PATH = PROJECT_ROOT / "subjects.yaml"

# Monday 2024-01-01 10:00 UTC
MONDAY_10AM = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)

TRISTAN = 100
LYDIA = 200
MAC_TRISTAN = "aa:bb:cc:00:00:01"
MAC_LYDIA = "aa:bb:cc:00:00:02"
MAC_STRANGER = "aa:bb:cc:00:00:03"


class FakeFirewall(FirewallBackend):
    """In-memory firewall. Patches take effect immediately; commits are counted."""

    def __init__(self, rules: list[FirewallRule], groups: list[AddressGroup] | None = None) -> None:
        self.rules: dict[int, FirewallRule] = {rule.tracker: rule for rule in rules}
        self.groups: list[AddressGroup] = list(groups or [])
        self.patches: list[tuple[int, bool]] = []
        self.commits = 0
        self.killed: list[str] = []
        self.list_calls = 0
        self.fail_list = False
        self.fail_commit = False
        self.fail_patch: set[int] = set()
        self.fail_kill: set[str] = set()

    async def list_rules(self) -> list[FirewallRule]:
        self.list_calls += 1
        if self.fail_list:
            raise CollaboratorUnavailable("rules unavailable")
        return list(self.rules.values())

    async def patch_rule(self, rule_id: int, disabled: bool) -> None:
        if rule_id in self.fail_patch:
            raise CollaboratorUnavailable(f"patch {rule_id} failed")
        self.patches.append((rule_id, disabled))
        for tracker, rule in self.rules.items():
            if rule.id == rule_id:
                self.rules[tracker] = dataclasses.replace(rule, disabled=disabled)

    async def commit_pending(self) -> None:
        if self.fail_commit:
            raise CollaboratorUnavailable("apply failed")
        self.commits += 1

    async def list_address_groups(self) -> list[AddressGroup]:
        return list(self.groups)

    async def kill_connections_for_address(self, address: str) -> None:
        if address in self.fail_kill:
            raise CollaboratorUnavailable(f"kill {address} failed")
        self.killed.append(address)

    def allowed(self, tracker: int) -> bool:
        return self.rules[tracker].disabled


class FakeWireless(WirelessBackend):
    """In-memory wireless controller tracking which MACs are blocked."""

    def __init__(self, clients: list[WirelessClient]) -> None:
        self.clients = list(clients)
        self.blocked: set[str] = set()
        self.block_calls: list[str] = []
        self.unblock_calls: list[str] = []
        self.fail_list = False
        self.fail_block: set[str] = set()

    async def list_clients(self) -> list[WirelessClient]:
        if self.fail_list:
            raise CollaboratorUnavailable("controller unavailable")
        return list(self.clients)

    async def block_client(self, mac: str) -> None:
        if mac in self.fail_block:
            raise CollaboratorUnavailable(f"block {mac} failed")
        self.block_calls.append(mac)
        self.blocked.add(mac)

    async def unblock_client(self, mac: str) -> None:
        self.unblock_calls.append(mac)
        self.blocked.discard(mac)


class FakeClock:
    """Settable clock returning timezone-aware instants."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ManualSleep:
    """Sleep replacement that only returns when the test advances time."""

    def __init__(self) -> None:
        self.elapsed = 0.0
        self._waiters: list[tuple[float, asyncio.Future[None]]] = []

    async def __call__(self, delay: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((self.elapsed + delay, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self._waiters if not future.done())

    async def advance(self, seconds: float) -> None:
        # Let freshly created tasks reach their sleep first
        for _ in range(5):
            await asyncio.sleep(0)
        self.elapsed += seconds
        remaining: list[tuple[float, asyncio.Future[None]]] = []
        for due, future in self._waiters:
            if due <= self.elapsed:
                if not future.done():
                    future.set_result(None)
            else:
                remaining.append((due, future))
        self._waiters = remaining
        await asyncio.sleep(0)


async def drain(engine: AccessEngine) -> None:
    """Wait for every fire-and-forget reconciliation the engine has triggered."""
    while engine._background:
        await asyncio.gather(*list(engine._background), return_exceptions=True)


@pytest.fixture
def drain_background():
    """The drain() helper, for tests that must observe a triggered reconciliation."""
    return drain


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> AccessStore:
    return AccessStore(session_factory, audit_max_entries=50)


@pytest.fixture
def firewall() -> FakeFirewall:
    """Tristan blocked behind an address group; Lydia allowed on a literal address."""
    return FakeFirewall(
        rules=[
            FirewallRule(id=1, tracker=TRISTAN, disabled=False, source="kids_tristan"),
            FirewallRule(id=2, tracker=LYDIA, disabled=True, source="10.0.0.20"),
            FirewallRule(id=3, tracker=101, disabled=True, source="kids_tristan"),
            FirewallRule(id=4, tracker=201, disabled=True, source="10.0.0.20"),
        ],
        groups=[AddressGroup(id=7, name="kids_tristan", members=("10.0.0.10", "10.0.0.11"))],
    )


@pytest.fixture
def wireless() -> FakeWireless:
    return FakeWireless(clients=[
        WirelessClient(mac=MAC_TRISTAN, ip="10.0.0.10"),
        WirelessClient(mac=MAC_LYDIA, ip="10.0.0.20"),
        WirelessClient(mac=MAC_STRANGER, ip="10.0.0.99"),
    ])


@pytest.fixture
def subjects_config() -> SubjectsConfig:
    return SubjectsConfig(subjects=[
        Subject(tracker=TRISTAN, name="Tristan", schedule_tracker=101),
        Subject(tracker=LYDIA, name="Lydia", schedule_tracker=201),
    ])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(MONDAY_10AM)


@pytest.fixture
def manual_sleep() -> ManualSleep:
    return ManualSleep()


@pytest.fixture
def notifier() -> MagicMock:
    mock = MagicMock()
    mock.send = AsyncMock(return_value=[True])
    return mock


@pytest.fixture
async def engine(
    subjects_config: SubjectsConfig,
    firewall: FakeFirewall,
    wireless: FakeWireless,
    store: AccessStore,
    notifier: MagicMock,
    clock: FakeClock,
    manual_sleep: ManualSleep,
) -> AsyncGenerator[AccessEngine, None]:
    """A loaded engine over the fakes. Background ticks are drained on teardown."""
    access_engine = AccessEngine(
        subjects=subjects_config,
        firewall=firewall,
        wireless=wireless,
        store=store,
        audit=AuditSink(store, notifier),
        clock=clock,
        sleep=manual_sleep,
    )
    await access_engine.load()
    yield access_engine
    await drain(access_engine)
    await access_engine.stop()
