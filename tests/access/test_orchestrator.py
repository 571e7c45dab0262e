"""Tests for kidsnet.access.orchestrator — rule patches, state kills, and device blocking."""

from __future__ import annotations

import pytest

from kidsnet.access.errors import AddressGroupNotFound, CollaboratorUnavailable
from kidsnet.access.models import AddressGroup, Subject
from kidsnet.access.orchestrator import (
    SideEffectOrchestrator,
    address_matches,
    expand_hosts,
    is_literal_source,
)

MAC_TRISTAN = "aa:bb:cc:00:00:01"
MAC_LYDIA = "aa:bb:cc:00:00:02"
MAC_OFFLINE = "aa:bb:cc:00:00:09"

TRISTAN = Subject(tracker=100, name="Tristan", schedule_tracker=101)
LYDIA = Subject(tracker=200, name="Lydia", schedule_tracker=201)


@pytest.fixture
async def orchestrator(firewall, wireless, store) -> SideEffectOrchestrator:
    orch = SideEffectOrchestrator(firewall=firewall, wireless=wireless, store=store)
    await orch.load()
    return orch


class TestSourceHelpers:
    @pytest.mark.parametrize(
        "source",
        ["10.0.0.20", "!10.0.0.20", "10.0.0.0/24", "fd00::1", "10.0.0.10-10.0.0.20"],
    )
    def test_literal_sources(self, source: str) -> None:
        assert is_literal_source(source) is True

    @pytest.mark.parametrize("source", ["kids_tristan", "LAN_net", "10.0.0.1-host"])
    def test_group_names(self, source: str) -> None:
        assert is_literal_source(source) is False

    def test_address_matches_exact(self) -> None:
        assert address_matches("10.0.0.20", ["10.0.0.20"])
        assert not address_matches("10.0.0.21", ["10.0.0.20"])

    def test_address_matches_network_and_range(self) -> None:
        assert address_matches("10.0.0.42", ["192.168.1.0/24", "10.0.0.0/24"])
        assert address_matches("10.0.0.15", ["10.0.0.10-10.0.0.20"])
        assert not address_matches("10.0.0.21", ["10.0.0.10-10.0.0.20"])

    def test_address_matches_missing_ip(self) -> None:
        assert not address_matches(None, ["10.0.0.0/24"])
        assert not address_matches("", ["10.0.0.0/24"])

    def test_expand_single_host_network(self) -> None:
        assert expand_hosts("10.0.0.10/32") == ["10.0.0.10"]
        assert expand_hosts("10.0.0.10") == ["10.0.0.10"]

    def test_expand_network_skips_network_and_broadcast(self) -> None:
        assert expand_hosts("10.0.0.8/30") == ["10.0.0.9", "10.0.0.10"]

    def test_expand_range(self) -> None:
        assert expand_hosts("10.0.0.10-10.0.0.12") == ["10.0.0.10", "10.0.0.11", "10.0.0.12"]

    @pytest.mark.parametrize(
        "entry", ["10.0.0.0/16", "10.0.0.0-10.0.255.255", "10.0.0.20-10.0.0.10", "printer.lan"],
    )
    def test_expand_rejects(self, entry: str) -> None:
        with pytest.raises(ValueError):
            expand_hosts(entry)


class TestResolveAddresses:
    async def test_literal(self, orchestrator) -> None:
        assert await orchestrator.resolve_addresses("10.0.0.20") == ["10.0.0.20"]

    async def test_negated_literal(self, orchestrator) -> None:
        assert await orchestrator.resolve_addresses("!10.0.0.0/24") == ["10.0.0.0/24"]

    async def test_group(self, orchestrator) -> None:
        assert await orchestrator.resolve_addresses("kids_tristan") == ["10.0.0.10", "10.0.0.11"]

    @pytest.mark.parametrize("source", ["", "any", "(self)"])
    async def test_unresolvable(self, orchestrator, source: str) -> None:
        assert await orchestrator.resolve_addresses(source) == []

    async def test_unknown_group(self, orchestrator) -> None:
        with pytest.raises(AddressGroupNotFound):
            await orchestrator.resolve_addresses("no_such_group")


class TestBlock:
    async def test_block_literal_source(self, orchestrator, firewall, wireless, store) -> None:
        await orchestrator.patch_rule(LYDIA, firewall.rules[200], False, "toggle-block")
        await orchestrator.commit()
        report = await orchestrator.apply_side_effects(LYDIA, firewall.rules[200], allowed=False)

        assert firewall.patches == [(2, False)]
        assert firewall.commits == 1
        assert firewall.killed == ["10.0.0.20"]
        assert wireless.blocked == {MAC_LYDIA}
        assert report.ok
        assert report.blocked_devices == [MAC_LYDIA]
        assert orchestrator.known_devices(200) == {MAC_LYDIA}
        assert orchestrator.blocked_devices(200) == {MAC_LYDIA}

        persisted = await store.load_device_sets()
        assert persisted[200].known == {MAC_LYDIA}
        assert persisted[200].blocked == {MAC_LYDIA}

    async def test_block_group_source_kills_every_member(self, orchestrator, firewall, wireless) -> None:
        rule = firewall.rules[100]
        await orchestrator.apply_side_effects(TRISTAN, rule, allowed=False)

        assert firewall.killed == ["10.0.0.10", "10.0.0.11"]
        assert wireless.blocked == {MAC_TRISTAN}

    async def test_offline_known_device_is_blocked(self, firewall, wireless, store) -> None:
        await store.save_device_sets(200, {MAC_OFFLINE}, set())
        orch = SideEffectOrchestrator(firewall=firewall, wireless=wireless, store=store)
        await orch.load()

        report = await orch.apply_side_effects(LYDIA, firewall.rules[200], allowed=False)

        assert wireless.blocked == {MAC_LYDIA, MAC_OFFLINE}
        assert report.blocked_devices == sorted([MAC_LYDIA, MAC_OFFLINE])
        assert orch.known_devices(200) == {MAC_LYDIA, MAC_OFFLINE}

    async def test_excluded_macs_never_learned_or_blocked(self, firewall, wireless, store) -> None:
        orch = SideEffectOrchestrator(
            firewall=firewall, wireless=wireless, store=store, excluded_macs={MAC_LYDIA}
        )
        await orch.load()

        await orch.apply_side_effects(LYDIA, firewall.rules[200], allowed=False)

        assert wireless.blocked == set()
        assert orch.known_devices(200) == set()

    async def test_network_and_range_members_killed_per_host(self, orchestrator, firewall) -> None:
        firewall.groups = [AddressGroup(id=7, name="kids_tristan", members=("10.0.0.8/30", "10.0.0.20-10.0.0.21"))]
        report = await orchestrator.apply_side_effects(TRISTAN, firewall.rules[100], allowed=False)

        assert report.ok
        assert firewall.killed == ["10.0.0.9", "10.0.0.10", "10.0.0.20", "10.0.0.21"]

    async def test_wide_or_non_address_member_reported(self, orchestrator, firewall) -> None:
        firewall.groups = [AddressGroup(id=7, name="kids_tristan", members=("10.0.0.0/16", "printer.lan", "10.0.0.10"))]
        report = await orchestrator.apply_side_effects(TRISTAN, firewall.rules[100], allowed=False)

        assert report.failures == ["kill-connections", "kill-connections"]
        assert firewall.killed == ["10.0.0.10"]

    async def test_kill_failure_is_reported_not_raised(self, orchestrator, firewall, wireless) -> None:
        firewall.fail_kill = {"10.0.0.10"}
        report = await orchestrator.apply_side_effects(TRISTAN, firewall.rules[100], allowed=False)

        assert report.failures == ["kill-connections"]
        assert firewall.killed == ["10.0.0.11"]
        assert wireless.blocked == {MAC_TRISTAN}

    async def test_wireless_query_failure_still_blocks_known(self, firewall, wireless, store) -> None:
        await store.save_device_sets(200, {MAC_OFFLINE}, set())
        orch = SideEffectOrchestrator(firewall=firewall, wireless=wireless, store=store)
        await orch.load()
        wireless.fail_list = True

        report = await orch.apply_side_effects(LYDIA, firewall.rules[200], allowed=False)

        assert "wireless-query" in report.failures
        assert wireless.blocked == {MAC_OFFLINE}

    async def test_blocked_set_holds_only_successful_blocks(self, orchestrator, firewall, wireless) -> None:
        wireless.fail_block = {MAC_LYDIA}
        report = await orchestrator.apply_side_effects(LYDIA, firewall.rules[200], allowed=False)

        assert report.failures == ["wireless-block"]
        assert orchestrator.known_devices(200) == {MAC_LYDIA}
        assert orchestrator.blocked_devices(200) == set()

    async def test_missing_group_reported(self, orchestrator, firewall) -> None:
        rule = firewall.rules[100]
        firewall.groups = []
        report = await orchestrator.apply_side_effects(TRISTAN, rule, allowed=False)

        assert report.failures == ["resolve-addresses"]
        assert firewall.killed == []

    async def test_without_wireless_only_kills_states(self, firewall, store) -> None:
        orch = SideEffectOrchestrator(firewall=firewall, wireless=None, store=store)
        await orch.load()

        report = await orch.apply_side_effects(LYDIA, firewall.rules[200], allowed=False)

        assert report.ok
        assert firewall.killed == ["10.0.0.20"]
        assert report.blocked_devices == []


class TestAllow:
    async def test_allow_unblocks_known_and_blocked(self, firewall, wireless, store) -> None:
        await store.save_device_sets(100, {MAC_TRISTAN, MAC_OFFLINE}, {MAC_TRISTAN})
        orch = SideEffectOrchestrator(firewall=firewall, wireless=wireless, store=store)
        await orch.load()

        await orch.patch_rule(TRISTAN, firewall.rules[100], True, "toggle-allow")
        await orch.commit()
        report = await orch.apply_side_effects(TRISTAN, firewall.rules[100], allowed=True)

        assert firewall.patches == [(1, True)]
        assert sorted(wireless.unblock_calls) == sorted([MAC_TRISTAN, MAC_OFFLINE])
        assert report.unblocked_devices == sorted([MAC_TRISTAN, MAC_OFFLINE])
        assert orch.blocked_devices(100) == set()
        assert orch.known_devices(100) == {MAC_TRISTAN, MAC_OFFLINE}
        assert (await store.load_device_sets())[100].blocked == set()

    async def test_allow_falls_back_to_current_clients(self, orchestrator, firewall, wireless) -> None:
        report = await orchestrator.apply_side_effects(TRISTAN, firewall.rules[100], allowed=True)

        assert wireless.unblock_calls == [MAC_TRISTAN]
        assert report.addresses == ["10.0.0.10", "10.0.0.11"]

    async def test_allow_does_not_kill_states(self, orchestrator, firewall) -> None:
        await orchestrator.apply_side_effects(LYDIA, firewall.rules[200], allowed=True)
        assert firewall.killed == []


class TestCommit:
    async def test_commit_returns_staged_transitions(self, orchestrator, firewall) -> None:
        await orchestrator.patch_rule(LYDIA, firewall.rules[200], False, "toggle-block")
        assert orchestrator.commit_pending is True

        committed = await orchestrator.commit()

        assert [(t.subject.tracker, t.allowed, t.action) for t in committed] == [(200, False, "toggle-block")]
        assert orchestrator.commit_pending is False
        assert orchestrator.staged == []

    async def test_commit_failure_keeps_transitions_staged(self, orchestrator, firewall, wireless) -> None:
        await orchestrator.patch_rule(LYDIA, firewall.rules[200], False, "schedule-block")
        firewall.fail_commit = True
        with pytest.raises(CollaboratorUnavailable):
            await orchestrator.commit()

        assert orchestrator.commit_pending is True
        assert [t.action for t in orchestrator.staged] == ["schedule-block"]
        assert firewall.killed == []
        assert wireless.block_calls == []

    async def test_later_commit_returns_earlier_staged(self, orchestrator, firewall) -> None:
        await orchestrator.patch_rule(LYDIA, firewall.rules[200], False, "schedule-block")
        firewall.fail_commit = True
        with pytest.raises(CollaboratorUnavailable):
            await orchestrator.commit()

        firewall.fail_commit = False
        await orchestrator.patch_rule(TRISTAN, firewall.rules[100], True, "toggle-allow")
        committed = await orchestrator.commit()

        assert sorted(t.subject.tracker for t in committed) == [100, 200]
        assert orchestrator.commit_pending is False
        assert firewall.commits == 1

    async def test_repatch_replaces_staged_transition(self, orchestrator, firewall) -> None:
        await orchestrator.patch_rule(LYDIA, firewall.rules[200], False, "toggle-block")
        await orchestrator.patch_rule(LYDIA, firewall.rules[200], True, "toggle-allow")

        assert [(t.allowed, t.action) for t in orchestrator.staged] == [(True, "toggle-allow")]

    async def test_patch_failure_raises(self, orchestrator, firewall) -> None:
        firewall.fail_patch = {2}
        with pytest.raises(CollaboratorUnavailable):
            await orchestrator.patch_rule(LYDIA, firewall.rules[200], False, "toggle-block")
        assert orchestrator.staged == []
        assert firewall.commits == 0

    async def test_schedule_rule_patch_uses_plain_semantics(self, orchestrator, firewall) -> None:
        await orchestrator.patch_schedule_rule(firewall.rules[101], enabled=True)
        assert firewall.patches == [(3, False)]
        assert orchestrator.commit_pending is True
        assert await orchestrator.commit() == []
