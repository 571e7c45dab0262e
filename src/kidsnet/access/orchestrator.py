"""Side-effect orchestrator — drives one subject's transition through every downstream system.

A block rule alone is not enough to cut a subject off: established sessions
survive a rule change, and wireless devices keep their association. A
transition therefore touches three systems that share no transaction:

To blocked:
    1. patch the block rule to its blocking value
    2. resolve the rule source to concrete addresses (literal or address group)
    3. kill live connection state for each address
    4. learn device identifiers at those addresses into the known set, then
       block every known identifier (offline ones included)

To allowed:
    1. patch the block rule to its permitting value
    2. unblock every blocked or known identifier (falling back to devices
       currently at the subject's addresses when both sets are empty)
    3. clear the blocked set

Rule patches raise so callers can report them; everything after the commit
is best effort, logged per step, and retried naturally on the next transition.
A patched transition stays staged until a commit succeeds, so a failed apply
defers its downstream effects to whichever later call commits it.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field

import structlog

from kidsnet.access.errors import AccessError, AddressGroupNotFound, CollaboratorUnavailable
from kidsnet.access.models import FirewallRule, Subject, WirelessClient
from kidsnet.access.resolver import rule_disabled_for
from kidsnet.integrations.base import FirewallBackend, WirelessBackend
from kidsnet.observability.metrics import record_side_effect_failure
from kidsnet.store import AccessStore, DeviceSets

logger = structlog.get_logger()

# Rule sources that match everything and cannot be narrowed to a subject's addresses
_UNRESOLVABLE_SOURCES = {"", "any", "(self)"}

# Largest network or range whose hosts get their states killed one by one
MAX_KILL_HOSTS = 256


@dataclass(frozen=True)
class StagedTransition:
    """A block-rule patch that has not been committed yet."""

    subject: Subject
    rule: FirewallRule
    allowed: bool
    action: str


@dataclass
class SideEffectReport:
    """What a transition actually did downstream."""

    tracker: int
    allowed: bool
    addresses: list[str] = field(default_factory=list)
    killed: list[str] = field(default_factory=list)
    blocked_devices: list[str] = field(default_factory=list)
    unblocked_devices: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        parts = [f"addresses={len(self.addresses)}", f"states_killed={len(self.killed)}"]
        if self.allowed:
            parts.append(f"devices_unblocked={len(self.unblocked_devices)}")
        else:
            parts.append(f"devices_blocked={len(self.blocked_devices)}")
        if self.failures:
            parts.append(f"failures={','.join(self.failures)}")
        return " ".join(parts)


def is_literal_source(source: str) -> bool:
    """True if the source is an address, a network, or an address range rather than a group name."""
    candidate = source.lstrip("!")
    try:
        ipaddress.ip_network(candidate, strict=False)
        return True
    except ValueError:
        pass
    if "-" in candidate:
        low, _, high = candidate.partition("-")
        try:
            ipaddress.ip_address(low.strip())
            ipaddress.ip_address(high.strip())
            return True
        except ValueError:
            return False
    return False


def address_matches(ip: str | None, addresses: list[str]) -> bool:
    """Check whether a client IP falls under any resolved address, network, or range."""
    if not ip:
        return False
    try:
        client_ip = ipaddress.ip_address(ip)
    except ValueError:
        return ip in addresses

    for entry in addresses:
        if "-" in entry:
            low, _, high = entry.partition("-")
            try:
                if ipaddress.ip_address(low.strip()) <= client_ip <= ipaddress.ip_address(high.strip()):
                    return True
            except (ValueError, TypeError):
                continue
            continue
        try:
            if client_ip in ipaddress.ip_network(entry, strict=False):
                return True
        except (ValueError, TypeError):
            continue
    return False


def expand_hosts(entry: str, limit: int = MAX_KILL_HOSTS) -> list[str]:
    """Expand an address, network, or range into the host addresses it covers.

    Connection state is keyed by host, so a network or range has to be
    killed host by host.

    Raises:
        ValueError: If the entry is not an address, network, or range, or
            covers more than `limit` hosts.
    """
    entry = entry.strip()
    if "-" in entry:
        low_text, _, high_text = entry.partition("-")
        low = ipaddress.ip_address(low_text.strip())
        high = ipaddress.ip_address(high_text.strip())
        if low.version != high.version or high < low:
            raise ValueError(f"Invalid address range {entry!r}")
        count = int(high) - int(low) + 1
        if count > limit:
            raise ValueError(f"Range {entry!r} covers {count} hosts, more than {limit}")
        return [str(low + offset) for offset in range(count)]

    network = ipaddress.ip_network(entry, strict=False)
    if network.num_addresses > limit:
        raise ValueError(f"Network {entry!r} covers {network.num_addresses} addresses, more than {limit}")
    # /31, /32, /127, and /128 have no network or broadcast address to leave out
    hosts = list(network) if network.num_addresses <= 2 else list(network.hosts())
    return [str(host) for host in hosts]


class SideEffectOrchestrator:
    """Sequences rule patches, commits, state kills, and wireless device blocking.

    Owns the per-subject device caches (known and blocked identifiers) and
    persists them after every change.

    Args:
        firewall: Rule engine and connection-state collaborator.
        wireless: Wireless controller, or None to skip device-level effects.
        store: Durable store for the device caches.
        excluded_macs: Identifiers that are never learned or blocked.
    """

    def __init__(
        self,
        firewall: FirewallBackend,
        wireless: WirelessBackend | None,
        store: AccessStore,
        excluded_macs: set[str] | None = None,
    ) -> None:
        self._firewall = firewall
        self._wireless = wireless
        self._store = store
        self._excluded = set(excluded_macs or ())
        self._device_sets: dict[int, DeviceSets] = {}
        self._staged: dict[int, StagedTransition] = {}
        self._commit_pending = False

    async def load(self) -> None:
        """Load the device caches from the store."""
        self._device_sets = await self._store.load_device_sets()

    @property
    def commit_pending(self) -> bool:
        """True when a rule patch has not yet been followed by a successful commit."""
        return self._commit_pending or bool(self._staged)

    @property
    def staged(self) -> list[StagedTransition]:
        """Patched block-rule transitions waiting for a successful commit."""
        return list(self._staged.values())

    def known_devices(self, tracker: int) -> set[str]:
        return set(self._sets_for(tracker).known)

    def blocked_devices(self, tracker: int) -> set[str]:
        return set(self._sets_for(tracker).blocked)

    def _sets_for(self, tracker: int) -> DeviceSets:
        sets = self._device_sets.get(tracker)
        if sets is None:
            sets = DeviceSets(known=set(), blocked=set())
            self._device_sets[tracker] = sets
        return sets

    # --- Rule level (raises) ---

    async def patch_rule(self, subject: Subject, rule: FirewallRule, allowed: bool, action: str) -> None:
        """Patch a subject's block rule toward the requested access and stage the transition.

        The patch takes effect on commit(). A later patch for the same subject
        replaces the staged transition.
        """
        await self._firewall.patch_rule(rule.id, rule_disabled_for(allowed))
        self._staged[subject.tracker] = StagedTransition(
            subject=subject, rule=rule, allowed=allowed, action=action,
        )

    async def patch_schedule_rule(self, rule: FirewallRule, enabled: bool) -> None:
        """Patch a companion schedule rule. Unlike block rules, disabled means off."""
        await self._firewall.patch_rule(rule.id, not enabled)
        self._commit_pending = True

    async def commit(self) -> list[StagedTransition]:
        """Apply pending rule changes on the firewall.

        Returns every transition this commit made live, including ones staged
        before an earlier failed commit. On failure they all stay staged.

        Raises:
            CollaboratorUnavailable: If the apply call fails.
        """
        await self._firewall.commit_pending()
        committed = list(self._staged.values())
        self._staged.clear()
        self._commit_pending = False
        return committed

    # --- Downstream effects (never raise) ---

    async def apply_side_effects(self, subject: Subject, rule: FirewallRule, allowed: bool) -> SideEffectReport:
        """Run the post-commit effects of a transition in either direction."""
        report = SideEffectReport(tracker=subject.tracker, allowed=allowed)
        if allowed:
            await self._after_allow(subject, rule, report)
        else:
            await self._after_block(subject, rule, report)

        await logger.ainfo(
            "side_effects_complete",
            tracker=subject.tracker,
            subject=subject.name,
            allowed=allowed,
            addresses=len(report.addresses),
            states_killed=len(report.killed),
            devices_blocked=len(report.blocked_devices),
            devices_unblocked=len(report.unblocked_devices),
            failures=report.failures,
        )
        return report

    async def resolve_addresses(self, source: str) -> list[str]:
        """Resolve a rule source to concrete addresses.

        Raises:
            AddressGroupNotFound: If the source names a group the firewall does not define.
            CollaboratorUnavailable: If the group listing fails.
        """
        source = source.strip()
        if source.lower() in _UNRESOLVABLE_SOURCES:
            return []
        if is_literal_source(source):
            return [source.lstrip("!")]

        for group in await self._firewall.list_address_groups():
            if group.name == source:
                return list(group.members)
        raise AddressGroupNotFound(f"Address group '{source}' not found on firewall")

    async def _resolve_for_report(self, subject: Subject, rule: FirewallRule, report: SideEffectReport) -> list[str]:
        try:
            addresses = await self.resolve_addresses(rule.source)
        except AccessError as exc:
            await self._failure(report, "resolve-addresses", subject, exc)
            return []
        report.addresses = addresses
        return addresses

    async def _after_block(self, subject: Subject, rule: FirewallRule, report: SideEffectReport) -> None:
        addresses = await self._resolve_for_report(subject, rule, report)

        # Disabling a permit path does not end established sessions.
        for address in addresses:
            try:
                hosts = expand_hosts(address)
            except ValueError as exc:
                await self._failure(report, "kill-connections", subject, exc, address=address)
                continue
            for host in hosts:
                try:
                    await self._firewall.kill_connections_for_address(host)
                    report.killed.append(host)
                except CollaboratorUnavailable as exc:
                    await self._failure(report, "kill-connections", subject, exc, address=host)

        if self._wireless is None:
            return

        sets = self._sets_for(subject.tracker)
        clients = await self._clients_at(subject, addresses, report)
        observed = {client.mac for client in clients} - self._excluded
        learned = observed - sets.known
        sets.known |= observed
        if learned:
            await logger.ainfo("devices_learned", tracker=subject.tracker, devices=sorted(learned))

        blocked: set[str] = set()
        for mac in sorted(sets.known - self._excluded):
            try:
                await self._wireless.block_client(mac)
                blocked.add(mac)
            except CollaboratorUnavailable as exc:
                await self._failure(report, "wireless-block", subject, exc, mac=mac)
        sets.blocked = blocked
        report.blocked_devices = sorted(blocked)
        await self._persist(subject.tracker)

    async def _after_allow(self, subject: Subject, rule: FirewallRule, report: SideEffectReport) -> None:
        if self._wireless is None:
            return

        sets = self._sets_for(subject.tracker)
        targets = sets.blocked | sets.known
        if not targets:
            addresses = await self._resolve_for_report(subject, rule, report)
            targets = {client.mac for client in await self._clients_at(subject, addresses, report)}

        for mac in sorted(targets):
            try:
                await self._wireless.unblock_client(mac)
                report.unblocked_devices.append(mac)
            except CollaboratorUnavailable as exc:
                await self._failure(report, "wireless-unblock", subject, exc, mac=mac)
        sets.blocked = set()
        await self._persist(subject.tracker)

    async def _clients_at(
        self, subject: Subject, addresses: list[str], report: SideEffectReport
    ) -> list[WirelessClient]:
        if self._wireless is None or not addresses:
            return []
        try:
            clients = await self._wireless.list_clients()
        except CollaboratorUnavailable as exc:
            await self._failure(report, "wireless-query", subject, exc)
            return []
        return [c for c in clients if c.associated and address_matches(c.ip, addresses)]

    async def _persist(self, tracker: int) -> None:
        sets = self._sets_for(tracker)
        try:
            await self._store.save_device_sets(tracker, sets.known, sets.blocked)
        except Exception:
            await logger.aerror("device_cache_persist_failed", tracker=tracker, exc_info=True)

    async def _failure(
        self,
        report: SideEffectReport,
        action: str,
        subject: Subject,
        exc: Exception,
        **fields: str,
    ) -> None:
        report.failures.append(action)
        record_side_effect_failure(action)
        await logger.awarning(
            "side_effect_failed",
            action=action,
            tracker=subject.tracker,
            subject=subject.name,
            error=str(exc),
            **fields,
        )
