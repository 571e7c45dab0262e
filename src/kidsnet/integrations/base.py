"""Abstract collaborator contracts consumed by the access engine.

The pfSense and UniFi adapters implement these; tests drive the engine
with in-memory implementations. Every method raises a
CollaboratorUnavailable subclass on failure and returns normalized records.
"""

from __future__ import annotations

import abc

from kidsnet.access.models import AddressGroup, FirewallRule, WirelessClient


class FirewallBackend(abc.ABC):
    """Rule engine plus live connection-state table of the packet filter."""

    @abc.abstractmethod
    async def list_rules(self) -> list[FirewallRule]:
        """Fetch every rule with its current disabled flag and source."""

    @abc.abstractmethod
    async def patch_rule(self, rule_id: int, disabled: bool) -> None:
        """Set a rule's disabled flag. Takes effect after commit_pending()."""

    @abc.abstractmethod
    async def commit_pending(self) -> None:
        """Apply all pending rule changes."""

    @abc.abstractmethod
    async def list_address_groups(self) -> list[AddressGroup]:
        """Fetch every named address group with normalized members."""

    @abc.abstractmethod
    async def kill_connections_for_address(self, address: str) -> None:
        """Drop established sessions originating from a concrete address."""

    async def close(self) -> None:
        """Release network resources."""


class WirelessBackend(abc.ABC):
    """Wireless-client controller."""

    @abc.abstractmethod
    async def list_clients(self) -> list[WirelessClient]:
        """Fetch currently known clients with their addresses."""

    @abc.abstractmethod
    async def block_client(self, mac: str) -> None:
        """Block a device by hardware identifier."""

    @abc.abstractmethod
    async def unblock_client(self, mac: str) -> None:
        """Unblock a device by hardware identifier."""

    async def close(self) -> None:
        """Release network resources."""
