"""Async pfSense REST API (v2) client: rules, aliases, apply, and state kills.

Responses are unwrapped from the {"data": ...} envelope and normalized into
FirewallRule / AddressGroup records at this boundary; nothing deeper in the
core branches on the controller's payload shape.

SECURITY: The API key is sent as a header and never logged.
"""

from __future__ import annotations

import ipaddress

import httpx
import structlog

from kidsnet.access.errors import CollaboratorUnavailable
from kidsnet.access.models import AddressGroup, FirewallRule
from kidsnet.integrations.base import FirewallBackend

logger = structlog.get_logger()

RULES_PATH = "/api/v2/firewall/rules"
RULE_PATH = "/api/v2/firewall/rule"
APPLY_PATH = "/api/v2/firewall/apply"
ALIASES_PATH = "/api/v2/firewall/aliases"
STATES_PATH = "/api/v2/firewall/states"


class PfSenseError(CollaboratorUnavailable):
    """A pfSense API call failed, timed out, or returned an unusable payload."""


def normalize_source(raw: object) -> str:
    """Flatten a rule source into a single string.

    Older API builds return an object ({"address": ...} or {"network": ...});
    current builds return the string directly.
    """
    if isinstance(raw, dict):
        for key in ("address", "network", "alias"):
            value = raw.get(key)
            if value:
                return str(value).strip()
        return "any" if raw.get("any") is not None else ""
    if raw is None:
        return ""
    return str(raw).strip()


def normalize_members(raw: object) -> tuple[str, ...]:
    """Flatten alias membership into an ordered tuple of address strings.

    Accepts a list of strings, a list of {"address": ...} entries, or a
    whitespace-separated string. Empty and duplicate entries are dropped.
    """
    if raw is None:
        return ()
    if isinstance(raw, str):
        items: list[object] = list(raw.split())
    elif isinstance(raw, list):
        items = raw
    else:
        items = [raw]

    members: list[str] = []
    for item in items:
        value = item.get("address", "") if isinstance(item, dict) else item
        text = str(value).strip() if value is not None else ""
        if text and text not in members:
            members.append(text)
    return tuple(members)


def state_source_prefix(address: str) -> str:
    """Build the states filter prefix for one host.

    State sources read "10.0.0.1:51234" or "fd00::1[51234]"; the port separator
    keeps 10.0.0.1 from matching 10.0.0.10. A single-host network such as
    "10.0.0.1/32" is reduced to its address. Anything wider, or not an
    address at all, is rejected: the controller filters by prefix only.
    """
    try:
        host = ipaddress.ip_address(address.strip())
    except ValueError:
        try:
            network = ipaddress.ip_network(address.strip(), strict=False)
        except ValueError as exc:
            raise PfSenseError(f"cannot kill states for non-address {address!r}") from exc
        if network.num_addresses != 1:
            raise PfSenseError(f"cannot kill states for multi-address entry {address!r}")
        host = network.network_address
    if isinstance(host, ipaddress.IPv4Address):
        return f"{host}:"
    return f"{host}["


class PfSenseClient(FirewallBackend):
    """Async pfSense REST API v2 client.

    Args:
        base_url: Firewall base URL (e.g. "https://10.40.0.1:5555").
        api_key: REST API key, sent as X-API-Key.
        timeout: HTTP request timeout in seconds.
        verify_tls: Verify the firewall's certificate (usually self-signed).
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        verify_tls: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._verify_tls = verify_tls
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "X-API-Key": self._api_key,
                    "Accept": "application/json",
                },
                timeout=self._timeout,
                verify=self._verify_tls,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
    ) -> object:
        """Make one authenticated request and return the unwrapped `data` field."""
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=json, params=params)
            response.raise_for_status()
            body = response.json() if response.content else {}
        except httpx.HTTPStatusError as exc:
            await logger.aerror(
                "pfsense_http_error",
                method=method,
                path=path,
                status_code=exc.response.status_code,
            )
            raise PfSenseError(
                f"pfSense {method} {path} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            await logger.aerror(
                "pfsense_request_error",
                method=method,
                path=path,
                error_type=type(exc).__name__,
            )
            raise PfSenseError(f"pfSense {method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise PfSenseError(f"pfSense {method} {path} returned invalid JSON") from exc

        if isinstance(body, dict):
            return body.get("data")
        return body

    async def list_rules(self) -> list[FirewallRule]:
        data = await self._request("GET", RULES_PATH)
        if not isinstance(data, list):
            raise PfSenseError("pfSense rules response has no data list")

        rules: list[FirewallRule] = []
        for raw in data:
            if not isinstance(raw, dict) or raw.get("tracker") is None or raw.get("id") is None:
                continue
            try:
                rules.append(FirewallRule(
                    id=int(raw["id"]),
                    tracker=int(raw["tracker"]),
                    disabled=bool(raw.get("disabled", False)),
                    source=normalize_source(raw.get("source")),
                    description=str(raw.get("descr") or ""),
                ))
            except (TypeError, ValueError):
                await logger.awarning("pfsense_rule_skipped", rule_id=raw.get("id"))
        return rules

    async def patch_rule(self, rule_id: int, disabled: bool) -> None:
        await self._request("PATCH", RULE_PATH, json={"id": rule_id, "disabled": disabled})

    async def commit_pending(self) -> None:
        await self._request("POST", APPLY_PATH)

    async def list_address_groups(self) -> list[AddressGroup]:
        data = await self._request("GET", ALIASES_PATH)
        if not isinstance(data, list):
            raise PfSenseError("pfSense aliases response has no data list")

        groups: list[AddressGroup] = []
        for raw in data:
            if not isinstance(raw, dict) or not raw.get("name"):
                continue
            try:
                groups.append(AddressGroup(
                    id=int(raw["id"]) if raw.get("id") is not None else None,
                    name=str(raw["name"]),
                    members=normalize_members(raw.get("address")),
                ))
            except (TypeError, ValueError):
                await logger.awarning("pfsense_alias_skipped", alias_id=raw.get("id"))
        return groups

    async def kill_connections_for_address(self, address: str) -> None:
        await self._request(
            "DELETE",
            STATES_PATH,
            params={"source__startswith": state_source_prefix(address)},
        )
