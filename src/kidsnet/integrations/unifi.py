"""Async UniFi Network client — associated clients and block/unblock commands.

Talks to the classic controller API behind the UniFi OS proxy prefix,
authenticated with an API key. MAC addresses are normalized to lower case.

SECURITY: The API key is sent as a header and never logged.
"""

from __future__ import annotations

import httpx
import structlog

from kidsnet.access.errors import CollaboratorUnavailable
from kidsnet.access.models import WirelessClient, normalize_mac
from kidsnet.integrations.base import WirelessBackend

logger = structlog.get_logger()


class UniFiError(CollaboratorUnavailable):
    """A UniFi controller call failed or was rejected."""


class UniFiClient(WirelessBackend):
    """Async UniFi Network controller client.

    Args:
        base_url: Controller base URL (e.g. "https://10.40.0.2").
        api_key: Controller API key, sent as X-API-KEY.
        site: Controller site name.
        path_prefix: Proxy prefix for the network application ("" for standalone controllers).
        timeout: HTTP request timeout in seconds.
        verify_tls: Verify the controller's certificate.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        site: str = "default",
        path_prefix: str = "/proxy/network",
        timeout: float = 10.0,
        verify_tls: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._site_path = f"{path_prefix.rstrip('/')}/api/s/{site}"
        self._timeout = timeout
        self._verify_tls = verify_tls
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "X-API-KEY": self._api_key,
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

    async def _request(self, method: str, path: str, json: dict | None = None) -> list:
        """Make one request and return the `data` list after checking meta.rc."""
        client = await self._get_client()
        url = f"{self._site_path}{path}"
        try:
            response = await client.request(method, url, json=json)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            await logger.aerror(
                "unifi_http_error",
                method=method,
                path=path,
                status_code=exc.response.status_code,
            )
            raise UniFiError(f"UniFi {method} {path} returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            await logger.aerror(
                "unifi_request_error",
                method=method,
                path=path,
                error_type=type(exc).__name__,
            )
            raise UniFiError(f"UniFi {method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise UniFiError(f"UniFi {method} {path} returned invalid JSON") from exc

        meta = body.get("meta", {}) if isinstance(body, dict) else {}
        if meta.get("rc") != "ok":
            raise UniFiError(f"UniFi {method} {path} rejected: {meta.get('msg', 'unknown error')}")
        data = body.get("data", [])
        return data if isinstance(data, list) else []

    async def list_clients(self) -> list[WirelessClient]:
        clients: list[WirelessClient] = []
        for raw in await self._request("GET", "/stat/sta"):
            if not isinstance(raw, dict) or not raw.get("mac"):
                continue
            try:
                mac = normalize_mac(str(raw["mac"]))
            except ValueError:
                continue
            # stat/sta lists only currently associated stations
            clients.append(WirelessClient(mac=mac, ip=raw.get("ip") or None, associated=True))
        return clients

    async def block_client(self, mac: str) -> None:
        await self._request("POST", "/cmd/stamgr", json={"cmd": "block-sta", "mac": normalize_mac(mac)})

    async def unblock_client(self, mac: str) -> None:
        await self._request("POST", "/cmd/stamgr", json={"cmd": "unblock-sta", "mac": normalize_mac(mac)})
