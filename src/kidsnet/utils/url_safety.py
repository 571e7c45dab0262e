"""URL checks for outbound calls.

Two directions with opposite rules:
- Notification webhooks leave the home network, so they must be HTTPS and
  must not resolve into private, loopback, or link-local space (SSRF).
- Controller URLs (firewall, wireless controller) normally live on the LAN,
  so only their shape is checked.

Runs at startup/config time, so synchronous DNS resolution is acceptable.
"""

from __future__ import annotations

import ipaddress
import socket
from urllib.parse import urlparse

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("fc00::/7"),
)


def validate_webhook_url(url: str) -> None:
    """Reject webhook URLs that are not HTTPS or that resolve to internal addresses.

    Raises:
        ValueError: If the URL fails any check.
    """
    parsed = urlparse(str(url))
    if parsed.scheme != "https":
        raise ValueError(f"Webhook URL must use HTTPS, got {parsed.scheme}://")
    if not parsed.hostname:
        raise ValueError("Webhook URL has no hostname")

    try:
        resolved = socket.getaddrinfo(parsed.hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise ValueError(f"Cannot resolve hostname '{parsed.hostname}': {exc}") from exc

    for info in resolved:
        try:
            ip = ipaddress.ip_address(info[4][0])
        except ValueError:
            continue
        for network in _PRIVATE_NETWORKS:
            if ip in network:
                raise ValueError(f"Webhook URL resolves to internal address {ip} (in {network})")


def validate_controller_url(url: str) -> str:
    """Check a LAN controller URL's shape and return it without a trailing slash.

    Raises:
        ValueError: If the scheme is not http(s) or the host is missing.
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Controller URL must use http:// or https://, got {url!r}")
    if not parsed.hostname:
        raise ValueError(f"Controller URL has no hostname: {url!r}")
    return url.strip().rstrip("/")
