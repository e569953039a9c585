"""Outbound request policy for script `fetch` calls.

Blocks requests that could reach the host or its private network:
- Non-http(s) schemes (file:, ftp:, gopher:, ...)
- Local host names (localhost, *.localhost, *.local, *.internal)
- Addresses that resolve to private, loopback, link-local, reserved, multicast or
  unspecified ranges, including IPv4-mapped IPv6 forms of those

Every redirect hop is checked again before it is followed.

Known limitation: the name is resolved once for the check and again by the HTTP
client, so a DNS rebinding host can still change its answer in between.
"""

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Iterable
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})
LOCAL_HOST_NAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})
LOCAL_HOST_SUFFIXES = (".localhost", ".local", ".internal")


class SSRFBlockedError(PermissionError):
    """Outbound request rejected by the network policy."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"SSRF blocked: {reason} ({url})")


def is_blocked_address(address: str) -> bool:
    """True if the IP address belongs to a non-public range."""
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


async def check_url(url: str, allowed_hosts: Iterable[str] = ()) -> None:
    """Validate an outbound URL.

    Hosts listed in `allowed_hosts` skip the address checks (operator override).

    Raises:
        SSRFBlockedError: If the URL targets a blocked scheme, name or address
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise SSRFBlockedError(url, f"scheme '{scheme or '(none)'}' is not allowed")

    host = (parts.hostname or "").lower().rstrip(".")
    if not host:
        raise SSRFBlockedError(url, "missing host")

    if host in {allowed.lower() for allowed in allowed_hosts}:
        logger.debug(f"Host {host} allowed by sandbox policy")
        return

    if host in LOCAL_HOST_NAMES or host.endswith(LOCAL_HOST_SUFFIXES):
        raise SSRFBlockedError(url, f"host '{host}' is local")

    for address in await _resolve(url, host, parts.port or (443 if scheme == "https" else 80)):
        if is_blocked_address(address):
            raise SSRFBlockedError(url, f"host '{host}' resolves to non-public address {address}")


async def _resolve(url: str, host: str, port: int) -> list[str]:
    # Literal addresses need no lookup
    try:
        return [str(ipaddress.ip_address(host.strip("[]")))]
    except ValueError:
        pass

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise SSRFBlockedError(url, f"host '{host}' could not be resolved ({e})") from e

    addresses = [str(info[4][0]) for info in infos]
    if not addresses:
        raise SSRFBlockedError(url, f"host '{host}' has no addresses")
    return addresses
