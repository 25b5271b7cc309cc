"""Remote image fetching with SSRF protection.

Every URL, including each redirect target, is vetted before any connection:
the scheme must be http or https and the host must resolve to at least one
publicly routable address.
"""

import ipaddress
import socket
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union
from urllib.parse import urljoin, urlsplit

import requests
from requests.adapters import HTTPAdapter

from .error_handling import with_error_handling
from .exceptions import (
    FetchError,
    FetchRejectReason,
    FetchRejectedError,
    PayloadTooLargeError,
)
from .logging_config import get_logger
from .models import DEFAULT_USER_AGENT, MAX_IMAGE_SIZE
from .protocols import HostResolverProtocol, HttpResponseProtocol, HttpSessionProtocol

logger = get_logger("fetch_guard")

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}
REDIRECT_STATUSES = (301, 302, 303, 307, 308)
CHUNK_SIZE = 64 * 1024

_BLOCKED_V4 = tuple(
    ipaddress.IPv4Network(net)
    for net in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.0.2.0/24",
        "192.88.99.0/24",
        "192.168.0.0/16",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/4",
        "255.255.255.255/32",
    )
)

_BLOCKED_V6 = tuple(
    ipaddress.IPv6Network(net)
    for net in (
        "::/128",
        "::1/128",
        "fe80::/10",
        "fc00::/7",
        "ff00::/8",
        "2001:db8::/32",
    )
)

# IPv4-compatible and NAT64 well-known prefixes carry an IPv4 address in
# their low 32 bits.
_EMBEDDED_V4_PREFIXES = (
    ipaddress.IPv6Network("::/96"),
    ipaddress.IPv6Network("64:ff9b::/96"),
)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def is_safe_ip(address: Union[str, IPAddress]) -> bool:
    """
    Whether an address is publicly routable and safe to connect to.

    Rejects loopback, private, link-local (including the cloud metadata
    address), multicast, broadcast, shared, documentation and unspecified
    ranges. IPv4-mapped, IPv4-compatible and NAT64 IPv6 addresses are judged
    by their embedded IPv4 part.

    Args:
        address: IP address object or its string form

    Returns:
        True only for addresses outside every blocked range
    """
    if isinstance(address, str):
        try:
            address = ipaddress.ip_address(address)
        except ValueError:
            return False

    if isinstance(address, ipaddress.IPv6Address):
        if address.ipv4_mapped is not None:
            return is_safe_ip(address.ipv4_mapped)
        if any(address in net for net in _EMBEDDED_V4_PREFIXES):
            return is_safe_ip(ipaddress.IPv4Address(int(address) & 0xFFFFFFFF))
        return not any(address in net for net in _BLOCKED_V6)

    return not any(address in net for net in _BLOCKED_V4)


def resolve_host(hostname: str, port: int) -> List[str]:
    """Resolve a hostname with the system resolver, preserving order."""
    infos = socket.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    return list(dict.fromkeys(str(info[4][0]) for info in infos))


@dataclass(frozen=True)
class FetchTarget:
    """A URL that passed the guard, with the addresses that made it safe."""

    url: str
    scheme: str
    hostname: str
    port: int
    addresses: Tuple[str, ...]


class FetchGuard:
    """Validates URLs before the service connects to them."""

    def __init__(self, resolver: Optional[HostResolverProtocol] = None):
        self._resolver = resolver or resolve_host

    def vet(self, url: str) -> FetchTarget:
        """
        Check a URL and resolve its host.

        Args:
            url: Absolute http(s) URL supplied by a client

        Returns:
            FetchTarget carrying the safe resolved addresses

        Raises:
            FetchRejectedError: With the reason the URL was refused
        """
        try:
            parts = urlsplit(url.strip())
            port = parts.port
        except (ValueError, AttributeError) as exc:
            raise FetchRejectedError(FetchRejectReason.INVALID_URL, str(exc)) from exc

        if not parts.scheme:
            raise FetchRejectedError(FetchRejectReason.INVALID_URL, "URL is not absolute")
        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_SCHEMES:
            raise FetchRejectedError(
                FetchRejectReason.UNSUPPORTED_SCHEME, f"scheme '{parts.scheme}' is not allowed"
            )

        hostname = parts.hostname
        if not hostname:
            raise FetchRejectedError(FetchRejectReason.MISSING_HOST, "URL has no host")
        port = port or DEFAULT_PORTS[scheme]

        try:
            resolved = self._resolver(hostname, port)
        except (OSError, UnicodeError) as exc:
            raise FetchRejectedError(
                FetchRejectReason.RESOLUTION_FAILED, f"could not resolve '{hostname}'"
            ) from exc
        if not resolved:
            raise FetchRejectedError(
                FetchRejectReason.RESOLUTION_FAILED, f"'{hostname}' has no addresses"
            )

        safe = tuple(addr for addr in resolved if is_safe_ip(addr))
        if not safe:
            logger.warning(f"Blocked fetch of {hostname}: resolves only to {resolved}")
            raise FetchRejectedError(
                FetchRejectReason.PRIVATE_ADDRESS,
                f"'{hostname}' resolves only to non-public addresses",
            )

        return FetchTarget(
            url=url.strip(),
            scheme=scheme,
            hostname=hostname,
            port=port,
            addresses=safe,
        )


class RemoteImageFetcher:
    """Downloads an image through the guard with a hard size limit."""

    def __init__(
        self,
        guard: FetchGuard,
        session: HttpSessionProtocol,
        max_bytes: int = MAX_IMAGE_SIZE,
        timeout: float = 30.0,
        max_redirects: int = 5,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._guard = guard
        self._session = session
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._max_redirects = max_redirects
        self._user_agent = user_agent

    def fetch(self, url: str) -> bytes:
        """
        Fetch image bytes from a client supplied URL.

        Args:
            url: Absolute http(s) URL

        Returns:
            Response body, at most max_bytes long

        Raises:
            FetchRejectedError: The URL or a redirect target failed vetting
            FetchError: Network failure, non-2xx status or too many redirects
            PayloadTooLargeError: The body exceeds max_bytes
        """
        target = self._guard.vet(url)

        for _ in range(self._max_redirects + 1):
            response = self._open(target.url)
            try:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("Location")
                    if not location:
                        raise FetchError(
                            f"Redirect from {target.hostname} without a Location header"
                        )
                    target = self._guard.vet(urljoin(target.url, location))
                    logger.debug(f"Following redirect to {target.hostname}")
                    continue

                if not 200 <= response.status_code < 300:
                    raise FetchError(
                        f"Remote server returned status {response.status_code}"
                    )
                return self._read_body(response)
            finally:
                response.close()

        raise FetchError(f"Too many redirects (limit {self._max_redirects})")

    @with_error_handling
    def _open(self, url: str) -> HttpResponseProtocol:
        return self._session.get(
            url,
            stream=True,
            timeout=self._timeout,
            allow_redirects=False,
            headers={"User-Agent": self._user_agent},
        )

    @with_error_handling
    def _read_body(self, response: HttpResponseProtocol) -> bytes:
        declared = response.headers.get("Content-Length")
        if declared is not None:
            try:
                declared_size = int(declared)
            except ValueError:
                declared_size = None
            if declared_size is not None and declared_size > self._max_bytes:
                raise PayloadTooLargeError(
                    f"Remote image is {declared_size} bytes, limit is {self._max_bytes}"
                )

        body = bytearray()
        for chunk in _non_empty(response.iter_content(chunk_size=CHUNK_SIZE)):
            body.extend(chunk)
            if len(body) > self._max_bytes:
                raise PayloadTooLargeError(
                    f"Remote image exceeds the {self._max_bytes} byte limit"
                )
        return bytes(body)


def _non_empty(chunks: Iterable[bytes]) -> Iterable[bytes]:
    return (chunk for chunk in chunks if chunk)


def create_http_session(pool_size: int = 10) -> requests.Session:
    """Shared session used for connection pooling across fetches."""
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
