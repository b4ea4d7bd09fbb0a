"""
Network transport that refuses to talk to internal infrastructure.

Every connection (plain or TLS) is checked after it is established: the
actual peer address is inspected and the connection is closed if it belongs
to a loopback, private, link-local, unspecified or multicast range. This
catches DNS rebinding and redirects to internal hosts that a hostname check
alone would miss.
"""

import asyncio
import ipaddress
import logging
import ssl
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp

from aniplay_cli.exceptions import DialTimeoutError, NetworkError, NotAllowedError

log = logging.getLogger(__name__)

AddressFilter = Callable[[str], bool]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
)


def is_disallowed_ip(host_ip: str) -> bool:
    """
    Returns True if the address must never be contacted.

    Unparseable input is treated as disallowed.
    """
    try:
        ip = ipaddress.ip_address(host_ip.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    return (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_multicast
    )


def ensure_peer_allowed(
    transport: Optional[asyncio.BaseTransport],
    address_filter: AddressFilter = is_disallowed_ip,
) -> str:
    """
    Checks the remote address of an established transport.

    Returns:
        The peer IP address.

    Raises:
        NotAllowedError: If the peer is unknown or rejected by the filter.
    """
    peername = transport.get_extra_info("peername") if transport else None
    if not peername:
        raise NotAllowedError("Could not determine the remote address of the peer.")

    peer_ip = str(peername[0])
    if address_filter(peer_ip):
        raise NotAllowedError(f"IP address {peer_ip} is not allowed.")
    return peer_ip


def ensure_url_allowed(url: str, address_filter: AddressFilter = is_disallowed_ip) -> None:
    """
    Rejects non-HTTP URLs and URLs whose host is a literal disallowed IP.

    Hostnames are allowed here; their resolved address is checked once the
    connection exists.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        raise NotAllowedError(f"Unsupported URL scheme: '{parts.scheme}'")
    if not parts.hostname:
        raise NotAllowedError(f"URL has no host: {url}")

    try:
        ipaddress.ip_address(parts.hostname)
    except ValueError:
        return
    if address_filter(parts.hostname):
        raise NotAllowedError(f"IP address {parts.hostname} is not allowed.")


def create_ssl_context() -> ssl.SSLContext:
    """Verifying TLS context with a TLS 1.2 floor."""
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


class TrustedConnector(aiohttp.TCPConnector):
    """
    A TCPConnector that validates the peer address of each new connection.

    aiohttp completes the TLS handshake inside connection creation, so the
    check below always runs on a fully negotiated connection.
    """

    def __init__(self, *, address_filter: AddressFilter = is_disallowed_ip, **kwargs):
        super().__init__(**kwargs)
        self._address_filter = address_filter

    async def _create_connection(self, req, *args, **kwargs):
        proto = await super()._create_connection(req, *args, **kwargs)
        try:
            peer_ip = ensure_peer_allowed(proto.transport, self._address_filter)
        except NotAllowedError:
            log.warning(f"[red]Blocked connection to {req.url.host}[/red]")
            proto.close()
            raise
        log.debug(f"Connected to {req.url.host} ({peer_ip})")
        return proto


class TrustedDialer:
    """
    Owns the HTTP session used for every outbound request.

    A single timeout bounds both the TCP connect and the TLS handshake.
    Exceeding it raises DialTimeoutError; a policy violation raises
    NotAllowedError.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        read_timeout: float = 90.0,
        address_filter: AddressFilter = is_disallowed_ip,
        max_connections: int = 16,
    ):
        self.timeout = timeout
        self.read_timeout = read_timeout
        self.address_filter = address_filter
        self.max_connections = max_connections

        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    def ssl_context(self) -> ssl.SSLContext:
        return create_ssl_context()

    async def connect(
        self, host: str, port: int, tls: bool = False
    ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """
        Opens a raw stream connection and validates the peer.

        With tls=True the check runs after the handshake has completed.
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host,
                    port,
                    ssl=self.ssl_context() if tls else None,
                    server_hostname=host if tls else None,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise DialTimeoutError(
                f"Connecting to {host}:{port} timed out after {self.timeout}s"
            ) from e
        except (OSError, ssl.SSLError) as e:
            raise NetworkError(f"Failed to connect to {host}:{port}: {e}") from e

        try:
            ensure_peer_allowed(writer.transport, self.address_filter)
        except NotAllowedError:
            writer.close()
            raise
        return reader, writer

    def create_connector(self) -> TrustedConnector:
        return TrustedConnector(
            address_filter=self.address_filter,
            ssl=self.ssl_context(),
            limit=self.max_connections,
            ttl_dns_cache=300,
        )

    async def get_session(self) -> aiohttp.ClientSession:
        """Gets or lazily creates the shared session for this dialer."""
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    connector=self.create_connector(),
                    headers={"User-Agent": USER_AGENT},
                    timeout=aiohttp.ClientTimeout(
                        total=None,
                        connect=self.timeout,
                        sock_connect=self.timeout,
                        sock_read=self.read_timeout,
                    ),
                )
                log.debug(
                    f"Created trusted session (timeout={self.timeout}s, "
                    f"limit={self.max_connections})"
                )
        return self._session

    @asynccontextmanager
    async def request(
        self, method: str, url: str, **kwargs: Any
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """
        Performs a request through the trusted session.

        Timeouts and aiohttp client errors are translated into the
        application's taxonomy, including ones raised inside the caller's
        block (e.g. while reading the body). NotAllowedError and other
        exceptions pass through unchanged.
        """
        ensure_url_allowed(url, self.address_filter)
        session = await self.get_session()
        connected = False
        try:
            async with session.request(method, url, **kwargs) as response:
                connected = True
                yield response
        except asyncio.TimeoutError as e:
            if connected:
                raise NetworkError(f"Reading from {url} timed out") from e
            raise DialTimeoutError(
                f"Connecting to {url} timed out after {self.timeout}s"
            ) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

    async def close(self) -> None:
        """Gracefully closes the session."""
        if self._session and not self._session.closed:
            await self._session.close()
            log.debug("Trusted session closed.")

    async def __aenter__(self) -> "TrustedDialer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
