import asyncio
import socket
import ssl

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from aniplay_cli.exceptions import DialTimeoutError, NetworkError, NotAllowedError
from aniplay_cli.net.dialer import (
    TrustedDialer,
    create_ssl_context,
    ensure_peer_allowed,
    ensure_url_allowed,
    is_disallowed_ip,
)
from conftest import permissive_dialer


class FakeTransport:
    def __init__(self, peername):
        self.peername = peername

    def get_extra_info(self, name, default=None):
        return self.peername if name == "peername" else default


@pytest.fixture
def silent_port():
    """A listener whose connections are accepted by the kernel and never answered."""
    with socket.create_server(("127.0.0.1", 0)) as listener:
        yield listener.getsockname()[1]


def _hello_app() -> web.Application:
    async def hello(request):
        return web.Response(text="hello")

    app = web.Application()
    app.router.add_get("/", hello)
    return app


class TestIsDisallowedIp:
    @pytest.mark.parametrize(
        "ip",
        [
            "127.0.0.1",
            "10.0.0.5",
            "192.168.1.20",
            "172.16.0.1",
            "169.254.1.1",
            "224.0.0.1",
            "0.0.0.0",
            "::1",
            "fd00::1",
            "fe80::1%eth0",
            "::ffff:127.0.0.1",
        ],
    )
    def test_internal_addresses_are_rejected(self, ip):
        assert is_disallowed_ip(ip) is True

    @pytest.mark.parametrize("ip", ["8.8.8.8", "93.184.216.34", "2606:4700:4700::1111"])
    def test_public_addresses_are_allowed(self, ip):
        assert is_disallowed_ip(ip) is False

    def test_unparseable_input_is_rejected(self):
        assert is_disallowed_ip("not-an-ip") is True


class TestEnsurePeerAllowed:
    def test_returns_public_peer(self):
        transport = FakeTransport(("93.184.216.34", 443))
        assert ensure_peer_allowed(transport) == "93.184.216.34"

    def test_private_peer_raises(self):
        with pytest.raises(NotAllowedError):
            ensure_peer_allowed(FakeTransport(("10.0.0.5", 443)))

    def test_unknown_peer_raises(self):
        with pytest.raises(NotAllowedError):
            ensure_peer_allowed(FakeTransport(None))

    def test_custom_filter_is_used(self):
        transport = FakeTransport(("127.0.0.1", 8080))
        assert ensure_peer_allowed(transport, lambda ip: False) == "127.0.0.1"


class TestEnsureUrlAllowed:
    def test_literal_loopback_is_rejected(self):
        with pytest.raises(NotAllowedError):
            ensure_url_allowed("http://127.0.0.1:8080/video.mp4")

    def test_hostname_is_deferred_to_connect(self):
        ensure_url_allowed("https://example.com/video.mp4")

    def test_non_http_scheme_is_rejected(self):
        with pytest.raises(NotAllowedError):
            ensure_url_allowed("file:///etc/passwd")

    def test_missing_host_is_rejected(self):
        with pytest.raises(NotAllowedError):
            ensure_url_allowed("http:///path")


class TestSslContext:
    def test_tls_floor_and_verification(self):
        context = create_ssl_context()
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2
        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is True


class TestTrustedDialer:
    def test_connect_to_loopback_is_refused(self):
        async def scenario():
            async with TestServer(_hello_app(), host="127.0.0.1") as server:
                dialer = TrustedDialer(timeout=5)
                with pytest.raises(NotAllowedError):
                    await dialer.connect("127.0.0.1", server.port)

        asyncio.run(scenario())

    def test_connect_with_permissive_filter(self):
        async def scenario():
            async with TestServer(_hello_app(), host="127.0.0.1") as server:
                dialer = permissive_dialer(timeout=5)
                reader, writer = await dialer.connect("127.0.0.1", server.port)
                assert writer.transport.get_extra_info("peername")[0] == "127.0.0.1"
                writer.close()
                await writer.wait_closed()

        asyncio.run(scenario())

    def test_connection_refused_is_network_error(self):
        async def scenario():
            async with TestServer(_hello_app(), host="127.0.0.1") as server:
                port = server.port
            dialer = permissive_dialer(timeout=5)
            with pytest.raises(NetworkError):
                await dialer.connect("127.0.0.1", port)

        asyncio.run(scenario())

    def test_session_refuses_hostname_resolving_to_loopback(self):
        async def scenario():
            async with TestServer(_hello_app(), host="127.0.0.1") as server:
                async with TrustedDialer(timeout=5) as dialer:
                    with pytest.raises(NotAllowedError):
                        async with dialer.request(
                            "GET", f"http://localhost:{server.port}/"
                        ):
                            pass

        asyncio.run(scenario())

    def test_request_through_permissive_dialer(self):
        async def scenario():
            async with TestServer(_hello_app(), host="127.0.0.1") as server:
                async with permissive_dialer(timeout=5) as dialer:
                    async with dialer.request("GET", str(server.make_url("/"))) as resp:
                        assert resp.status == 200
                        return await resp.text()

        assert asyncio.run(scenario()) == "hello"

    def test_session_is_reused_until_closed(self):
        async def scenario():
            dialer = permissive_dialer()
            first = await dialer.get_session()
            second = await dialer.get_session()
            await dialer.close()
            third = await dialer.get_session()
            await dialer.close()
            return first, second, third

        first, second, third = asyncio.run(scenario())
        assert first is second
        assert third is not first

    def test_tls_handshake_timeout(self, silent_port):
        async def scenario():
            dialer = permissive_dialer(timeout=0.5)
            await dialer.connect("127.0.0.1", silent_port, tls=True)

        with pytest.raises(DialTimeoutError) as excinfo:
            asyncio.run(scenario())
        assert not isinstance(excinfo.value, NotAllowedError)

    def test_request_handshake_timeout(self, silent_port):
        async def scenario():
            async with permissive_dialer(timeout=0.5) as dialer:
                async with dialer.request("GET", f"https://127.0.0.1:{silent_port}/"):
                    pass

        with pytest.raises(DialTimeoutError):
            asyncio.run(scenario())

    def test_client_error_inside_block_becomes_network_error(self):
        async def scenario():
            async with TestServer(_hello_app(), host="127.0.0.1") as server:
                async with permissive_dialer(timeout=5) as dialer:
                    async with dialer.request("GET", str(server.make_url("/"))):
                        raise aiohttp.ClientPayloadError("truncated body")

        with pytest.raises(NetworkError):
            asyncio.run(scenario())
