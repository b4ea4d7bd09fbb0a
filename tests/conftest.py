import re

import pytest
from aiohttp import web

from aniplay_cli.models.media import Episode
from aniplay_cli.net.dialer import TrustedDialer

_RANGE = re.compile(r"bytes=(\d+)-(\d+)")


def allow_all(ip: str) -> bool:
    return False


def permissive_dialer(**kwargs) -> TrustedDialer:
    """A dialer that may talk to the loopback test servers."""
    return TrustedDialer(address_filter=allow_all, **kwargs)


def media_handler(payload: bytes, accept_ranges: bool = True, failing_starts=()):
    """
    Serves payload with byte-range support.

    Ranges starting at an offset in failing_starts get a 500 response.
    """

    async def handler(request: web.Request) -> web.Response:
        headers = {"Accept-Ranges": "bytes"} if accept_ranges else {}
        match = _RANGE.fullmatch(request.headers.get("Range", ""))
        if accept_ranges and match:
            start, end = int(match.group(1)), int(match.group(2))
            if start in failing_starts:
                return web.Response(status=500, text="boom")
            headers["Content-Range"] = f"bytes {start}-{end}/{len(payload)}"
            return web.Response(status=206, body=payload[start : end + 1], headers=headers)
        return web.Response(body=payload, headers=headers)

    return handler


@pytest.fixture
def payload() -> bytes:
    return bytes(range(256)) * 40 + b"tail"


@pytest.fixture
def episodes() -> list[Episode]:
    return [
        Episode(label=f"Episode {n}", number=n, url=f"https://example.com/ep/{n}")
        for n in (1, 2, 3)
    ]
