"""
Network Layer.

This package provides the SSRF-hardened transport used by every outbound
request: the trusted dialer, its aiohttp connector and the address policy.
"""

from .dialer import (
    TrustedConnector,
    TrustedDialer,
    ensure_peer_allowed,
    ensure_url_allowed,
    is_disallowed_ip,
)

__all__ = [
    "TrustedConnector",
    "TrustedDialer",
    "ensure_peer_allowed",
    "ensure_url_allowed",
    "is_disallowed_ip",
]
