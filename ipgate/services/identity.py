"""Client identity extraction.

An identity is the normalized client IP used to bucket requests for rate
limiting and blocking. Resolution never fails: a request without any
derivable address is bucketed under `UNKNOWN`, which is limited like any
other identity.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import Request

LOCALHOST = "localhost"
UNKNOWN = "unknown"

_MAPPED_PREFIX = "::ffff:"
_LOOPBACK = frozenset({"::1", "127.0.0.1", "::ffff:127.0.0.1", LOCALHOST})


def normalize_ip(value: str) -> str:
    """Collapse loopback forms to `localhost` and unwrap IPv4-mapped IPv6 addresses."""
    ip = value.strip()
    if not ip:
        return UNKNOWN
    if ip.lower() in _LOOPBACK:
        return LOCALHOST
    while ip.lower().startswith(_MAPPED_PREFIX):
        ip = ip[len(_MAPPED_PREFIX):]
    if ip in _LOOPBACK:
        return LOCALHOST
    return ip or UNKNOWN


def _first_forwarded(values: Iterable[str] | str | None) -> str | None:
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    for value in values:
        first = value.split(",")[0].strip()
        if first:
            return first
    return None


def identify(
    forwarded_for: Iterable[str] | str | None,
    real_ip: str | None,
    peer: str | None,
) -> str:
    """
    Resolve the identity from proxy headers and the transport peer.

    Args:
        forwarded_for: X-Forwarded-For header value(s); the first entry is the client.
        real_ip: X-Real-IP header value.
        peer: Transport peer address.

    Returns:
        Normalized identity, or `UNKNOWN` when nothing is derivable.
    """
    for candidate in (_first_forwarded(forwarded_for), real_ip, peer):
        if candidate and candidate.strip():
            return normalize_ip(candidate)
    return UNKNOWN


def client_identity(request: Request, trust_proxy_headers: bool = True) -> str:
    """Identity of the client behind a Starlette/FastAPI request."""
    peer = request.client.host if request.client else None
    if not trust_proxy_headers:
        return identify(None, None, peer)
    return identify(
        request.headers.getlist("x-forwarded-for"),
        request.headers.get("x-real-ip"),
        peer,
    )
