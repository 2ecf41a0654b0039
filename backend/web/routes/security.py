"""
Shared web security helpers for routes.

Same-origin checking for state-changing browser requests. Bearer-token API
clients usually send neither Origin nor Referer and are let through.
"""
from __future__ import annotations

import os
from typing import Optional, Tuple
from urllib.parse import urlparse

from fastapi import Request

_Origin = Tuple[str, str, int]


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> _Origin:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, p.hostname.lower(), int(port)


def _first(value: Optional[str]) -> str:
    return (value or "").split(",")[0].strip()


def _server_origin(request: Request) -> _Origin:
    """Origin the server is reachable under.

    X-Forwarded-* headers count only when STUDYMATE_TRUST_PROXY=true.
    """
    trust_proxy = (os.getenv("STUDYMATE_TRUST_PROXY", "false") or "").lower() == "true"
    if not trust_proxy:
        scheme = (request.url.scheme or "http").lower()
        port = int(request.url.port) if request.url.port else _default_port(scheme)
        return scheme, (request.url.hostname or "").lower(), port

    scheme = (_first(request.headers.get("x-forwarded-proto")) or request.url.scheme or "http").lower()
    host = _first(request.headers.get("x-forwarded-host")) or request.headers.get("host") or ""
    port: Optional[int] = None
    if ":" in host:
        host, port_str = host.rsplit(":", 1)
        port = int(port_str) if port_str.isdigit() else None
    host = (host or request.url.hostname or "").lower()
    forwarded_port = _first(request.headers.get("x-forwarded-port"))
    if forwarded_port.isdigit():
        port = int(forwarded_port)
    if port is None:
        port = int(request.url.port) if request.url.port else _default_port(scheme)
    return scheme, host, port


def is_same_origin(request: Request) -> bool:
    """Verify same-origin using the Origin header, else Referer.

    Without either header the request is allowed so non-browser clients keep
    working; a malformed header counts as cross-origin.
    """
    claimed = request.headers.get("origin") or request.headers.get("referer")
    if not claimed:
        return True
    try:
        return _parse_origin(claimed) == _server_origin(request)
    except ValueError:
        return False


def strict_csrf_enabled() -> bool:
    """With STRICT_CSRF_FILES=true, writes must carry Origin or Referer."""
    return (os.getenv("STRICT_CSRF_FILES", "false") or "").lower() == "true"


def csrf_ok(request: Request) -> bool:
    if strict_csrf_enabled() and not (request.headers.get("origin") or request.headers.get("referer")):
        return False
    return is_same_origin(request)


__all__ = ["is_same_origin", "csrf_ok", "strict_csrf_enabled"]
