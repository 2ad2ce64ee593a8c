"""Error taxonomy for the proxy and relay endpoints."""

from __future__ import annotations


class ProxyError(Exception):
    """Base exception for proxy failures. Carries the HTTP status to answer with."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InputError(ProxyError):
    """Missing or malformed target URL."""

    status_code = 400


class UpstreamFetchError(ProxyError):
    """Origin server unreachable or answered with a non-success status."""

    status_code = 502


class RewriteError(ProxyError):
    """Fetched markup could not be parsed or rewritten."""

    status_code = 500
