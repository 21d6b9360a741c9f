"""Exception hierarchy for API calls and realtime streams."""

from __future__ import annotations


class GitterError(Exception):
    """Base class for every error raised by the client."""


class ApiConnectionError(GitterError):
    """The connection could not be established or was lost (DNS, TCP, TLS, premature close)."""


class HttpStatusError(GitterError):
    """The server answered with a non-success status code."""

    def __init__(self, status_code: int, body: str = "", url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        message = f"HTTP {status_code}"
        if url:
            message += f" for {url}"
        if body:
            message += f": {body[:200]}"
        super().__init__(message)


class AuthenticationError(HttpStatusError):
    """401/403: the token is missing or was rejected."""


class DecodeError(GitterError):
    """A response body or stream frame was not valid JSON of the expected shape."""

    def __init__(self, message: str, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)


def status_error(status_code: int, body: str = "", url: str = "") -> HttpStatusError:
    """Build the right HttpStatusError subclass for a status code."""
    if status_code in (401, 403):
        return AuthenticationError(status_code, body, url)
    return HttpStatusError(status_code, body, url)
