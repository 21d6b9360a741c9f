"""Typed HTTP request execution on top of httpx.

Every call (including the one that opens the realtime stream) carries the
same headers: ``Accept: application/json`` and, when a token is set, a
bearer ``Authorization`` header. Failures are mapped onto the
``gitterstream.errors`` hierarchy; nothing is retried.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from gitterstream.config import ClientConfig
from gitterstream.errors import ApiConnectionError, DecodeError, status_error

log = structlog.get_logger()

TokenSource = Callable[[], "str | None"]


class RequestExecutor:
    """Issues requests against the API and decodes their JSON bodies.

    Args:
        config: Client configuration (timeouts, token default).
        http_client: Optional pre-configured httpx client (for testing or
            custom transports). It is used as-is and never closed here.
            Without one, each call builds a fresh client and closes it
            when the call, or the stream, is finished.
        token_source: Callable returning the current bearer token. Read
            on every request. Defaults to ``config.token``.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: httpx.AsyncClient | None = None,
        token_source: TokenSource | None = None,
    ) -> None:
        self.config = config
        self.http_client = http_client
        self._token_source = token_source or (lambda: config.token)

    def build_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._token_source()
        if token and token.strip():
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.http_client is not None:
            yield self.http_client
            return
        async with httpx.AsyncClient(follow_redirects=True) as client:
            yield client

    async def execute(
        self,
        method: str,
        url: str,
        *,
        form: dict[str, str] | None = None,
        json_body: Any = None,
        response_type: Any = None,
    ) -> Any:
        """Send a request and decode the response body into ``response_type``.

        ``form`` is sent url-encoded, ``json_body`` as raw JSON. With
        ``response_type=None`` the body is not decoded and None is returned.

        Raises:
            ApiConnectionError: The request could not be sent, was
                redirected too often, or the response could not be read
                or content-decoded.
            HttpStatusError: Non-success status (AuthenticationError for
                401/403).
            DecodeError: The body is not valid JSON of the expected shape.
        """
        timeout = httpx.Timeout(
            self.config.request_timeout, connect=self.config.connect_timeout
        )
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    url,
                    headers=self.build_headers(),
                    data=form,
                    json=json_body,
                    timeout=timeout,
                )
        except httpx.RequestError as exc:
            log.error("request_failed", method=method, url=url, error=str(exc))
            raise ApiConnectionError(f"{method} {url} failed: {exc}") from exc

        if not response.is_success:
            log.error(
                "request_rejected",
                method=method,
                url=url,
                status=response.status_code,
                body=response.text[:500],
            )
            raise status_error(response.status_code, response.text, url)

        log.debug("request_completed", method=method, url=url, status=response.status_code)

        if response_type is None:
            return None
        try:
            return TypeAdapter(response_type).validate_json(response.content)
        except ValidationError as exc:
            log.error("response_decode_failed", method=method, url=url, error=str(exc))
            raise DecodeError(
                f"Unexpected response body from {method} {url}: {exc}",
                raw=response.text,
            ) from exc

    @asynccontextmanager
    async def open_stream(self, url: str) -> AsyncIterator[httpx.Response]:
        """Open a streaming GET and yield the response with its body unread.

        The status is checked before yielding. Leaving the context closes
        the connection. httpx request errors raised while the body is being
        read inside the context surface as ApiConnectionError as well.

        No read timeout is applied: an idle but open stream is valid.
        """
        timeout = httpx.Timeout(None, connect=self.config.connect_timeout)
        try:
            async with self._client() as client:
                async with client.stream(
                    "GET", url, headers=self.build_headers(), timeout=timeout,
                ) as response:
                    if not response.is_success:
                        await response.aread()
                        log.error(
                            "stream_rejected",
                            url=url,
                            status=response.status_code,
                            body=response.text[:500],
                        )
                        raise status_error(response.status_code, response.text, url)

                    log.info("stream_opened", url=url, status=response.status_code)
                    try:
                        yield response
                    finally:
                        log.info("stream_closed", url=url)
        except httpx.RequestError as exc:
            log.error("stream_connection_error", url=url, error=str(exc))
            raise ApiConnectionError(f"Stream {url} failed: {exc}") from exc
