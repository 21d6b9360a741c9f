"""Chat service API facade: one coroutine per endpoint, plus the realtime stream.

All calls share one RequestExecutor, so the bearer token and the base URLs
are applied the same way to request/response calls and to the stream.
"""

from __future__ import annotations

from typing import Any, Iterable
from urllib.parse import quote, urlencode

import httpx
import structlog

from gitterstream.config import ClientConfig
from gitterstream.models import Message, Organization, Repository, Room, UnreadItems, User
from gitterstream.stream.event_stream import EventStream

from .request_executor import RequestExecutor

log = structlog.get_logger()


def _seg(value: str) -> str:
    """Escape a value for use as a single URL path segment."""
    return quote(str(value), safe="")


class GitterClient:
    """Client for the chat service REST and streaming APIs.

    Args:
        token: Bearer token. None (or blank) sends requests unauthenticated.
            Falls back to ``config.token`` when not given.
        config: Client configuration. Defaults to ClientConfig().
        http_client: Optional pre-configured httpx client shared by every
            call. The caller owns it.
    """

    def __init__(
        self,
        token: str | None = None,
        config: ClientConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._token = token if token is not None else self.config.token
        self.executor = RequestExecutor(
            self.config, http_client=http_client, token_source=lambda: self._token,
        )

    @property
    def token(self) -> str | None:
        return self._token

    @token.setter
    def token(self, value: str | None) -> None:
        self._token = value

    @property
    def api_base(self) -> str:
        return self.config.api_base

    @property
    def stream_base(self) -> str:
        return self.config.stream_base

    # =========================================================================
    # User
    # =========================================================================

    async def get_current_user(self) -> User | None:
        """Return the authenticated user (the API answers with a one-element list)."""
        users = await self.executor.execute(
            "GET", self.api_base + "user", response_type=list[User],
        )
        return users[0] if users else None

    async def get_organizations(self, user_id: str) -> list[Organization]:
        url = self.api_base + f"user/{_seg(user_id)}/orgs"
        return await self.executor.execute("GET", url, response_type=list[Organization])

    async def get_repositories(self, user_id: str) -> list[Repository]:
        url = self.api_base + f"user/{_seg(user_id)}/repos"
        return await self.executor.execute("GET", url, response_type=list[Repository])

    # =========================================================================
    # Unread items
    # =========================================================================

    async def retrieve_unread_items(self, user_id: str, room_id: str) -> UnreadItems:
        url = self.api_base + f"user/{_seg(user_id)}/rooms/{_seg(room_id)}/unreadItems"
        return await self.executor.execute("GET", url, response_type=UnreadItems)

    async def mark_unread_items(
        self, user_id: str, room_id: str, message_ids: Iterable[str],
    ) -> None:
        """Mark the given chat messages as read."""
        url = self.api_base + f"user/{_seg(user_id)}/rooms/{_seg(room_id)}/unreadItems"
        await self.executor.execute("POST", url, json_body={"chat": list(message_ids)})

    # =========================================================================
    # Rooms
    # =========================================================================

    async def get_rooms(self) -> list[Room]:
        return await self.executor.execute(
            "GET", self.api_base + "rooms", response_type=list[Room],
        )

    async def join_room(self, uri: str) -> Room:
        """Join a room by its uri (e.g. ``owner/repo``)."""
        return await self.executor.execute(
            "POST", self.api_base + "rooms", form={"uri": uri}, response_type=Room,
        )

    # =========================================================================
    # Messages
    # =========================================================================

    async def get_single_room_message(self, room_id: str, message_id: str) -> Message:
        url = self.api_base + f"rooms/{_seg(room_id)}/chatMessages/{_seg(message_id)}"
        return await self.executor.execute("GET", url, response_type=Message)

    async def get_room_messages(
        self,
        room_id: str,
        limit: int = 50,
        before_id: str | None = None,
        after_id: str | None = None,
        skip: int = 0,
    ) -> list[Message]:
        """Fetch a page of room history.

        ``limit`` is always sent; ``beforeId``/``afterId`` only when
        non-blank and ``skip`` only when positive.
        """
        params: dict[str, Any] = {"limit": limit}
        if before_id and before_id.strip():
            params["beforeId"] = before_id
        if after_id and after_id.strip():
            params["afterId"] = after_id
        if skip > 0:
            params["skip"] = skip

        url = self.api_base + f"rooms/{_seg(room_id)}/chatMessages?{urlencode(params)}"
        return await self.executor.execute("GET", url, response_type=list[Message])

    async def send_message(self, room_id: str, text: str) -> Message:
        url = self.api_base + f"rooms/{_seg(room_id)}/chatMessages"
        return await self.executor.execute(
            "POST", url, form={"text": text}, response_type=Message,
        )

    async def update_message(self, room_id: str, message_id: str, text: str) -> Message:
        url = self.api_base + f"rooms/{_seg(room_id)}/chatMessages/{_seg(message_id)}"
        return await self.executor.execute(
            "PUT", url, form={"text": text}, response_type=Message,
        )

    # =========================================================================
    # Streaming
    # =========================================================================

    def realtime_messages(self, room_id: str) -> EventStream[Message]:
        """Return a cold stream of messages posted to a room.

        No connection is made until the stream is iterated or subscribed
        to; every iteration or subscription opens its own connection.
        """
        url = self.stream_base + f"rooms/{_seg(room_id)}/chatMessages"
        log.debug("realtime_stream_created", room_id=room_id)
        return EventStream(
            self.executor, url, Message, max_pending=self.config.stream_max_pending,
        )
