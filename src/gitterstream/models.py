"""Pydantic records for the chat service's JSON payloads.

Field names are snake_case in Python and accepted in their camelCase wire
form. Unknown fields are ignored so that additions on the server side do
not break decoding; missing required fields are a validation error.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class User(_Record):
    id: str
    username: str = ""
    display_name: str = ""
    url: str = ""
    avatar_url: str | None = None
    avatar_url_small: str | None = None
    avatar_url_medium: str | None = None
    gv: str | None = None
    v: int | None = None


class Organization(_Record):
    id: str
    name: str = ""
    avatar_url: str | None = None
    room: Room | None = None


class Repository(_Record):
    id: str
    name: str = ""
    uri: str = ""
    description: str | None = None
    private: bool = False
    exists: bool = False
    avatar_url: str | None = None
    room: Room | None = None


class Room(_Record):
    id: str
    name: str = ""
    topic: str = ""
    uri: str | None = None
    url: str | None = None
    one_to_one: bool = False
    user: User | None = None
    user_count: int = 0
    unread_items: int = 0
    mentions: int = 0
    last_access_time: datetime | None = None
    lurk: bool = False
    github_type: str | None = None
    tags: list[str] = Field(default_factory=list)
    v: int | None = None


class Mention(_Record):
    screen_name: str = ""
    user_id: str | None = None
    user_ids: list[str] = Field(default_factory=list)


class Issue(_Record):
    number: str = ""


class Message(_Record):
    """A chat message, as returned by the REST API and emitted by the stream."""

    id: str
    text: str
    html: str = ""
    sent: datetime | None = None
    edited_at: datetime | None = None
    from_user: User | None = None
    unread: bool = False
    read_by: int = 0
    urls: list[dict] = Field(default_factory=list)
    mentions: list[Mention] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
    v: int | None = None


class UnreadItems(_Record):
    chat: list[str] = Field(default_factory=list)
    mention: list[str] = Field(default_factory=list)


Organization.model_rebuild()
Repository.model_rebuild()
