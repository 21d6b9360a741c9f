"""Incremental newline-delimited JSON decoding.

The realtime endpoint sends one JSON object per line, interleaved with
blank keep-alive lines. Chunks arrive with arbitrary boundaries: a chunk
may hold part of a line, several lines, or half of a multi-byte UTF-8
character.
"""

from __future__ import annotations

import codecs
from functools import lru_cache
from typing import AsyncIterable, AsyncIterator, TypeVar

import structlog
from pydantic import TypeAdapter, ValidationError

from gitterstream.errors import DecodeError

log = structlog.get_logger()

T = TypeVar("T")


class LineDecoder:
    """Splits a chunked text stream into complete, non-blank lines."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)()
        self._buffer = ""
        self.keepalives = 0

    @property
    def pending(self) -> str:
        """Text received but not yet terminated by a newline."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[str]:
        """Feed a chunk, return any complete non-blank lines in arrival order."""
        if isinstance(chunk, bytes):
            try:
                chunk = self._decoder.decode(chunk)
            except UnicodeDecodeError as exc:
                raw = self._buffer + chunk.decode("utf-8", errors="replace")
                raise DecodeError(f"Invalid UTF-8 in stream: {exc}", raw=raw) from exc
        self._buffer += chunk

        lines: list[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            line = line.rstrip("\r")

            if not line.strip():
                self.keepalives += 1
                continue

            lines.append(line)

        return lines

    def close(self) -> str:
        """Signal end of input. Returns the unterminated tail, which is discarded."""
        tail = self._buffer
        self.reset()
        return tail

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""


@lru_cache(maxsize=None)
def _adapter(event_type: type[T]) -> TypeAdapter[T]:
    return TypeAdapter(event_type)


def decode_event(line: str, event_type: type[T]) -> T:
    """Parse one frame into ``event_type``, raising DecodeError if it does not fit."""
    try:
        return _adapter(event_type).validate_json(line)
    except ValidationError as exc:
        raise DecodeError(f"Malformed stream frame: {exc}", raw=line) from exc


async def iter_frames(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """Yield the complete non-blank lines of an async chunk stream."""
    decoder = LineDecoder()
    async for chunk in chunks:
        for line in decoder.feed(chunk):
            yield line

    tail = decoder.close()
    if tail.strip():
        log.warning("unterminated_frame_discarded", length=len(tail))
    log.debug("frames_exhausted", keepalives=decoder.keepalives)
