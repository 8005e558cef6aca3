"""Newline-delimited JSON encoding of orchestration events.

Producers write one JSON object per line.  Consumers receive the stream in
arbitrarily sized chunks, so :func:`iter_events` re-assembles lines before
parsing each one on its own; a malformed line is skipped.
"""

from __future__ import annotations

import logging
from typing import AsyncIterable, AsyncIterator

from pydantic import TypeAdapter, ValidationError

from wayback_meta.models.snapshot.schemas import StreamEvent

logger = logging.getLogger(__name__)

MEDIA_TYPE = "application/x-ndjson"

_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def encode_event(event: StreamEvent) -> str:
    return event.model_dump_json() + "\n"


def parse_event(line: str | bytes) -> StreamEvent:
    """Parse one line.  Raises ``pydantic.ValidationError`` if it is not an event."""
    return _event_adapter.validate_json(line)


async def iter_events(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[StreamEvent]:
    buffer = b""
    async for chunk in chunks:
        buffer += chunk.encode() if isinstance(chunk, str) else chunk
        *lines, buffer = buffer.split(b"\n")
        for line in lines:
            event = _parse_or_skip(line)
            if event is not None:
                yield event

    # Trailing line without a final newline.
    event = _parse_or_skip(buffer)
    if event is not None:
        yield event


def _parse_or_skip(line: bytes) -> StreamEvent | None:
    if not line.strip():
        return None
    try:
        return parse_event(line)
    except ValidationError as exc:
        logger.warning("Skipping malformed stream line %r: %s", line[:80], exc)
        return None
