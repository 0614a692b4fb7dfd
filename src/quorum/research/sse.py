"""Server-Sent Events framing over an async line stream (``httpx`` ``aiter_lines``)."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SSEMessage:
    event: str = "message"
    data: str = ""
    id: str | None = None


async def iter_sse(lines: AsyncIterable[str]) -> AsyncIterator[SSEMessage]:
    """Group raw lines into SSE messages.

    A blank line dispatches the pending message. Multiple ``data:`` lines are
    joined with ``\\n``; comment lines starting with ``:`` are ignored. A
    trailing message without its blank line is still dispatched when the
    stream ends.
    """
    event = "message"
    data: list[str] = []
    last_id: str | None = None
    pending = False

    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if pending:
                yield SSEMessage(event=event, data="\n".join(data), id=last_id)
            event, data, pending = "message", [], False
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if name == "data":
            data.append(value)
            pending = True
        elif name == "event":
            event = value or "message"
            pending = True
        elif name == "id":
            last_id = value
        # "retry" and unknown fields are ignored.

    if pending:
        yield SSEMessage(event=event, data="\n".join(data), id=last_id)


async def iter_json_events(lines: AsyncIterable[str]) -> AsyncIterator[dict[str, Any]]:
    """Yield the JSON payload of each SSE message, skipping ``[DONE]`` and bad frames.

    When the payload has no ``event_type``/``type`` but the SSE ``event:``
    field is set, it is copied in as ``event_type``.
    """
    async for message in iter_sse(lines):
        payload = message.data.strip()
        if not payload or payload == "[DONE]":
            continue
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("skipping malformed SSE payload: %.80s", payload)
            continue
        if not isinstance(decoded, dict):
            continue
        if message.event != "message" and "event_type" not in decoded and "type" not in decoded:
            decoded["event_type"] = message.event
        yield decoded
