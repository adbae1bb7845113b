"""Downstream event records and their framing for the client stream."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)

DownstreamEvent = dict[str, Any]
SseEvent = dict[str, str | None]

GENERIC_STREAM_ERROR = "An error occurred while processing your request."


def thread_id_event(thread_id: str) -> DownstreamEvent:
    return {"type": "thread_id", "threadId": thread_id}


def content_event(text: str) -> DownstreamEvent:
    return {"type": "content", "content": text}


def tool_result_event(tool: str, result: dict[str, Any]) -> DownstreamEvent:
    return {"type": "tool_result", "tool": tool, "result": result}


def error_event(message: str) -> DownstreamEvent:
    return {"type": "error", "message": message}


def to_sse(event: DownstreamEvent) -> SseEvent:
    """Wrap one event as an SSE ``data`` record (no ``event:`` field)."""

    return {"data": json.dumps(event, ensure_ascii=False)}


async def frame_events(
    thread_id: str,
    events: AsyncGenerator[DownstreamEvent, None],
) -> AsyncGenerator[SseEvent, None]:
    """Emit ``thread_id`` first, then each relay event as it arrives.

    An exception escaping the relay becomes one final generic ``error`` record;
    the relay generator is closed on every exit path, which releases any open
    upstream stream.
    """

    yield to_sse(thread_id_event(thread_id))
    try:
        async for event in events:
            yield to_sse(event)
    except Exception:
        logger.exception("Streaming error on thread %s", thread_id)
        yield to_sse(error_event(GENERIC_STREAM_ERROR))
    finally:
        await events.aclose()


__all__ = [
    "DownstreamEvent",
    "GENERIC_STREAM_ERROR",
    "SseEvent",
    "content_event",
    "error_event",
    "frame_events",
    "thread_id_event",
    "to_sse",
    "tool_result_event",
]
