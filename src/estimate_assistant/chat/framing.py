"""Incremental parsing of the assistant's server-sent-event stream.

The upstream wire format is newline-delimited ``data: <json>`` records, but
chunks arrive on arbitrary byte boundaries. ``LineFramer`` keeps the trailing
partial line between chunks; ``EventReader`` turns complete lines into
classified ``UpstreamEvent`` objects.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator

from ..schemas.tools import ToolCall

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class StreamProtocolError(ValueError):
    """Raised for a malformed event line; callers log and skip it."""


class UpstreamEventKind(str, Enum):
    DELTA_CONTENT = "delta-content"
    RUN_COMPLETED = "run-completed"
    RUN_FAILED = "run-failed"
    REQUIRES_ACTION = "requires-action"
    OTHER = "other"


@dataclass(frozen=True)
class UpstreamEvent:
    kind: UpstreamEventKind
    payload: dict[str, Any]

    @property
    def run_id(self) -> str | None:
        value = self.payload.get("id")
        return value if isinstance(value, str) else None

    def text_parts(self) -> list[str]:
        """Return the text values of a message delta, in order."""

        delta = self.payload.get("delta")
        if not isinstance(delta, dict):
            return []
        content = delta.get("content")
        if not isinstance(content, list):
            return []
        parts: list[str] = []
        for item in content:
            if not isinstance(item, dict) or item.get("type") != "text":
                continue
            text = item.get("text")
            value = text.get("value") if isinstance(text, dict) else None
            if isinstance(value, str) and value:
                parts.append(value)
        return parts

    def tool_calls(self) -> list[ToolCall]:
        required = self.payload.get("required_action")
        if not isinstance(required, dict):
            return []
        submit = required.get("submit_tool_outputs")
        if not isinstance(submit, dict):
            return []
        raw_calls = submit.get("tool_calls")
        if not isinstance(raw_calls, list):
            return []
        calls: list[ToolCall] = []
        for raw in raw_calls:
            if not isinstance(raw, dict):
                continue
            call = ToolCall.from_upstream(raw)
            if call is None:
                logger.warning("Skipping tool call without an id: %s", raw)
                continue
            calls.append(call)
        return calls


def classify_event(payload: dict[str, Any]) -> UpstreamEvent:
    """Tag a parsed upstream record by its ``object`` and ``status`` fields."""

    obj = payload.get("object")
    if obj == "thread.message.delta":
        return UpstreamEvent(UpstreamEventKind.DELTA_CONTENT, payload)
    if obj == "thread.run":
        run_status = payload.get("status")
        if run_status == "completed":
            return UpstreamEvent(UpstreamEventKind.RUN_COMPLETED, payload)
        if run_status == "failed":
            return UpstreamEvent(UpstreamEventKind.RUN_FAILED, payload)
        if run_status == "requires_action":
            return UpstreamEvent(UpstreamEventKind.REQUIRES_ACTION, payload)
    return UpstreamEvent(UpstreamEventKind.OTHER, payload)


def parse_data_line(line: str) -> UpstreamEvent | None:
    """Parse one complete line; ``None`` for non-data lines and ``[DONE]``."""

    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):]
    if data == DONE_SENTINEL:
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise StreamProtocolError(
            f"Invalid JSON in stream record: {exc.msg} at column {exc.colno}"
        ) from exc
    if not isinstance(payload, dict):
        raise StreamProtocolError("Stream record is not a JSON object")
    return classify_event(payload)


class LineFramer:
    """Split decoded chunks into complete lines, keeping the trailing fragment."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return lines

    def close(self) -> str:
        """Finish decoding and return the discarded partial line, if any."""

        leftover = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return leftover


class EventReader:
    """Async iterator of upstream events over a byte-chunk stream."""

    def __init__(self, chunks: AsyncIterable[bytes]) -> None:
        self._chunks = chunks.__aiter__()
        self._framer = LineFramer()
        self._ready: deque[UpstreamEvent] = deque()
        self._exhausted = False

    def __aiter__(self) -> "EventReader":
        return self

    async def __anext__(self) -> UpstreamEvent:
        event = await self.next_event()
        if event is None:
            raise StopAsyncIteration
        return event

    async def next_event(self) -> UpstreamEvent | None:
        while not self._ready:
            if self._exhausted:
                return None
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                leftover = self._framer.close()
                if leftover.strip():
                    logger.debug(
                        "Discarding incomplete trailing line (%d chars)", len(leftover)
                    )
                continue
            for line in self._framer.feed(chunk):
                try:
                    event = parse_data_line(line)
                except StreamProtocolError as exc:
                    logger.error("Error parsing stream data: %s", exc)
                    continue
                if event is not None:
                    self._ready.append(event)
        return self._ready.popleft()


async def iter_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[UpstreamEvent]:
    async for event in EventReader(chunks):
        yield event


__all__ = [
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "EventReader",
    "LineFramer",
    "StreamProtocolError",
    "UpstreamEvent",
    "UpstreamEventKind",
    "classify_event",
    "iter_events",
    "parse_data_line",
]
