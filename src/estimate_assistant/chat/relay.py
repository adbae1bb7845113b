"""Relay of assistant run streams, including in-band tool execution."""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Protocol, Sequence

from ..assistants import UpstreamError, UpstreamStream
from ..schemas.tools import ToolOutput
from ..tools.executor import ToolExecutor
from .downstream import DownstreamEvent, content_event, error_event, tool_result_event
from .framing import EventReader, UpstreamEvent, UpstreamEventKind

logger = logging.getLogger(__name__)

RUN_FAILED_MESSAGE = "The assistant run failed. Please try again."
TOOL_LIMIT_MESSAGE = (
    "The assistant requested more tool rounds than allowed. Please try again."
)


class ToolOutputSubmitter(Protocol):
    async def submit_tool_outputs(
        self,
        thread_id: str,
        run_id: str,
        outputs: Sequence[ToolOutput],
    ) -> UpstreamStream:
        ...


class StreamRelay:
    """Translate one or more upstream run streams into downstream events.

    Streams are drained from an explicit stack: a continuation stream returned
    by a tool-output submission is pushed on top and drained completely before
    the stream that requested the tools resumes. Content from every stream is
    forwarded identically.
    """

    def __init__(
        self,
        client: ToolOutputSubmitter,
        tool_executor: ToolExecutor,
        *,
        max_tool_rounds: int = 8,
    ) -> None:
        self._client = client
        self._tools = tool_executor
        self._max_tool_rounds = max_tool_rounds

    async def relay(
        self, thread_id: str, stream: UpstreamStream
    ) -> AsyncGenerator[DownstreamEvent, None]:
        stack: list[tuple[UpstreamStream, EventReader]] = [
            (stream, EventReader(stream.aiter_bytes()))
        ]
        tool_rounds = 0
        try:
            while stack:
                current, reader = stack[-1]
                event = await reader.next_event()
                if event is None:
                    stack.pop()
                    await current.aclose()
                    continue

                if event.kind is UpstreamEventKind.DELTA_CONTENT:
                    for text in event.text_parts():
                        yield content_event(text)
                elif event.kind is UpstreamEventKind.RUN_COMPLETED:
                    logger.info("Run %s completed successfully", event.run_id)
                elif event.kind is UpstreamEventKind.RUN_FAILED:
                    logger.error(
                        "Run %s failed: %s",
                        event.run_id,
                        event.payload.get("last_error"),
                    )
                    yield error_event(RUN_FAILED_MESSAGE)
                elif event.kind is UpstreamEventKind.REQUIRES_ACTION:
                    tool_rounds += 1
                    if tool_rounds > self._max_tool_rounds:
                        logger.warning(
                            "Run %s exceeded %d tool rounds; not submitting outputs",
                            event.run_id,
                            self._max_tool_rounds,
                        )
                        yield error_event(TOOL_LIMIT_MESSAGE)
                        continue

                    outputs: list[ToolOutput] = []
                    async for downstream in self._execute_tools(event, outputs):
                        yield downstream
                    continuation = await self._submit(thread_id, event, outputs)
                    if continuation is not None:
                        stack.append(
                            (continuation, EventReader(continuation.aiter_bytes()))
                        )
        finally:
            for remaining, _ in stack:
                await remaining.aclose()

    async def _execute_tools(
        self, event: UpstreamEvent, outputs: list[ToolOutput]
    ) -> AsyncGenerator[DownstreamEvent, None]:
        calls = event.tool_calls()
        logger.info("Run %s requires action: %d tool call(s)", event.run_id, len(calls))
        for call in calls:
            execution = await self._tools.execute(call.function_name, call.arguments_json)
            outputs.append(execution.result.to_output(call.id))
            if execution.dispatched:
                yield tool_result_event(
                    call.function_name, execution.result.as_payload()
                )

    async def _submit(
        self,
        thread_id: str,
        event: UpstreamEvent,
        outputs: list[ToolOutput],
    ) -> UpstreamStream | None:
        if not outputs:
            logger.warning("Run %s requested action without tool calls", event.run_id)
            return None
        if event.run_id is None:
            logger.error("Cannot submit tool outputs: run id missing from event")
            return None
        try:
            return await self._client.submit_tool_outputs(
                thread_id, event.run_id, outputs
            )
        except UpstreamError as exc:
            logger.error(
                "Failed to submit tool outputs for run %s: %s", event.run_id, exc.detail
            )
            return None


__all__ = ["RUN_FAILED_MESSAGE", "StreamRelay", "TOOL_LIMIT_MESSAGE"]
