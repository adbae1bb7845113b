"""Tests for the stream relay and the downstream framer."""

from __future__ import annotations

import json
from typing import Any, Sequence

import pytest

from conftest import (
    FakeStream,
    message_delta,
    requires_action,
    run_event,
    sse_line,
    stream_of,
)
from estimate_assistant.assistants import UpstreamError
from estimate_assistant.chat.downstream import GENERIC_STREAM_ERROR, frame_events
from estimate_assistant.chat.relay import (
    RUN_FAILED_MESSAGE,
    TOOL_LIMIT_MESSAGE,
    StreamRelay,
)
from estimate_assistant.schemas.estimates import EstimateRequest
from estimate_assistant.schemas.tools import ToolOutput, ToolResult
from estimate_assistant.tools import GeneratePdfEstimateTool, ToolExecutor


class StubTool:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, arguments: dict[str, Any]) -> ToolResult:
        self.calls.append(arguments)
        return ToolResult(success=True, message=f"ok {len(self.calls)}")


class UnusedDispatcher:
    async def dispatch(self, estimate: EstimateRequest) -> ToolResult:
        raise AssertionError("rejected estimates must not be dispatched")


class StubSubmitter:
    """Returns queued continuation streams, or raises when queued an error."""

    def __init__(self, *continuations: FakeStream | Exception) -> None:
        self._continuations = list(continuations)
        self.submissions: list[tuple[str, str, list[ToolOutput]]] = []

    async def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: Sequence[ToolOutput]
    ) -> FakeStream:
        self.submissions.append((thread_id, run_id, list(outputs)))
        nxt = self._continuations.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def make_relay(
    submitter: StubSubmitter, *, max_tool_rounds: int = 8
) -> tuple[StreamRelay, StubTool]:
    tool = StubTool()
    executor = ToolExecutor({"generate_pdf_estimate": tool})
    return StreamRelay(submitter, executor, max_tool_rounds=max_tool_rounds), tool


async def _drain(relay: StreamRelay, stream: FakeStream) -> list[dict[str, Any]]:
    return [event async for event in relay.relay("thread_1", stream)]


@pytest.mark.asyncio
async def test_plain_run_forwards_text_in_order() -> None:
    relay, _ = make_relay(StubSubmitter())
    stream = stream_of(
        message_delta("Hello"),
        message_delta(", ", "world"),
        run_event("completed"),
    )

    events = await _drain(relay, stream)

    assert events == [
        {"type": "content", "content": "Hello"},
        {"type": "content", "content": ", "},
        {"type": "content", "content": "world"},
    ]
    assert stream.close_count == 1


@pytest.mark.asyncio
async def test_tool_round_reports_dispatched_calls_and_drains_continuation() -> None:
    continuation = stream_of(message_delta("Done."), run_event("completed"))
    submitter = StubSubmitter(continuation)
    relay, tool = make_relay(submitter)
    stream = stream_of(
        message_delta("Working"),
        requires_action(
            "run_1",
            ("call_a", "generate_pdf_estimate", '{"n": 1}'),
            ("call_b", "lookup_price", "{}"),
        ),
    )

    events = await _drain(relay, stream)

    assert [e["type"] for e in events] == ["content", "tool_result", "content"]
    assert events[1] == {
        "type": "tool_result",
        "tool": "generate_pdf_estimate",
        "result": {"success": True, "message": "ok 1"},
    }
    assert events[2]["content"] == "Done."

    [(thread_id, run_id, outputs)] = submitter.submissions
    assert (thread_id, run_id) == ("thread_1", "run_1")
    assert [o.tool_call_id for o in outputs] == ["call_a", "call_b"]
    assert json.loads(outputs[1].output) == {
        "success": False,
        "error": "Unknown tool: lookup_price",
    }
    assert tool.calls == [{"n": 1}]
    assert stream.close_count == 1
    assert continuation.close_count == 1


@pytest.mark.asyncio
async def test_rejected_estimate_arguments_produce_output_without_tool_result() -> None:
    submitter = StubSubmitter(stream_of(message_delta("Please fix the items.")))
    executor = ToolExecutor(
        {"generate_pdf_estimate": GeneratePdfEstimateTool(UnusedDispatcher())}
    )
    relay = StreamRelay(submitter, executor)
    stream = stream_of(
        requires_action(
            "run_1",
            ("call_a", "generate_pdf_estimate", '{"to": "Acme", "items": []}'),
            ("call_b", "generate_pdf_estimate", "{not json"),
        ),
    )

    events = await _drain(relay, stream)

    assert events == [{"type": "content", "content": "Please fix the items."}]
    [(_, _, outputs)] = submitter.submissions
    assert [o.tool_call_id for o in outputs] == ["call_a", "call_b"]
    assert json.loads(outputs[0].output) == {
        "success": False,
        "error": 'Missing or invalid "items" field (must be a non-empty array)',
    }
    assert json.loads(outputs[1].output)["success"] is False


@pytest.mark.asyncio
async def test_continuation_is_drained_before_the_rest_of_the_parent() -> None:
    continuation = stream_of(message_delta("B"))
    relay, _ = make_relay(StubSubmitter(continuation))
    stream = stream_of(
        requires_action("run_1", ("call_a", "generate_pdf_estimate", "{}")),
        message_delta("C"),
    )

    events = await _drain(relay, stream)

    assert [e.get("content") for e in events if e["type"] == "content"] == ["B", "C"]


@pytest.mark.asyncio
async def test_multiple_tool_rounds_chain() -> None:
    second = stream_of(message_delta("final"), run_event("completed", "run_1"))
    first = stream_of(
        requires_action("run_1", ("call_2", "generate_pdf_estimate", "{}")),
    )
    submitter = StubSubmitter(first, second)
    relay, tool = make_relay(submitter)
    stream = stream_of(
        requires_action("run_1", ("call_1", "generate_pdf_estimate", "{}")),
    )

    events = await _drain(relay, stream)

    assert [e["type"] for e in events] == ["tool_result", "tool_result", "content"]
    assert len(submitter.submissions) == 2
    assert len(tool.calls) == 2
    assert first.close_count == second.close_count == 1


@pytest.mark.asyncio
async def test_tool_rounds_beyond_limit_are_not_submitted() -> None:
    looping = [
        stream_of(requires_action("run_1", (f"call_{i}", "generate_pdf_estimate", "{}")))
        for i in range(2, 5)
    ]
    submitter = StubSubmitter(*looping)
    relay, tool = make_relay(submitter, max_tool_rounds=2)
    stream = stream_of(
        requires_action("run_1", ("call_1", "generate_pdf_estimate", "{}")),
    )

    events = await _drain(relay, stream)

    assert len(submitter.submissions) == 2
    assert len(tool.calls) == 2
    assert events[-1] == {"type": "error", "message": TOOL_LIMIT_MESSAGE}


@pytest.mark.asyncio
async def test_submission_failure_ends_stream_quietly() -> None:
    submitter = StubSubmitter(UpstreamError(404, "Run not found"))
    relay, _ = make_relay(submitter)
    stream = stream_of(
        requires_action("run_1", ("call_1", "generate_pdf_estimate", "{}")),
    )

    events = await _drain(relay, stream)

    assert [e["type"] for e in events] == ["tool_result"]
    assert stream.close_count == 1


@pytest.mark.asyncio
async def test_failed_run_emits_error_and_keeps_reading() -> None:
    relay, _ = make_relay(StubSubmitter())
    stream = stream_of(
        message_delta("partial"),
        run_event("failed", last_error={"code": "server_error"}),
        message_delta("late"),
    )

    events = await _drain(relay, stream)

    assert events == [
        {"type": "content", "content": "partial"},
        {"type": "error", "message": RUN_FAILED_MESSAGE},
        {"type": "content", "content": "late"},
    ]


@pytest.mark.asyncio
async def test_early_close_releases_all_open_streams() -> None:
    continuation = stream_of(message_delta("one"), message_delta("two"))
    relay, _ = make_relay(StubSubmitter(continuation))
    stream = stream_of(
        requires_action("run_1", ("call_1", "generate_pdf_estimate", "{}")),
    )

    events = relay.relay("thread_1", stream)
    assert (await events.__anext__())["type"] == "tool_result"
    assert (await events.__anext__())["content"] == "one"
    await events.aclose()

    assert stream.close_count == 1
    assert continuation.close_count == 1


def _decode(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [json.loads(record["data"]) for record in records]


@pytest.mark.asyncio
async def test_framer_sends_thread_id_first() -> None:
    relay, _ = make_relay(StubSubmitter())
    stream = stream_of(message_delta("Hi"))

    records = [r async for r in frame_events("thread_9", relay.relay("thread_9", stream))]

    assert _decode(records) == [
        {"type": "thread_id", "threadId": "thread_9"},
        {"type": "content", "content": "Hi"},
    ]
    assert all(set(record) == {"data"} for record in records)


@pytest.mark.asyncio
async def test_framer_turns_stream_failure_into_error_event() -> None:
    relay, _ = make_relay(StubSubmitter())
    stream = FakeStream(
        [sse_line(message_delta("Hi"))],
        error=UpstreamError(502, "connection reset"),
    )

    records = [r async for r in frame_events("thread_9", relay.relay("thread_9", stream))]

    assert _decode(records)[1:] == [
        {"type": "content", "content": "Hi"},
        {"type": "error", "message": GENERIC_STREAM_ERROR},
    ]
    assert stream.close_count == 1
