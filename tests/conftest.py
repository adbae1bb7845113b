import json
import pathlib
import sys
from typing import Any, AsyncIterator, Iterable

import pytest
from pydantic import SecretStr

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from estimate_assistant.config import Settings  # noqa: E402


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the developer's ``.env`` file."""

    values: dict[str, Any] = {
        "openai_api_key": SecretStr("sk-test"),
        "openai_assistant_id": "asst_test",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # pyright: ignore[reportCallIssue]


def sse_line(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def message_delta(*texts: str) -> dict[str, Any]:
    return {
        "object": "thread.message.delta",
        "delta": {
            "content": [
                {"index": i, "type": "text", "text": {"value": text}}
                for i, text in enumerate(texts)
            ]
        },
    }


def run_event(status: str, run_id: str = "run_1", **extra: Any) -> dict[str, Any]:
    payload = {"object": "thread.run", "id": run_id, "status": status}
    payload.update(extra)
    return payload


def requires_action(run_id: str, *calls: tuple[str, str, str]) -> dict[str, Any]:
    """Build a ``requires_action`` run event from ``(id, name, arguments)`` tuples."""

    return run_event(
        "requires_action",
        run_id,
        required_action={
            "type": "submit_tool_outputs",
            "submit_tool_outputs": {
                "tool_calls": [
                    {
                        "id": call_id,
                        "type": "function",
                        "function": {"name": name, "arguments": arguments},
                    }
                    for call_id, name, arguments in calls
                ]
            },
        },
    )


class FakeStream:
    """Stand-in for ``UpstreamStream`` that replays preset chunks."""

    def __init__(self, chunks: Iterable[bytes], *, error: Exception | None = None):
        self._chunks = list(chunks)
        self._error = error
        self.close_count = 0

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.close_count += 1


def stream_of(*events: dict[str, Any], done: bool = True) -> FakeStream:
    chunks = [sse_line(event) for event in events]
    if done:
        chunks.append(b"data: [DONE]\n\n")
    return FakeStream(chunks)


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a module level exit event bound to the first loop."""

    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield


class FakeAssistantsClient:
    """In-memory stand-in for ``AssistantsClient`` recording every call."""

    def __init__(
        self,
        *,
        run_streams: Iterable[FakeStream] = (),
        continuations: Iterable[FakeStream] = (),
        upload_error: Exception | None = None,
        run_error: Exception | None = None,
    ) -> None:
        self.run_streams = list(run_streams)
        self.continuations = list(continuations)
        self.upload_error = upload_error
        self.run_error = run_error
        self.calls: list[tuple[Any, ...]] = []
        self.closed = False

    async def upload_file(self, attachment: Any) -> str:
        self.calls.append(("upload_file", attachment.filename))
        if self.upload_error is not None:
            raise self.upload_error
        return f"file-{len(self.calls)}"

    async def create_thread(self) -> str:
        self.calls.append(("create_thread",))
        return "thread_new"

    async def append_message(
        self, thread_id: str, text: str, file_ids: Iterable[str] = ()
    ) -> dict[str, Any]:
        self.calls.append(("append_message", thread_id, text, list(file_ids)))
        return {"id": "msg_1"}

    async def start_run(self, thread_id: str, assistant_id: str) -> FakeStream:
        self.calls.append(("start_run", thread_id, assistant_id))
        if self.run_error is not None:
            raise self.run_error
        return self.run_streams.pop(0)

    async def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: Iterable[Any]
    ) -> FakeStream:
        self.calls.append(("submit_tool_outputs", thread_id, run_id, list(outputs)))
        return self.continuations.pop(0)

    async def aclose(self) -> None:
        self.closed = True

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


def parse_sse_body(body: str) -> list[dict[str, Any]]:
    """Decode the ``data:`` records of a buffered SSE response body."""

    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]
