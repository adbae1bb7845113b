from __future__ import annotations

from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import SecretStr

from conftest import (
    FakeAssistantsClient,
    make_settings,
    message_delta,
    parse_sse_body,
    requires_action,
    run_event,
    stream_of,
)
from estimate_assistant.assistants import FileUploadError, UpstreamError
from estimate_assistant.chat import ChatOrchestrator
from estimate_assistant.config import Settings
from estimate_assistant.routers.chat import router
from estimate_assistant.schemas.estimates import EstimateRequest
from estimate_assistant.schemas.tools import ToolResult
from estimate_assistant.tools import (
    GENERATE_PDF_ESTIMATE,
    GeneratePdfEstimateTool,
    ToolExecutor,
)


class StubDispatcher:
    def __init__(self) -> None:
        self.estimates: list[EstimateRequest] = []

    async def dispatch(self, estimate: EstimateRequest) -> ToolResult:
        self.estimates.append(estimate)
        return ToolResult(
            success=True,
            message=f"PDF will be sent to {estimate.email}",
        )


def make_client(
    fake: FakeAssistantsClient,
    *,
    settings: Settings | None = None,
    dispatcher: StubDispatcher | None = None,
) -> TestClient:
    settings = settings or make_settings()
    executor = ToolExecutor(
        {GENERATE_PDF_ESTIMATE: GeneratePdfEstimateTool(dispatcher or StubDispatcher())}
    )
    app = FastAPI()
    app.state.settings = settings
    app.state.chat_orchestrator = ChatOrchestrator(
        settings, executor, client=fake  # type: ignore[arg-type]
    )
    app.include_router(router)
    return TestClient(app)


def test_new_conversation_streams_thread_id_then_content() -> None:
    fake = FakeAssistantsClient(
        run_streams=[
            stream_of(message_delta("Hello"), message_delta("!"), run_event("completed"))
        ]
    )
    client = make_client(fake)

    response = client.post("/api/chat", data={"message": "Hi"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert parse_sse_body(response.text) == [
        {"type": "thread_id", "threadId": "thread_new"},
        {"type": "content", "content": "Hello"},
        {"type": "content", "content": "!"},
    ]
    assert fake.calls == [
        ("create_thread",),
        ("append_message", "thread_new", "Hi", []),
        ("start_run", "thread_new", "asst_test"),
    ]


def test_existing_thread_is_reused() -> None:
    fake = FakeAssistantsClient(run_streams=[stream_of(message_delta("Back"))])
    client = make_client(fake)

    response = client.post("/api/chat", data={"message": "Again", "threadId": "thread_7"})

    events = parse_sse_body(response.text)
    assert events[0] == {"type": "thread_id", "threadId": "thread_7"}
    assert "create_thread" not in fake.call_names()


def test_tool_call_is_executed_and_run_resumed() -> None:
    arguments = (
        '{"to": "Acme", "email": "a@b.co", "items": '
        '[{"description": "X", "units": 1, "cost": 100, "amount": 100}]}'
    )
    fake = FakeAssistantsClient(
        run_streams=[
            stream_of(requires_action("run_1", ("call_1", GENERATE_PDF_ESTIMATE, arguments)))
        ],
        continuations=[
            stream_of(message_delta("Your estimate is on its way."), run_event("completed"))
        ],
    )
    dispatcher = StubDispatcher()
    client = make_client(fake, dispatcher=dispatcher)

    response = client.post("/api/chat", data={"message": "Quote 1 X at $100 for Acme"})

    events = parse_sse_body(response.text)
    assert [e["type"] for e in events] == ["thread_id", "tool_result", "content"]
    assert events[1]["tool"] == GENERATE_PDF_ESTIMATE
    assert events[1]["result"] == {
        "success": True,
        "message": "PDF will be sent to a@b.co",
    }
    [estimate] = dispatcher.estimates
    assert estimate.to == "Acme"

    submit = fake.calls[-1]
    assert submit[:3] == ("submit_tool_outputs", "thread_new", "run_1")
    assert [o.tool_call_id for o in submit[3]] == ["call_1"]


def test_image_uploads_are_folded_into_message_text() -> None:
    fake = FakeAssistantsClient(run_streams=[stream_of(message_delta("Nice"))])
    client = make_client(fake)

    response = client.post(
        "/api/chat",
        data={"message": "Look"},
        files=[
            ("file_0", ("a.png", b"\x89PNG", "image/png")),
            ("file_1", ("Drawing.PDF", b"%PDF", "application/pdf")),
        ],
    )

    assert response.status_code == 200
    append = next(call for call in fake.calls if call[0] == "append_message")
    assert append[2] == "Look\n\n[User has uploaded 1 image file(s): a.png]"
    assert append[3] == ["file-1"]
    assert ("upload_file", "Drawing.pdf") in fake.calls
    assert ("upload_file", "a.png") not in fake.calls


def test_failed_upload_aborts_before_thread_or_run() -> None:
    fake = FakeAssistantsClient(
        upload_error=FileUploadError("bad.docx", 400, "Invalid file format")
    )
    client = make_client(fake)

    response = client.post(
        "/api/chat",
        data={"message": "Review"},
        files=[("file_0", ("bad.docx", b"xx", "application/msword"))],
    )

    assert response.status_code == 400
    assert response.json() == {
        "error": "Failed to upload file",
        "details": "Invalid file format",
        "filename": "bad.docx",
    }
    assert fake.call_names() == ["upload_file"]


def test_missing_configuration_returns_500_before_any_upstream_call() -> None:
    fake = FakeAssistantsClient()
    settings = make_settings(openai_api_key=SecretStr(""))
    client = make_client(fake, settings=settings)

    response = client.post("/api/chat", data={"message": "Hi"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "OpenAI API key is not configured",
        "details": "Please set the OPENAI_API_KEY environment variable",
    }
    assert fake.calls == []


def test_missing_assistant_id_returns_500() -> None:
    settings = make_settings(openai_assistant_id="")
    client = make_client(FakeAssistantsClient(), settings=settings)

    response = client.post("/api/chat", data={"message": "Hi"})

    assert response.status_code == 500
    assert response.json()["error"] == "OpenAI Assistant ID is not configured"


def test_empty_message_without_files_is_rejected() -> None:
    fake = FakeAssistantsClient()
    client = make_client(fake)

    response = client.post("/api/chat", data={"message": "   "})

    assert response.status_code == 400
    assert response.json() == {"error": "Message content is required"}
    assert fake.calls == []


@pytest.mark.parametrize(
    "upstream_status, expected_status",
    [(404, 502), (401, 502), (500, 500), (503, 503)],
)
def test_run_start_failure_is_returned_as_json(
    upstream_status: int, expected_status: int
) -> None:
    fake = FakeAssistantsClient(
        run_error=UpstreamError(upstream_status, "No assistant found")
    )
    client = make_client(fake)

    response = client.post("/api/chat", data={"message": "Hi"})

    assert response.status_code == expected_status
    body: dict[str, Any] = response.json()
    assert body == {"error": "Assistant request failed", "details": "No assistant found"}


def test_oversized_attachment_is_rejected() -> None:
    fake = FakeAssistantsClient()
    client = make_client(fake, settings=make_settings(attachments_max_size_bytes=4))

    response = client.post(
        "/api/chat",
        data={"message": "Hi"},
        files=[("file_0", ("big.pdf", b"%PDF-too-big", "application/pdf"))],
    )

    assert response.status_code == 413
    assert fake.calls == []


def test_test_stream_endpoint() -> None:
    client = make_client(FakeAssistantsClient())

    response = client.get("/api/chat/test-stream")

    events = parse_sse_body(response.text)
    assert events[0]["type"] == "thread_id"
    assert "".join(e["content"] for e in events[1:]) == "Hello from server!"
