"""Chat streaming API routes."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse
from starlette.datastructures import UploadFile

from ..assistants import FileUploadError, UpstreamError
from ..chat import ChatOrchestrator, ChatSubmission
from ..chat.downstream import content_event, thread_id_event, to_sse
from ..config import ConfigurationError
from ..services.attachments import AttachmentError, AttachmentTooLarge, read_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

FILE_FIELD_PREFIX = "file_"


def get_orchestrator(request: Request) -> ChatOrchestrator:
    orchestrator = getattr(request.app.state, "chat_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Chat orchestrator unavailable")
    return orchestrator


def _error_response(status_code: int, error: str, **extra: Any) -> JSONResponse:
    content: dict[str, Any] = {"error": error}
    content.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=content)


def _gateway_status(upstream_status: int) -> int:
    """Upstream 4xx means this service sent a bad request, not the caller."""

    if upstream_status < status.HTTP_500_INTERNAL_SERVER_ERROR:
        return status.HTTP_502_BAD_GATEWAY
    return upstream_status


def _detail_text(detail: Any) -> str:
    return detail if isinstance(detail, str) else json.dumps(detail)


@router.post("/chat", response_model=None, status_code=200)
async def chat(request: Request) -> EventSourceResponse | JSONResponse:
    """Relay one user turn to the assistant and stream the reply as SSE.

    Accepts multipart form data: ``message``, optional ``threadId`` and any
    number of ``file_<n>`` uploads. Failures before the first streamed byte are
    returned as JSON errors.
    """

    orchestrator = get_orchestrator(request)
    try:
        orchestrator.ensure_configured()
    except ConfigurationError as exc:
        logger.error("Chat request rejected: %s", exc)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), details=exc.details
        )

    form = await request.form()
    raw_message = form.get("message")
    message = raw_message if isinstance(raw_message, str) else ""
    raw_thread = form.get("threadId")
    thread_id = raw_thread.strip() if isinstance(raw_thread, str) else ""
    uploads = [
        value
        for key, value in form.multi_items()
        if key.startswith(FILE_FIELD_PREFIX) and isinstance(value, UploadFile)
    ]

    if not message.strip() and not uploads:
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "Message content is required"
        )

    settings = request.app.state.settings
    try:
        attachments = [
            await read_upload(upload, max_size_bytes=settings.attachments_max_size_bytes)
            for upload in uploads
        ]
    except AttachmentTooLarge as exc:
        return _error_response(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            "Attachment too large",
            details=str(exc),
        )
    except AttachmentError as exc:
        return _error_response(
            status.HTTP_400_BAD_REQUEST, "Invalid attachment", details=str(exc)
        )

    submission = ChatSubmission(
        message=message,
        thread_id=thread_id or None,
        attachments=attachments,
    )
    try:
        prepared = await orchestrator.open_conversation(submission)
    except FileUploadError as exc:
        logger.error("%s", exc)
        return _error_response(
            exc.status_code,
            "Failed to upload file",
            details=_detail_text(exc.detail),
            filename=exc.filename,
        )
    except UpstreamError as exc:
        logger.error("Assistant request failed (%s): %s", exc.status_code, exc.detail)
        return _error_response(
            _gateway_status(exc.status_code),
            "Assistant request failed",
            details=_detail_text(exc.detail),
        )
    except ConfigurationError as exc:
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), details=exc.details
        )

    return EventSourceResponse(orchestrator.stream_events(prepared), sep="\n")


@router.get("/chat/test-stream", response_model=None, status_code=200)
async def test_stream() -> EventSourceResponse:
    """Emit a short fake SSE chat stream for debugging the frontend."""

    async def generator():
        yield to_sse(thread_id_event("thread_test"))
        for part in ["Hello ", "from ", "server!"]:
            yield to_sse(content_event(part))
            await asyncio.sleep(0.2)

    return EventSourceResponse(generator(), sep="\n")


__all__ = ["router"]
