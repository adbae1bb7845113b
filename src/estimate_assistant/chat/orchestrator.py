"""High level coordination for assistant conversations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncGenerator, Sequence

from ..assistants import AssistantsClient, UpstreamStream
from ..config import Settings
from ..services.attachments import Attachment, fold_image_notice, normalize_attachments
from ..tools.executor import ToolExecutor
from .downstream import SseEvent, frame_events
from .relay import StreamRelay

logger = logging.getLogger(__name__)

ATTACHMENTS_ONLY_TEXT = "Please review the attached file(s)."


@dataclass(frozen=True)
class ChatSubmission:
    message: str
    thread_id: str | None = None
    attachments: Sequence[Attachment] = field(default_factory=tuple)


@dataclass
class PreparedRun:
    """A started run whose event stream has not been relayed yet."""

    thread_id: str
    stream: UpstreamStream


class ChatOrchestrator:
    """Coordinate uploads, thread management, runs and the stream relay."""

    def __init__(
        self,
        settings: Settings,
        tool_executor: ToolExecutor,
        *,
        client: AssistantsClient | None = None,
    ) -> None:
        self._settings = settings
        self._tools = tool_executor
        self._client = client or AssistantsClient(settings)

    @property
    def client(self) -> AssistantsClient:
        return self._client

    def ensure_configured(self) -> None:
        """Raise ``ConfigurationError`` when credentials are missing."""

        self._settings.require_assistant_credentials()

    async def open_conversation(self, submission: ChatSubmission) -> PreparedRun:
        """Upload attachments, append the message and start a streaming run.

        Uploads happen first: a failed upload aborts before any thread, message
        or run is created.
        """

        _, assistant_id = self._settings.require_assistant_credentials()

        normalized = await normalize_attachments(submission.attachments, self._client)
        text = submission.message.strip()
        if not text and submission.attachments:
            text = ATTACHMENTS_ONLY_TEXT
        text = fold_image_notice(text, normalized.image_names)

        thread_id = submission.thread_id
        if not thread_id:
            thread_id = await self._client.create_thread()
            logger.info("Created new thread %s", thread_id)

        await self._client.append_message(thread_id, text, normalized.file_ids)
        stream = await self._client.start_run(thread_id, assistant_id)
        logger.info(
            "Started run on thread %s (%d file(s), %d image(s))",
            thread_id,
            len(normalized.file_ids),
            len(normalized.image_names),
        )
        return PreparedRun(thread_id=thread_id, stream=stream)

    def stream_events(self, prepared: PreparedRun) -> AsyncGenerator[SseEvent, None]:
        relay = StreamRelay(
            self._client,
            self._tools,
            max_tool_rounds=self._settings.max_tool_rounds,
        )
        return frame_events(
            prepared.thread_id, relay.relay(prepared.thread_id, prepared.stream)
        )

    async def shutdown(self) -> None:
        """Clean up held resources."""

        try:
            await asyncio.wait_for(self._client.aclose(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing assistants client: %s", exc)


__all__ = ["ChatOrchestrator", "ChatSubmission", "PreparedRun"]
