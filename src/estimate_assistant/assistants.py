"""OpenAI Assistants API client utilities."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Sequence

import httpx
from fastapi import status

from .config import ConfigurationError, Settings
from .schemas.tools import ToolOutput

if TYPE_CHECKING:
    from .services.attachments import Attachment

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Wrap transport or API failures when communicating with the assistant API."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class FileUploadError(UpstreamError):
    """Raised when a document attachment cannot be uploaded."""

    def __init__(self, filename: str, status_code: int, detail: Any):
        super().__init__(status_code, detail)
        self.filename = filename

    def __str__(self) -> str:
        return f"Failed to upload {self.filename}: {self.detail}"


class UpstreamStream:
    """An open streaming response from the assistant API."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()

    async def __aenter__(self) -> "UpstreamStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class AssistantsClient:
    """Client for threads, messages, runs and files of the Assistants API."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _auth_headers(self) -> dict[str, str]:
        api_key = self._settings.openai_api_key
        if api_key is None or not api_key.get_secret_value():
            raise ConfigurationError("OpenAI API key is not configured")
        return {
            "Authorization": f"Bearer {api_key.get_secret_value()}",
            "OpenAI-Beta": "assistants=v2",
        }

    @property
    def _json_headers(self) -> dict[str, str]:
        headers = dict(self._auth_headers)
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json"
        return headers

    @property
    def _stream_headers(self) -> dict[str, str]:
        headers = dict(self._json_headers)
        headers["Accept"] = "text/event-stream"
        return headers

    @property
    def _base_url(self) -> str:
        """Return the API base URL without a trailing slash."""

        return str(self._settings.openai_base_url).rstrip("/")

    async def create_thread(self) -> str:
        """Create an empty conversation thread and return its id."""

        body = await self._post_json("/threads", {})
        thread_id = body.get("id")
        if not isinstance(thread_id, str) or not thread_id:
            raise UpstreamError(
                status.HTTP_502_BAD_GATEWAY, "Thread creation response missing id"
            )
        logger.info("Thread created: %s", thread_id)
        return thread_id

    async def append_message(
        self,
        thread_id: str,
        text: str,
        file_ids: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Append a user message, referencing uploaded documents for retrieval."""

        payload: dict[str, Any] = {"role": "user", "content": text}
        if file_ids:
            payload["attachments"] = [
                {"file_id": file_id, "tools": [{"type": "file_search"}]}
                for file_id in file_ids
            ]
        body = await self._post_json(f"/threads/{thread_id}/messages", payload)
        logger.info(
            "Message added to thread %s (%d attachment(s))", thread_id, len(file_ids)
        )
        return body

    async def start_run(self, thread_id: str, assistant_id: str) -> UpstreamStream:
        """Start a streaming run and return the raw event stream."""

        logger.info("Creating run on thread %s with assistant %s", thread_id, assistant_id)
        return await self._open_stream(
            f"/threads/{thread_id}/runs",
            {"assistant_id": assistant_id, "stream": True},
        )

    async def submit_tool_outputs(
        self,
        thread_id: str,
        run_id: str,
        outputs: Sequence[ToolOutput],
    ) -> UpstreamStream:
        """Submit a complete batch of tool outputs and stream the continuation."""

        payload = {
            "tool_outputs": [output.model_dump() for output in outputs],
            "stream": True,
        }
        return await self._open_stream(
            f"/threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            payload,
        )

    async def upload_file(self, attachment: "Attachment") -> str:
        """Upload one document for the retrieval tool and return its file id."""

        url = f"{self._base_url}/files"
        client = await self._get_http_client()
        try:
            response = await client.post(
                url,
                headers=self._auth_headers,
                data={"purpose": "assistants"},
                files={
                    "file": (attachment.filename, attachment.data, attachment.mime_type)
                },
            )
        except httpx.HTTPError as exc:
            raise FileUploadError(
                attachment.filename, status.HTTP_502_BAD_GATEWAY, str(exc)
            ) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise FileUploadError(attachment.filename, response.status_code, detail)

        try:
            file_id = response.json().get("id")
        except ValueError as exc:
            raise FileUploadError(
                attachment.filename, status.HTTP_502_BAD_GATEWAY, str(exc)
            ) from exc
        if not isinstance(file_id, str) or not file_id:
            raise FileUploadError(
                attachment.filename,
                status.HTTP_502_BAD_GATEWAY,
                "File upload response missing id",
            )
        logger.info("File uploaded successfully: %s -> %s", attachment.filename, file_id)
        return file_id

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_http_client()
        try:
            response = await client.post(
                f"{self._base_url}{path}",
                headers=self._json_headers,
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise UpstreamError(response.status_code, detail)

        try:
            body = response.json()
        except ValueError as exc:  # pragma: no cover - unexpected payload
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        if not isinstance(body, dict):
            raise UpstreamError(
                status.HTTP_502_BAD_GATEWAY, "Unexpected response payload"
            )
        return body

    async def _open_stream(self, path: str, payload: dict[str, Any]) -> UpstreamStream:
        client = await self._get_http_client()
        request = client.build_request(
            "POST",
            f"{self._base_url}{path}",
            headers=self._stream_headers,
            json=payload,
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise UpstreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            detail = self._extract_error_detail(body)
            raise UpstreamError(response.status_code, detail)

        return UpstreamStream(response)

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "The assistant API returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict) and isinstance(error.get("message"), str):
                return error["message"]
            return error or payload
        return payload


__all__ = [
    "AssistantsClient",
    "FileUploadError",
    "UpstreamError",
    "UpstreamStream",
]
