"""Relay estimates to a third-party automation webhook for PDF delivery."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from ..schemas.estimates import EstimateRequest
from ..schemas.tools import ToolResult

logger = logging.getLogger(__name__)


class PdfWebhookRelay:
    """Post estimate data to the automation webhook that renders and mails the PDF."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._http_client = http_client

    def build_payload(self, estimate: EstimateRequest) -> dict[str, object]:
        return {
            "to": estimate.to,
            "items": [item.model_dump() for item in estimate.items],
            "email": estimate.email,
            "clientName": estimate.client_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": "openai-assistant",
        }

    async def dispatch(self, estimate: EstimateRequest) -> ToolResult:
        payload = self.build_payload(estimate)
        logger.info("Sending estimate to PDF webhook %s", self._url)
        try:
            resp = await self._post(payload)
        except httpx.HTTPError as exc:
            logger.error("PDF webhook request failed: %s", exc)
            return ToolResult.failure(
                f"Webhook request failed: {exc}",
                message="Failed to generate PDF estimate",
            )

        if resp.status_code >= 400:
            logger.error("PDF webhook error: %s %s", resp.status_code, resp.text)
            return ToolResult.failure(
                f"Webhook request failed: {resp.status_code} - {resp.text}",
                message="Failed to generate PDF estimate",
            )

        logger.debug("PDF webhook response: %s", resp.text)
        if estimate.email:
            delivery = f"PDF will be sent to {estimate.email}"
        else:
            delivery = "PDF generation in progress."
        return ToolResult(
            success=True,
            message=f"PDF estimate generation initiated successfully. {delivery}",
        )

    async def _post(self, payload: dict[str, object]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(self._url, json=payload)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout, connect=5.0)
        ) as client:
            return await client.post(self._url, json=payload)


__all__ = ["PdfWebhookRelay"]
