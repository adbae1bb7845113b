"""Render estimates to HTML with Jinja2 and print them to PDF with Playwright."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, PackageLoader, select_autoescape
from markupsafe import Markup, escape

from ..schemas.estimates import EstimateRequest
from ..schemas.tools import ToolResult

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATE_NUMBER = "00001"
DEFAULT_TEMPLATE_NAME = "estimate.html.j2"

_PDF_MARGIN = {"top": "0.5in", "right": "0.5in", "bottom": "0.5in", "left": "0.5in"}
_unsafe_filename_chars = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class CompanyProfile:
    name: str
    tagline: str
    address: str


def _nl2br(value: Any) -> Markup:
    return Markup("<br>\n").join(escape(str(value or "")).split("\n"))


def _money(value: Any) -> str:
    return f"${float(value or 0):.2f}"


def _quantity(value: Any) -> str:
    return f"{float(value or 0):g}"


def _format_date(value: date) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def safe_estimate_number(value: str | None) -> str:
    """Reduce an estimate number to characters usable in a single file name."""

    safe = _unsafe_filename_chars.sub("-", value or "").strip("-.")
    return safe or DEFAULT_ESTIMATE_NUMBER


class EstimateRenderer:
    """Fill the quote template and print it through headless Chromium."""

    def __init__(
        self,
        company: CompanyProfile,
        *,
        template_path: Path | None = None,
    ) -> None:
        self._company = company
        if template_path is not None:
            loader = FileSystemLoader(str(template_path.parent))
            self._template_name = template_path.name
        else:
            loader = PackageLoader("estimate_assistant", "templates")
            self._template_name = DEFAULT_TEMPLATE_NAME
        self._env = Environment(
            loader=loader,
            autoescape=select_autoescape(["html", "j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["nl2br"] = _nl2br
        self._env.filters["money"] = _money
        self._env.filters["quantity"] = _quantity

    def render_html(
        self,
        estimate: EstimateRequest,
        *,
        estimate_number: str | None = None,
        estimate_date: date | None = None,
    ) -> str:
        template = self._env.get_template(self._template_name)
        return template.render(
            company=self._company,
            estimate=estimate,
            estimate_number=estimate_number
            or estimate.estimate_number
            or DEFAULT_ESTIMATE_NUMBER,
            estimate_date=_format_date(estimate_date or date.today()),
            job_name=estimate.job_name or "Consultation services",
            items=estimate.items,
            total=estimate.total,
        )

    async def render_pdf(
        self,
        estimate: EstimateRequest,
        *,
        estimate_number: str | None = None,
    ) -> bytes:
        html = self.render_html(estimate, estimate_number=estimate_number)
        started = time.monotonic()
        pdf = await html_to_pdf(html)
        logger.info(
            "PDF generated in %.0fms (%d bytes, total $%.2f)",
            (time.monotonic() - started) * 1000,
            len(pdf),
            estimate.total,
        )
        return pdf


async def html_to_pdf(html: str) -> bytes:
    """Print an HTML document to an A4 PDF using headless Chromium."""

    try:
        from playwright.async_api import async_playwright
    except ImportError as exc:
        raise RuntimeError(
            "Playwright not installed. Run: pip install playwright && playwright install chromium"
        ) from exc

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(
            headless=True,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        try:
            page = await browser.new_page()
            await page.set_content(html, wait_until="networkidle")
            return await page.pdf(
                format="A4",
                print_background=True,
                margin=_PDF_MARGIN,
            )
        finally:
            await browser.close()


class LocalEstimateDispatcher:
    """Render estimates in-process and store the PDFs under ``output_dir``."""

    def __init__(self, renderer: EstimateRenderer, output_dir: Path) -> None:
        self._renderer = renderer
        self._output_dir = output_dir

    async def dispatch(self, estimate: EstimateRequest) -> ToolResult:
        number = estimate.estimate_number or DEFAULT_ESTIMATE_NUMBER
        pdf = await self._renderer.render_pdf(estimate, estimate_number=number)

        stamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        filename = f"estimate-{safe_estimate_number(number)}-{stamp}.pdf"
        path = self._output_dir / filename
        await asyncio.to_thread(self._write, path, pdf)
        logger.info("Estimate %s saved to %s", number, path)

        message = f"PDF estimate {path.name} generated ({len(pdf)} bytes)."
        if estimate.email:
            message += f" Delivery to {estimate.email} must be arranged separately."
        return ToolResult(success=True, message=message)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


__all__ = [
    "CompanyProfile",
    "DEFAULT_ESTIMATE_NUMBER",
    "EstimateRenderer",
    "LocalEstimateDispatcher",
    "html_to_pdf",
    "safe_estimate_number",
]
