"""Assistant tools and the executor that dispatches them."""

from __future__ import annotations

from ..config import PROJECT_ROOT, Settings
from ..services.estimate_renderer import (
    CompanyProfile,
    EstimateRenderer,
    LocalEstimateDispatcher,
)
from ..services.pdf_webhook import PdfWebhookRelay
from .estimates import (
    ESTIMATE_TOOL_DEFINITION,
    GENERATE_PDF_ESTIMATE,
    EstimateDispatcher,
    GeneratePdfEstimateTool,
    validate_estimate_arguments,
)
from .executor import ToolExecution, ToolExecutionError, ToolExecutor, ToolHandler


def build_estimate_renderer(settings: Settings) -> EstimateRenderer:
    company = CompanyProfile(
        name=settings.company_name,
        tagline=settings.company_tagline,
        address=settings.company_address,
    )
    return EstimateRenderer(company, template_path=settings.estimate_template_path)


def build_estimate_dispatcher(
    settings: Settings, renderer: EstimateRenderer
) -> EstimateDispatcher:
    """Prefer the automation webhook when configured, else render locally."""

    if settings.pdf_webhook_url is not None:
        return PdfWebhookRelay(
            str(settings.pdf_webhook_url), timeout=settings.pdf_webhook_timeout
        )
    output_dir = settings.estimate_output_dir
    if not output_dir.is_absolute():
        output_dir = PROJECT_ROOT / output_dir
    return LocalEstimateDispatcher(renderer, output_dir)


def build_tool_executor(settings: Settings, renderer: EstimateRenderer) -> ToolExecutor:
    estimate_tool = GeneratePdfEstimateTool(
        build_estimate_dispatcher(settings, renderer)
    )
    return ToolExecutor({GENERATE_PDF_ESTIMATE: estimate_tool})


__all__ = [
    "ESTIMATE_TOOL_DEFINITION",
    "GENERATE_PDF_ESTIMATE",
    "GeneratePdfEstimateTool",
    "ToolExecution",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolHandler",
    "build_estimate_dispatcher",
    "build_estimate_renderer",
    "build_tool_executor",
    "validate_estimate_arguments",
]
