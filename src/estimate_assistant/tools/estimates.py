"""The ``generate_pdf_estimate`` tool: argument validation and dispatch."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from pydantic import ValidationError

from ..schemas.estimates import EstimateRequest
from ..schemas.tools import ToolResult
from .executor import ToolExecutionError

logger = logging.getLogger(__name__)

GENERATE_PDF_ESTIMATE = "generate_pdf_estimate"

# Function definition registered on the assistant.
ESTIMATE_TOOL_DEFINITION: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": GENERATE_PDF_ESTIMATE,
        "description": "Generate a PDF quote for the client from the agreed line items.",
        "parameters": {
            "type": "object",
            "properties": {
                "to": {
                    "type": "string",
                    "description": "Client name, company and address, one per line.",
                },
                "items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "description": {"type": "string"},
                            "units": {"type": "number"},
                            "cost": {"type": "number"},
                            "amount": {"type": "number"},
                        },
                        "required": ["description", "units", "cost", "amount"],
                    },
                },
                "email": {"type": "string"},
                "clientName": {"type": "string"},
            },
            "required": ["to", "items"],
        },
    },
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_estimate_arguments(params: Mapping[str, Any]) -> str | None:
    """Return the first schema violation, or ``None`` when the estimate is valid."""

    to = params.get("to")
    if not isinstance(to, str) or not to.strip():
        return 'Missing or invalid "to" field (client information)'

    items = params.get("items")
    if not isinstance(items, list) or not items:
        return 'Missing or invalid "items" field (must be a non-empty array)'

    for index, item in enumerate(items, start=1):
        if not isinstance(item, Mapping):
            return f"Item {index}: Must be an object"
        description = item.get("description")
        if not isinstance(description, str) or not description.strip():
            return f"Item {index}: Missing or invalid description"
        units = item.get("units")
        if not _is_number(units) or units <= 0:
            return f"Item {index}: Invalid units (must be a positive number)"
        cost = item.get("cost")
        if not _is_number(cost) or cost < 0:
            return f"Item {index}: Invalid cost (must be a non-negative number)"
        amount = item.get("amount")
        if not _is_number(amount) or amount < 0:
            return f"Item {index}: Invalid amount (must be a non-negative number)"

    email = params.get("email")
    if email is not None and not isinstance(email, str):
        return "Invalid email field (must be a string)"

    client_name = params.get("clientName")
    if client_name is not None and not isinstance(client_name, str):
        return "Invalid clientName field (must be a string)"

    return None


def _describe_errors(exc: ValidationError) -> str:
    parts = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors(include_url=False)
    ]
    return "Invalid estimate: " + "; ".join(parts)


class EstimateDispatcher(Protocol):
    async def dispatch(self, estimate: EstimateRequest) -> ToolResult:
        ...


class GeneratePdfEstimateTool:
    """Validate estimate arguments and hand them to the configured dispatcher."""

    name = GENERATE_PDF_ESTIMATE

    def __init__(self, dispatcher: EstimateDispatcher) -> None:
        self._dispatcher = dispatcher

    async def __call__(self, arguments: dict[str, Any]) -> ToolResult:
        violation = validate_estimate_arguments(arguments)
        if violation is not None:
            raise ToolExecutionError(violation)

        try:
            estimate = EstimateRequest.model_validate(arguments)
        except ValidationError as exc:
            raise ToolExecutionError(_describe_errors(exc)) from exc
        logger.info(
            "Generating PDF estimate for %d item(s), total %.2f",
            len(estimate.items),
            estimate.total,
        )
        return await self._dispatcher.dispatch(estimate)


__all__ = [
    "ESTIMATE_TOOL_DEFINITION",
    "EstimateDispatcher",
    "GENERATE_PDF_ESTIMATE",
    "GeneratePdfEstimateTool",
    "validate_estimate_arguments",
]
