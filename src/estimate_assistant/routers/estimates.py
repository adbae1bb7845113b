"""Direct PDF rendering endpoint for estimates."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..schemas.estimates import EstimateRequest
from ..services.estimate_renderer import (
    DEFAULT_ESTIMATE_NUMBER,
    EstimateRenderer,
    safe_estimate_number,
)
from ..tools.estimates import validate_estimate_arguments

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["estimates"])


def get_estimate_renderer(request: Request) -> EstimateRenderer:
    renderer = getattr(request.app.state, "estimate_renderer", None)
    if renderer is None:
        raise HTTPException(status_code=500, detail="Estimate renderer unavailable")
    return renderer


def _pdf_filename(estimate_number: str) -> str:
    return f"estimate-{safe_estimate_number(estimate_number)}.pdf"


@router.post("/generate-pdf", response_model=None)
async def generate_pdf(
    request: Request,
    renderer: EstimateRenderer = Depends(get_estimate_renderer),
) -> Response:
    """Render an estimate synchronously and return the PDF bytes."""

    try:
        data = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON"}
        )
    if not isinstance(data, dict):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON"}
        )

    if not data.get("to") or not data.get("items"):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required fields: to and items are required"},
        )
    violation = validate_estimate_arguments(data)
    if violation is not None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": violation}
        )
    try:
        estimate = EstimateRequest.model_validate(data)
    except ValidationError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Invalid estimate",
                "details": exc.errors(include_url=False, include_context=False),
            },
        )

    number = estimate.estimate_number or DEFAULT_ESTIMATE_NUMBER
    try:
        pdf = await renderer.render_pdf(estimate, estimate_number=number)
    except Exception as exc:
        logger.exception("PDF generation failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to generate PDF", "details": str(exc)},
        )

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{_pdf_filename(number)}"',
        },
    )


__all__ = ["router"]
