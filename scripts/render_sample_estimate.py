#!/usr/bin/env python3
"""Render a sample estimate PDF, either via the running server or in-process.

Usage:
    python scripts/render_sample_estimate.py                 # POST to localhost:8000
    python scripts/render_sample_estimate.py --local         # render without a server
    python scripts/render_sample_estimate.py --server http://pi:8000 -o out.pdf
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

import httpx

SAMPLE_ESTIMATE = {
    "estimateNumber": "00031",
    "to": "Jane Smith\nABC Corporation\n789 Corporate Blvd\nCorporate City, CC 12345",
    "items": [
        {"description": "Consultation services", "units": 10, "cost": 540, "amount": 5400},
        {"description": "Installation work", "units": 5, "cost": 200, "amount": 1000},
        {"description": "Testing and validation", "units": 2, "cost": 300, "amount": 600},
    ],
    "email": "client@example.com",
}


async def _render_remote(server: str) -> bytes:
    async with httpx.AsyncClient(timeout=120.0) as client:
        resp = await client.post(f"{server.rstrip('/')}/api/generate-pdf", json=SAMPLE_ESTIMATE)
    if resp.status_code != 200:
        raise RuntimeError(f"API request failed: {resp.status_code}\n{resp.text}")
    return resp.content


async def _render_local() -> bytes:
    from estimate_assistant.config import get_settings
    from estimate_assistant.schemas.estimates import EstimateRequest
    from estimate_assistant.tools import build_estimate_renderer

    renderer = build_estimate_renderer(get_settings())
    estimate = EstimateRequest.model_validate(SAMPLE_ESTIMATE)
    return await renderer.render_pdf(estimate)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--server", default="http://localhost:8000")
    parser.add_argument("--local", action="store_true", help="Render in-process")
    parser.add_argument("--output", "-o", type=Path, default=None)
    args = parser.parse_args()

    total = sum(item["amount"] for item in SAMPLE_ESTIMATE["items"])
    print(f"Rendering estimate {SAMPLE_ESTIMATE['estimateNumber']} (total ${total:.2f})")
    try:
        pdf = asyncio.run(_render_local() if args.local else _render_remote(args.server))
    except (RuntimeError, httpx.HTTPError) as exc:
        print(f"Render failed: {exc}", file=sys.stderr)
        return 1

    stamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    output = args.output or Path(f"sample-estimate-{stamp}.pdf")
    output.write_bytes(pdf)
    print(f"Saved {len(pdf)} bytes to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
