"""Pydantic models for quote estimates."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Estimate numbers end up in file names.
ESTIMATE_NUMBER_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$"


class EstimateItem(BaseModel):
    """One row of a quote. ``amount`` is documented as ``units * cost`` but is
    taken as given."""

    description: str = Field(min_length=1)
    units: float = Field(gt=0)
    cost: float = Field(ge=0)
    amount: float = Field(ge=0)

    model_config = ConfigDict(extra="ignore")


class EstimateRequest(BaseModel):
    """Estimate data accepted by the PDF tool and the render endpoint."""

    to: str = Field(min_length=1)
    items: List[EstimateItem] = Field(min_length=1)
    email: Optional[str] = None
    client_name: Optional[str] = Field(default=None, alias="clientName")
    estimate_number: Optional[str] = Field(
        default=None,
        alias="estimateNumber",
        pattern=ESTIMATE_NUMBER_PATTERN,
    )
    job_name: Optional[str] = Field(default=None, alias="jobName")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def total(self) -> float:
        return float(sum(item.amount for item in self.items))


__all__ = ["ESTIMATE_NUMBER_PATTERN", "EstimateItem", "EstimateRequest"]
