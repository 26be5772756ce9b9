"""Pydantic schemas for the production tracking API."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.domain.enums import ProductionStatus  # noqa: TC001


class ConfirmProductionRequest(BaseModel):
    estimated_completion_date: datetime | None = None
    notes: str | None = Field(default=None, max_length=5000)


class StartProductionRequest(BaseModel):
    materials: list[str] | None = None


class UpdateProductionRequest(BaseModel):
    """Progress update. ``status`` may move forward to quality_check only."""

    status: ProductionStatus | None = None
    notes: str | None = Field(default=None, max_length=5000)
    materials: list[str] | None = None
    estimated_completion_date: datetime | None = None
    quality_check_notes: str | None = Field(default=None, max_length=5000)


class CompleteProductionRequest(BaseModel):
    quality_check_passed: bool
    quality_check_notes: str | None = Field(default=None, max_length=5000)


class ProductionResponse(BaseModel):
    """Production sub-state of a customization request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: str
    printing_shop_id: uuid.UUID | None
    production_status: ProductionStatus | None
    quality_check_passed: bool | None
    quality_check_notes: str | None
    production_notes: str | None
    materials: list[str] | None
    estimated_completion_date: datetime | None
    production_confirmed_at: datetime | None
    production_started_at: datetime | None
    production_completed_at: datetime | None


class ProductionStatsResponse(BaseModel):
    shop_id: uuid.UUID
    counts: dict[str, int] = Field(description="Requests per production status")
