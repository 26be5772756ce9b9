"""Pydantic schemas for the dispute API."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketplace_escrow.domain.enums import (  # noqa: TC001
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    PartyRole,
    ResolutionOutcome,
)
from marketplace_escrow.domain.models import DisputeResolution

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class FileDisputeRequest(BaseModel):
    """Request body for filing a dispute against an order or a design request."""

    category: DisputeCategory
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(
        ...,
        min_length=10,
        max_length=5000,
        description="What went wrong, in the customer's words",
    )
    order_id: uuid.UUID | None = Field(
        default=None, description="Set for shipping disputes (accused: the shop)"
    )
    customization_request_id: uuid.UUID | None = Field(
        default=None, description="Set for design disputes (accused: the designer)"
    )
    evidence_urls: list[str] | None = Field(default=None, max_length=20)

    @model_validator(mode="after")
    def _exactly_one_target(self) -> FileDisputeRequest:
        if (self.order_id is None) == (self.customization_request_id is None):
            raise ValueError("Provide exactly one of order_id or customization_request_id")
        return self


class PartialRefundOfferRequest(BaseModel):
    """The accused party's counter-offer. Exactly one of amount or percentage."""

    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    percentage: Decimal | None = Field(default=None, gt=0, le=100)
    message: str | None = Field(default=None, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    """Admin's terminal decision."""

    outcome: ResolutionOutcome
    reason: str = Field(..., min_length=3, max_length=2000)
    partial_refund_amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    issue_strike: bool = False
    admin_notes: str | None = Field(default=None, max_length=5000)

    def to_resolution(self) -> DisputeResolution:
        return DisputeResolution(
            outcome=self.outcome,
            reason=self.reason,
            partial_refund_amount=self.partial_refund_amount,
            issue_strike=self.issue_strike,
            admin_notes=self.admin_notes,
        )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EligibilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    can_file: bool
    reason: str | None = None
    deadline: datetime | None = None


class DisputeResponse(BaseModel):
    """Response schema for a dispute."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    filed_by: uuid.UUID
    accused_party_id: uuid.UUID
    accused_role: PartyRole
    order_id: uuid.UUID | None
    customization_request_id: uuid.UUID | None
    escrow_request_id: uuid.UUID
    category: DisputeCategory
    title: str
    description: str
    evidence_urls: list[str] | None
    stage: DisputeStage
    status: DisputeStatus
    negotiation_deadline: datetime
    offer_amount: Decimal | None
    offer_percentage: Decimal | None
    offer_message: str | None
    offer_status: str | None
    resolution_outcome: ResolutionOutcome | None
    resolution_reason: str | None
    resolution_refund_amount: Decimal | None
    resolution_issue_strike: bool
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class EscalationResponse(BaseModel):
    escalated: list[uuid.UUID]
