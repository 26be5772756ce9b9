"""Pydantic schemas for the escrow ledger API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models and domain value objects to keep clean
boundaries between the API, service and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.domain.enums import (  # noqa: TC001
    EscrowStatus,
    PartyRole,
    PaymentStatus,
    PaymentType,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class HoldFundsRequest(BaseModel):
    """Request body for recording the first payment into escrow."""

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount received, in pesos",
        examples=["1500.00"],
    )
    payment_type: PaymentType = Field(
        ...,
        description="upfront (full amount) or half_payment (at least 50%)",
    )
    payment_reference: str | None = Field(
        default=None,
        max_length=128,
        description="Gateway invoice id the funds arrived on",
    )


class RecordPaymentRequest(BaseModel):
    """Request body for a later installment on held funds."""

    amount: Decimal = Field(..., gt=0, decimal_places=2, examples=["750.00"])


class RefundRequest(BaseModel):
    """Request body for an admin refund to the customer."""

    amount: Decimal = Field(..., gt=0, decimal_places=2)
    reason: str = Field(..., min_length=3, max_length=500)
    leg: PartyRole | None = Field(
        default=None,
        description="Leg the refund is charged against first (shop first when omitted)",
    )


class FreezeRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class LegPayoutResponse(BaseModel):
    """Payout state of one leg."""

    model_config = ConfigDict(from_attributes=True)

    is_paid: bool
    paid_at: datetime | None
    gross: Decimal
    net: Decimal


class PaymentStateResponse(BaseModel):
    """Payment sub-state of a customization request."""

    model_config = ConfigDict(from_attributes=True)

    request_id: uuid.UUID
    escrow_status: EscrowStatus
    payment_status: PaymentStatus
    payment_type: PaymentType | None
    total_amount: Decimal
    paid_amount: Decimal
    refunded_amount: Decimal
    designer_payout_amount: Decimal | None
    designer_leg: LegPayoutResponse
    shop_leg: LegPayoutResponse
    already_processed: bool = Field(
        default=False,
        description="True when the call was an idempotent replay and nothing changed",
    )
    settlement: dict = Field(default_factory=dict)


class ReleaseEligibilityResponse(BaseModel):
    """Whether each payout leg could be released right now."""

    request_id: uuid.UUID
    designer: bool
    shop: bool


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str | None
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
