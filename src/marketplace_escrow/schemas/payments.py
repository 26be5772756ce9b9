"""Pydantic schemas for gateway webhooks, payment verification and orders."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from marketplace_escrow.domain.enums import (  # noqa: TC001
    InvoiceStatus,
    OrderPaymentStatus,
    OrderStatus,
)
from marketplace_escrow.domain.models import WebhookEvent


class InvoiceWebhookPayload(BaseModel):
    """Invoice callback body as posted by the gateway.

    Only the fields the reconciler needs are declared; the rest are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, description="Gateway invoice id")
    external_id: str | None = Field(default=None, examples=["order_<uuid>"])
    status: InvoiceStatus
    amount: Decimal | None = None
    paid_amount: Decimal | None = None

    def to_event(self) -> WebhookEvent:
        return WebhookEvent(
            invoice_id=self.id,
            status=self.status,
            external_id=self.external_id,
            amount=self.paid_amount if self.paid_amount is not None else self.amount,
        )


class WebhookAck(BaseModel):
    received: bool = True
    updated: bool


class PaymentVerificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_status: InvoiceStatus
    order_status: OrderStatus
    payment_status: OrderPaymentStatus
    was_updated: bool


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class OrderResponse(BaseModel):
    """Response schema for a marketplace order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    business_owner_id: uuid.UUID | None
    designer_id: uuid.UUID | None
    customization_request_id: uuid.UUID | None
    status: OrderStatus
    payment_status: OrderPaymentStatus
    payment_reference: str | None
    total_amount: Decimal
    status_history: list[dict]
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime
