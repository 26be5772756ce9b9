"""Payment gateway webhook, manual payment verification and order status routes.

Routes:
    POST   /api/v1/payments/webhook                       Gateway invoice callback
    POST   /api/v1/payments/orders/{order_id}/verify      Pull invoice status now
    PATCH  /api/v1/payments/orders/{order_id}/status      Shop moves the order forward
"""

from __future__ import annotations

import hmac
import uuid  # noqa: TC003 - path parameters are resolved at runtime

from fastapi import APIRouter, Depends, Header

from marketplace_escrow.api.deps import Actor, get_actor, get_app_settings, get_reconciler
from marketplace_escrow.config import Settings  # noqa: TC001
from marketplace_escrow.domain.exceptions import ForbiddenError
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.payments import (
    InvoiceWebhookPayload,
    OrderResponse,
    PaymentVerificationResponse,
    UpdateOrderStatusRequest,
    WebhookAck,
)
from marketplace_escrow.services.reconciler import PaymentReconciler  # noqa: TC001

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Receive an invoice status callback from the gateway",
)
async def invoice_webhook(
    body: InvoiceWebhookPayload,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    settings: Settings = Depends(get_app_settings),
    x_callback_token: str | None = Header(default=None),
) -> WebhookAck:
    """Delivered at-least-once; replays are acknowledged with updated=false."""
    expected = settings.xendit_webhook_token
    if expected and not hmac.compare_digest(x_callback_token or "", expected):
        logger.warning("webhook.invalid_token", invoice_id=body.id)
        raise ForbiddenError("Invalid webhook token")

    updated = await reconciler.handle_webhook(body.to_event())
    return WebhookAck(updated=updated)


@router.post(
    "/orders/{order_id}/verify",
    response_model=PaymentVerificationResponse,
    summary="Verify an order's payment against the gateway",
)
async def verify_payment(
    order_id: uuid.UUID,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    actor: Actor = Depends(get_actor),
) -> PaymentVerificationResponse:
    """Catches up an order whose webhook was lost. 503 when the gateway is down."""
    result = await reconciler.verify_payment(order_id, actor.id, actor.role)
    return PaymentVerificationResponse.model_validate(result)


@router.patch(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    summary="Update an order's fulfillment status",
)
async def update_order_status(
    order_id: uuid.UUID,
    body: UpdateOrderStatusRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    actor: Actor = Depends(get_actor),
) -> OrderResponse:
    """Shipping an order whose production is complete releases the shop payout."""
    order = await reconciler.update_order_status(order_id, body.status, actor.id, actor.role)
    return OrderResponse.model_validate(order)
