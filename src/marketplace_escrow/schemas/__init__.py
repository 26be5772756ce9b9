"""Pydantic API schemas."""

from marketplace_escrow.schemas.disputes import (
    DisputeResponse,
    EligibilityResponse,
    EscalationResponse,
    FileDisputeRequest,
    PartialRefundOfferRequest,
    ResolveDisputeRequest,
)
from marketplace_escrow.schemas.escrow import (
    EscrowEventResponse,
    FreezeRequest,
    HealthResponse,
    HoldFundsRequest,
    LegPayoutResponse,
    PaymentStateResponse,
    RecordPaymentRequest,
    RefundRequest,
    ReleaseEligibilityResponse,
)
from marketplace_escrow.schemas.payments import (
    InvoiceWebhookPayload,
    OrderResponse,
    PaymentVerificationResponse,
    UpdateOrderStatusRequest,
    WebhookAck,
)
from marketplace_escrow.schemas.production import (
    CompleteProductionRequest,
    ConfirmProductionRequest,
    ProductionResponse,
    ProductionStatsResponse,
    StartProductionRequest,
    UpdateProductionRequest,
)

__all__ = [
    "CompleteProductionRequest",
    "ConfirmProductionRequest",
    "DisputeResponse",
    "EligibilityResponse",
    "EscalationResponse",
    "EscrowEventResponse",
    "FileDisputeRequest",
    "FreezeRequest",
    "HealthResponse",
    "HoldFundsRequest",
    "InvoiceWebhookPayload",
    "LegPayoutResponse",
    "OrderResponse",
    "PartialRefundOfferRequest",
    "PaymentStateResponse",
    "PaymentVerificationResponse",
    "ProductionResponse",
    "ProductionStatsResponse",
    "RecordPaymentRequest",
    "RefundRequest",
    "ReleaseEligibilityResponse",
    "ResolveDisputeRequest",
    "StartProductionRequest",
    "UpdateOrderStatusRequest",
    "UpdateProductionRequest",
    "WebhookAck",
]
