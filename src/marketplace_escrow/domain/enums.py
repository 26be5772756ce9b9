"""Domain enumerations for the marketplace escrow engine.

Every lifecycle field is a closed set. They are framework-agnostic (no
SQLAlchemy, no FastAPI imports) and are validated again at the API boundary
by the pydantic schemas.
"""

import enum


class EscrowStatus(enum.StrEnum):
    """Escrow state of a customization request's funds.

    HELD is the only state in which funds sit unclaimed. RELEASED and
    REFUNDED are terminal. Transitions are guarded by EscrowStateMachine.
    """

    PENDING = "pending"
    HELD = "held"
    FROZEN = "frozen"
    RELEASED = "released"
    REFUNDED = "refunded"


class PaymentStatus(enum.StrEnum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    FULLY_PAID = "fully_paid"


class PaymentType(enum.StrEnum):
    UPFRONT = "upfront"
    HALF_PAYMENT = "half_payment"


class RequestStatus(enum.StrEnum):
    """Lifecycle of a customization request as seen by the escrow core."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_CUSTOMER_APPROVAL = "awaiting_customer_approval"
    APPROVED = "approved"
    READY_FOR_PRODUCTION = "ready_for_production"
    IN_PRODUCTION = "in_production"
    READY_FOR_PICKUP = "ready_for_pickup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Request states in which the design counts as approved for the designer leg.
DESIGN_APPROVED_STATUSES = frozenset(
    {
        RequestStatus.APPROVED,
        RequestStatus.READY_FOR_PRODUCTION,
        RequestStatus.IN_PRODUCTION,
        RequestStatus.READY_FOR_PICKUP,
        RequestStatus.COMPLETED,
    }
)


class ProductionStatus(enum.StrEnum):
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    QUALITY_CHECK = "quality_check"
    COMPLETED = "completed"


class OrderStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderPaymentStatus(enum.StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class InvoiceStatus(enum.StrEnum):
    """Invoice states reported by the payment gateway."""

    PENDING = "PENDING"
    PAID = "PAID"
    SETTLED = "SETTLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def is_paid(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.SETTLED)


class DisputeStage(enum.StrEnum):
    """Position of a dispute in its lifecycle (guarded by DisputeStateMachine)."""

    FILED = "filed"
    PARTIAL_REFUND_OFFERED = "partial_refund_offered"
    ADMIN_REVIEW = "admin_review"
    ACCEPTED = "accepted"
    PARTIAL_REFUND_ACCEPTED = "partial_refund_accepted"
    ADMIN_RESOLVED = "admin_resolved"
    CANCELLED = "cancelled"


class DisputeStatus(enum.StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class DisputeCategory(enum.StrEnum):
    # Design phase: customer vs designer
    DESIGN_GHOSTING = "design_ghosting"
    DESIGN_QUALITY_MISMATCH = "design_quality_mismatch"
    DESIGN_COPYRIGHT_INFRINGEMENT = "design_copyright_infringement"
    # Shipping phase: customer vs shop
    SHIPPING_NOT_RECEIVED = "shipping_not_received"
    SHIPPING_DAMAGED = "shipping_damaged"
    SHIPPING_WRONG_ITEM = "shipping_wrong_item"
    SHIPPING_PRINT_QUALITY = "shipping_print_quality"
    SHIPPING_LATE_DELIVERY = "shipping_late_delivery"
    SHIPPING_INCOMPLETE_ORDER = "shipping_incomplete_order"


class ResolutionOutcome(enum.StrEnum):
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"
    RELEASED = "released"
    DISMISSED = "dismissed"


class OfferStatus(enum.StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PartyRole(enum.StrEnum):
    """Payout leg / profile kind a party acts as."""

    DESIGNER = "designer"
    SHOP = "shop"


class EventType(enum.StrEnum):
    """Domain events written to the audit trail and published on the event bus.

    Every escrow, production, dispute and reconciliation transition produces
    exactly one of these.
    """

    # Escrow ledger
    FUNDS_HELD = "escrow.funds.held"
    PAYMENT_RECORDED = "escrow.payment.recorded"
    DESIGNER_PAID = "escrow.designer.paid"
    SHOP_PAID = "escrow.shop.paid"
    ESCROW_FROZEN = "escrow.frozen"
    ESCROW_UNFROZEN = "escrow.unfrozen"
    ESCROW_REFUNDED = "escrow.refunded"
    FUNDING_MISMATCH = "escrow.funding.mismatch"

    # Production
    PRODUCTION_CONFIRMED = "customization.production.confirmed"
    PRODUCTION_STARTED = "customization.production.started"
    PRODUCTION_UPDATED = "customization.production.updated"
    PRODUCTION_COMPLETED = "customization.production.completed"

    # Disputes
    DISPUTE_FILED = "dispute.filed"
    DISPUTE_ACCEPTED = "dispute.accepted"
    PARTIAL_REFUND_OFFERED = "dispute.partial_refund_offered"
    PARTIAL_REFUND_ACCEPTED = "dispute.partial_refund_accepted"
    PARTIAL_REFUND_REJECTED = "dispute.partial_refund_rejected"
    DISPUTE_ESCALATED = "dispute.escalated"
    DISPUTE_RESOLVED = "dispute.resolved"
    DISPUTE_CANCELLED = "dispute.cancelled"

    # Strikes
    STRIKE_ISSUED = "strike.issued"
    ACCOUNT_SUSPENDED = "account.suspended"

    # Orders / reconciliation
    ORDER_PAYMENT_CONFIRMED = "order.payment.confirmed"
    ORDER_PAYMENT_FAILED = "order.payment.failed"
    ORDER_PAYMENT_REFUNDED = "order.payment.refunded"
    ORDER_STATUS_UPDATED = "order.status.updated"
    DESIGNER_EARNINGS_RECORDED = "designer.earnings.recorded"
