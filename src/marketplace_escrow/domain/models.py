"""Value objects returned by the escrow core.

Frozen dataclasses with no framework imports; services build them from ORM
rows and the API layer serializes them through pydantic schemas.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - dataclass field annotations
from dataclasses import dataclass, field, replace
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from marketplace_escrow.domain.enums import (
    EscrowStatus,
    InvoiceStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
    PaymentType,
    ResolutionOutcome,
)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class LegPayout:
    """Payout state of one leg (designer or shop).

    ``paid_at is None`` is the NotPaid variant; otherwise the leg is
    Paid(at, gross, net). ``gross`` is what the leg drew from escrow, ``net``
    is what reached the payee after commission.
    """

    paid_at: datetime | None = None
    gross: Decimal = ZERO
    net: Decimal = ZERO

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None


@dataclass(frozen=True)
class PaymentState:
    """Snapshot of a request's payment sub-state after a ledger operation.

    Attributes:
        already_processed: True when the call was an idempotent replay
            (the guard was already satisfied, nothing was written).
        settlement: Where the money went. ``held`` is what still sits in
            escrow; released + refunded + held always equals paid.
    """

    request_id: uuid.UUID
    escrow_status: EscrowStatus
    payment_status: PaymentStatus
    payment_type: PaymentType | None
    total_amount: Decimal
    paid_amount: Decimal
    refunded_amount: Decimal
    designer_payout_amount: Decimal | None
    designer_leg: LegPayout
    shop_leg: LegPayout
    already_processed: bool = False
    settlement: dict = field(default_factory=dict)

    def replayed(self) -> PaymentState:
        """Return the same snapshot flagged as an idempotent no-op."""
        return replace(self, already_processed=True)


@dataclass(frozen=True)
class DisputeResolution:
    """Admin decision on a dispute."""

    outcome: ResolutionOutcome
    reason: str
    partial_refund_amount: Decimal | None = None
    issue_strike: bool = False
    admin_notes: str | None = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "partial_refund_amount": (
                str(self.partial_refund_amount)
                if self.partial_refund_amount is not None
                else None
            ),
            "issue_strike": self.issue_strike,
            "admin_notes": self.admin_notes,
        }


@dataclass(frozen=True)
class EligibilityResult:
    can_file: bool
    reason: str | None = None
    deadline: datetime | None = None


@dataclass(frozen=True)
class Invoice:
    """Invoice as reported by the payment gateway."""

    id: str
    status: InvoiceStatus
    amount: Decimal
    external_id: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """Gateway callback payload; delivered at-least-once, unordered."""

    invoice_id: str
    status: InvoiceStatus
    external_id: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class PaymentVerification:
    """Result of the manual verify-payment pull."""

    invoice_status: InvoiceStatus
    order_status: OrderStatus
    payment_status: OrderPaymentStatus
    was_updated: bool
