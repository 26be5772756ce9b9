"""SQLAlchemy 2.0 ORM models for the marketplace escrow engine.

Six tables:
    1. customization_requests: the request being paid for; carries pricing, the
       payment (escrow) sub-state and the production sub-state.
    2. orders: marketplace orders paid through the gateway.
    3. disputes: customer complaints against a designer or shop.
    4. strikes: append-only penalties against a profile.
    5. designer_earnings: one row per paid design-only order.
    6. escrow_events: append-only audit log of every transition.

Design decisions:
    - UUIDs as primary keys, generic ``Uuid`` so the schema also runs on SQLite.
    - Numeric(12, 2) for peso amounts; Python code only ever sees Decimal.
    - CHECK constraints on every lifecycle column, built from the StrEnums.
    - ``ledger_version`` is bumped by every payment-state write; conditional
      UPDATEs guard on it so concurrent writers can't both win.
    - escrow_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace_escrow.domain.enums import (
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    EscrowStatus,
    OfferStatus,
    OrderPaymentStatus,
    OrderStatus,
    PartyRole,
    PaymentStatus,
    PaymentType,
    ProductionStatus,
    RequestStatus,
    ResolutionOutcome,
)
from marketplace_escrow.domain.models import LegPayout

Money = Numeric(12, 2, asdecimal=True)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always comes back in UTC.

    SQLite drops tzinfo on the way in; the result processor puts it back.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


def _one_of(column: str, enum_cls: type[enum.StrEnum], name: str) -> CheckConstraint:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. customization_requests
# ---------------------------------------------------------------------------
class CustomizationRequest(Base):
    """A custom-design job: one designer leg, optionally one shop leg."""

    __tablename__ = "customization_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=RequestStatus.PENDING.value
    )

    # --- Participants ---
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    designer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    printing_shop_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    shop_owner_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Business owner account of printing_shop_id"
    )

    # --- Pricing ---
    design_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    product_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    printing_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # --- Design milestones ---
    assigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    design_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Payment details (written only by the escrow ledger) ---
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    payment_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    escrow_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EscrowStatus.PENDING.value,
        comment="Guarded by EscrowStateMachine",
    )
    payment_reference: Mapped[str | None] = mapped_column(
        String(128), nullable=True, comment="Gateway invoice id the funds arrived on"
    )
    designer_payout_amount: Mapped[Decimal | None] = mapped_column(
        Money, nullable=True, comment="Planned net designer payout, set once on hold"
    )
    escrow_held_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    designer_paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    designer_released_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0"), comment="Gross drawn from escrow"
    )
    designer_paid_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0"), comment="Net after commission"
    )
    designer_refunded_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )

    shop_paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    shop_released_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    shop_paid_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    shop_refunded_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )

    ledger_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Production details (written only by the production tracker) ---
    production_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quality_check_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    quality_check_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    production_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    materials: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)
    estimated_completion_date: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    production_confirmed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    production_started_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    production_completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        _one_of("status", RequestStatus, "ck_request_valid_status"),
        _one_of("escrow_status", EscrowStatus, "ck_request_valid_escrow_status"),
        _one_of("payment_status", PaymentStatus, "ck_request_valid_payment_status"),
        CheckConstraint(
            "payment_type IS NULL OR payment_type IN ("
            + ", ".join(f"'{t.value}'" for t in PaymentType)
            + ")",
            name="ck_request_valid_payment_type",
        ),
        CheckConstraint(
            "production_status IS NULL OR production_status IN ("
            + ", ".join(f"'{s.value}'" for s in ProductionStatus)
            + ")",
            name="ck_request_valid_production_status",
        ),
        CheckConstraint(
            "design_fee >= 0 AND product_cost >= 0 AND printing_cost >= 0",
            name="ck_request_non_negative_pricing",
        ),
        CheckConstraint(
            "designer_released_amount + shop_released_amount "
            "+ designer_refunded_amount + shop_refunded_amount <= paid_amount",
            name="ck_request_no_overdraw",
        ),
        Index("idx_request_customer", "customer_id"),
        Index("idx_request_designer", "designer_id"),
        Index("idx_request_shop", "printing_shop_id"),
        Index("idx_request_escrow_status", "escrow_status"),
    )

    # --- Derived ledger views ---

    @property
    def pricing_total(self) -> Decimal:
        return self.design_fee + self.product_cost + self.printing_cost

    @property
    def designer_leg_amount(self) -> Decimal:
        """Escrowed amount owed to the designer before commission."""
        if self.pricing_total == 0:
            return self.total_amount
        return self.design_fee

    @property
    def shop_leg_amount(self) -> Decimal:
        if self.pricing_total == 0:
            return Decimal("0")
        return self.product_cost + self.printing_cost

    @property
    def refunded_amount(self) -> Decimal:
        return self.designer_refunded_amount + self.shop_refunded_amount

    @property
    def released_amount(self) -> Decimal:
        return self.designer_released_amount + self.shop_released_amount

    @property
    def held_amount(self) -> Decimal:
        """Funds received and neither paid out nor refunded."""
        return self.paid_amount - self.released_amount - self.refunded_amount

    @property
    def designer_leg(self) -> LegPayout:
        return LegPayout(
            paid_at=self.designer_paid_at,
            gross=self.designer_released_amount,
            net=self.designer_paid_amount,
        )

    @property
    def shop_leg(self) -> LegPayout:
        return LegPayout(
            paid_at=self.shop_paid_at,
            gross=self.shop_released_amount,
            net=self.shop_paid_amount,
        )

    def __repr__(self) -> str:
        return (
            f"<CustomizationRequest id={self.id} status={self.status} "
            f"escrow={self.escrow_status} paid={self.paid_amount}>"
        )


# ---------------------------------------------------------------------------
# 2. orders
# ---------------------------------------------------------------------------
class Order(Base):
    """A marketplace order paid through a gateway invoice."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    business_owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    designer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    customization_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Escrowed request this order pays for"
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderPaymentStatus.PENDING.value
    )
    payment_reference: Mapped[str | None] = mapped_column(
        String(128), nullable=True, comment="Gateway invoice id"
    )
    payment_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    product_subtotal: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    design_subtotal: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    items: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)
    status_history: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)

    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        _one_of("status", OrderStatus, "ck_order_valid_status"),
        _one_of("payment_status", OrderPaymentStatus, "ck_order_valid_payment_status"),
        CheckConstraint("total_amount >= 0", name="ck_order_non_negative_total"),
        Index("idx_order_payment_reference", "payment_reference"),
        Index("idx_order_customer", "customer_id"),
        Index("idx_order_request", "customization_request_id"),
    )

    @property
    def is_design_only(self) -> bool:
        return self.product_subtotal == 0 and self.design_subtotal > 0

    def status_reached_at(self, *statuses: str) -> datetime | None:
        """Return when the order first entered any of ``statuses``."""
        for entry in self.status_history or []:
            if entry.get("status") in statuses:
                return datetime.fromisoformat(entry["at"])
        return None

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} status={self.status} "
            f"payment={self.payment_status} total={self.total_amount}>"
        )


# ---------------------------------------------------------------------------
# 3. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A customer's complaint; it commands the escrow ledger but owns no funds."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filed_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    accused_party_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    accused_role: Mapped[str] = mapped_column(String(20), nullable=False)

    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    customization_request_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    escrow_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Request whose escrow this dispute froze"
    )

    category: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_urls: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)

    stage: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=DisputeStage.FILED.value,
        comment="Guarded by DisputeStateMachine",
    )
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=DisputeStatus.OPEN.value
    )
    negotiation_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # --- Partial refund offer ---
    offer_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    offer_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    offer_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    offer_status: Mapped[str | None] = mapped_column(String(10), nullable=True)
    offer_made_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    offer_responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Resolution ---
    resolution_outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolution_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_refund_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    resolution_issue_strike: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    resolution_admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "(order_id IS NULL) <> (customization_request_id IS NULL)",
            name="ck_dispute_exactly_one_target",
        ),
        _one_of("stage", DisputeStage, "ck_dispute_valid_stage"),
        _one_of("status", DisputeStatus, "ck_dispute_valid_status"),
        _one_of("category", DisputeCategory, "ck_dispute_valid_category"),
        _one_of("accused_role", PartyRole, "ck_dispute_valid_accused_role"),
        CheckConstraint(
            "offer_status IS NULL OR offer_status IN ("
            + ", ".join(f"'{s.value}'" for s in OfferStatus)
            + ")",
            name="ck_dispute_valid_offer_status",
        ),
        CheckConstraint(
            "resolution_outcome IS NULL OR resolution_outcome IN ("
            + ", ".join(f"'{o.value}'" for o in ResolutionOutcome)
            + ")",
            name="ck_dispute_valid_outcome",
        ),
        Index("idx_dispute_escrow_request", "escrow_request_id", "status"),
        Index("idx_dispute_stage", "stage"),
        Index("idx_dispute_filed_by", "filed_by"),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} stage={self.stage} status={self.status}>"


# ---------------------------------------------------------------------------
# 4. strikes (append-only)
# ---------------------------------------------------------------------------
class Strike(Base):
    __tablename__ = "strikes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    party_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    party_role: Mapped[str] = mapped_column(String(20), nullable=False)
    dispute_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    issued_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        _one_of("party_role", PartyRole, "ck_strike_valid_role"),
        Index("idx_strike_party", "party_id", "party_role"),
    )


# ---------------------------------------------------------------------------
# 5. designer_earnings
# ---------------------------------------------------------------------------
class DesignerEarning(Base):
    __tablename__ = "designer_earnings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    designer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    gross_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("idx_earning_designer", "designer_id"),)


# ---------------------------------------------------------------------------
# 6. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEvent(Base):
    """Immutable audit record of a single transition.

    This table is APPEND-ONLY. Rows are written in the same transaction as
    the state change they describe.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="customization_request, order or dispute"
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    event_type: Mapped[str] = mapped_column(String(48), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default="SYSTEM")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONDocument, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_event_entity", "entity_type", "entity_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEvent id={self.id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )
