"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the unit of work's responsibility).

Every write that another process could race is a conditional UPDATE:
the guard columns go in the WHERE clause and the returned bool tells the
caller whether its write won. The ORM instance is refreshed afterwards so
the caller always sees the persisted state, whether it won or lost.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update

from marketplace_escrow.domain.enums import (
    DisputeStatus,
    EscrowStatus,
    OrderPaymentStatus,
)
from marketplace_escrow.infrastructure.database.orm_models import (
    CustomizationRequest,
    DesignerEarning,
    Dispute,
    EscrowEvent,
    Order,
    Strike,
    utcnow,
)

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql.elements import ColumnElement

    from marketplace_escrow.domain.enums import EventType, PartyRole


class CustomizationRequestRepository:
    """Data access for customization requests (payment + production sub-state)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, request: CustomizationRequest) -> CustomizationRequest:
        self._session.add(request)
        await self._session.flush()
        return request

    async def get_by_id(self, request_id: uuid.UUID) -> CustomizationRequest | None:
        """Fetch a request, always re-reading the persisted row."""
        result = await self._session.execute(
            select(CustomizationRequest)
            .where(CustomizationRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_by_production_status(self, shop_id: uuid.UUID) -> dict[str, int]:
        result = await self._session.execute(
            select(CustomizationRequest.production_status, func.count())
            .where(
                CustomizationRequest.printing_shop_id == shop_id,
                CustomizationRequest.production_status.is_not(None),
            )
            .group_by(CustomizationRequest.production_status)
        )
        return {status: count for status, count in result.all()}

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------

    async def update_ledger(
        self,
        request: CustomizationRequest,
        values: dict[str, Any],
        *guards: ColumnElement[bool],
    ) -> bool:
        """Write payment-state ``values`` iff nobody touched the ledger since we read it.

        Guards on ``ledger_version`` plus any extra ``guards``; bumps the
        version on success.
        """
        await self._session.flush()
        result = await self._session.execute(
            update(CustomizationRequest)
            .where(
                CustomizationRequest.id == request.id,
                CustomizationRequest.ledger_version == request.ledger_version,
                *guards,
            )
            .values(
                **values,
                ledger_version=CustomizationRequest.ledger_version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(request)
        return result.rowcount == 1

    async def claim_designer_payout(
        self,
        request: CustomizationRequest,
        gross: Decimal,
        net: Decimal,
        new_escrow_status: EscrowStatus,
        paid_at: datetime,
    ) -> bool:
        """Set designer_paid_at only if it is still unset and escrow is held."""
        return await self.update_ledger(
            request,
            {
                "designer_paid_at": paid_at,
                "designer_released_amount": gross,
                "designer_paid_amount": net,
                "escrow_status": new_escrow_status.value,
            },
            CustomizationRequest.designer_paid_at.is_(None),
            CustomizationRequest.escrow_status == EscrowStatus.HELD.value,
        )

    async def claim_shop_payout(
        self,
        request: CustomizationRequest,
        gross: Decimal,
        net: Decimal,
        new_escrow_status: EscrowStatus,
        paid_at: datetime,
    ) -> bool:
        """Set shop_paid_at only if it is still unset and the designer leg is paid."""
        return await self.update_ledger(
            request,
            {
                "shop_paid_at": paid_at,
                "shop_released_amount": gross,
                "shop_paid_amount": net,
                "escrow_status": new_escrow_status.value,
            },
            CustomizationRequest.shop_paid_at.is_(None),
            CustomizationRequest.designer_paid_at.is_not(None),
            CustomizationRequest.escrow_status == EscrowStatus.HELD.value,
        )

    async def update_production(
        self,
        request: CustomizationRequest,
        expected_status: str | None,
        values: dict[str, Any],
    ) -> bool:
        """Write production fields iff production_status is still ``expected_status``."""
        await self._session.flush()
        guard = (
            CustomizationRequest.production_status.is_(None)
            if expected_status is None
            else CustomizationRequest.production_status == expected_status
        )
        result = await self._session.execute(
            update(CustomizationRequest)
            .where(CustomizationRequest.id == request.id, guard)
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(request)
        return result.rowcount == 1


class OrderRepository:
    """Data access for marketplace orders."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, order: Order) -> Order:
        self._session.add(order)
        await self._session.flush()
        return order

    async def get_by_id(self, order_id: uuid.UUID) -> Order | None:
        result = await self._session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_payment_reference(self, reference: str) -> Order | None:
        result = await self._session.execute(
            select(Order)
            .where(Order.payment_reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_by_request(self, request_id: uuid.UUID) -> Order | None:
        """Fetch the newest order paying for a customization request."""
        result = await self._session.execute(
            select(Order)
            .where(Order.customization_request_id == request_id)
            .order_by(Order.created_at.desc())
        )
        return result.scalars().first()

    async def transition(
        self,
        order: Order,
        values: dict[str, Any],
        *guards: ColumnElement[bool],
    ) -> bool:
        """Conditionally update an order; ``guards`` decide who wins a race."""
        await self._session.flush()
        result = await self._session.execute(
            update(Order)
            .where(Order.id == order.id, *guards)
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(order)
        return result.rowcount == 1

    async def mark_payment(
        self,
        order: Order,
        new_payment_status: OrderPaymentStatus,
        values: dict[str, Any],
        from_status: OrderPaymentStatus = OrderPaymentStatus.PENDING,
    ) -> bool:
        """Move payment_status from ``from_status``; False if someone beat us to it."""
        return await self.transition(
            order,
            {"payment_status": new_payment_status.value, **values},
            Order.payment_status == from_status.value,
        )


class DisputeRepository:
    """Data access for disputes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: Dispute) -> Dispute:
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(self, dispute_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(
            select(Dispute)
            .where(Dispute.id == dispute_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_open_for_escrow(self, request_id: uuid.UUID) -> Dispute | None:
        """Fetch the open dispute (if any) holding a request's escrow frozen."""
        result = await self._session.execute(
            select(Dispute).where(
                Dispute.escrow_request_id == request_id,
                Dispute.status == DisputeStatus.OPEN.value,
            )
        )
        return result.scalars().first()

    async def get_overdue(self, stage: str, now: datetime) -> list[Dispute]:
        result = await self._session.execute(
            select(Dispute)
            .where(Dispute.stage == stage, Dispute.negotiation_deadline < now)
            .order_by(Dispute.negotiation_deadline.asc())
        )
        return list(result.scalars().all())

    async def transition(
        self, dispute: Dispute, from_stage: str, values: dict[str, Any]
    ) -> bool:
        """Move a dispute out of ``from_stage``; False if its stage already changed."""
        await self._session.flush()
        result = await self._session.execute(
            update(Dispute)
            .where(Dispute.id == dispute.id, Dispute.stage == from_stage)
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(dispute)
        return result.rowcount == 1


class StrikeRepository:
    """Data access for the append-only strike log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, strike: Strike) -> Strike:
        self._session.add(strike)
        await self._session.flush()
        return strike

    async def count_for(self, party_id: uuid.UUID, role: PartyRole) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(Strike)
            .where(Strike.party_id == party_id, Strike.party_role == role.value)
        )
        return int(result.scalar_one())


class EarningsRepository:
    """Data access for designer earnings (one row per order)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_order(self, order_id: uuid.UUID) -> DesignerEarning | None:
        result = await self._session.execute(
            select(DesignerEarning).where(DesignerEarning.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def create(self, earning: DesignerEarning) -> DesignerEarning:
        self._session.add(earning)
        await self._session.flush()
        return earning


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None,
        new_status: str | None,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> EscrowEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = EscrowEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type.value,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_for_entity(self, entity_type: str, entity_id: uuid.UUID) -> list[EscrowEvent]:
        """Fetch all events for an entity in chronological order."""
        result = await self._session.execute(
            select(EscrowEvent)
            .where(
                EscrowEvent.entity_type == entity_type,
                EscrowEvent.entity_id == entity_id,
            )
            .order_by(EscrowEvent.created_at.asc())
        )
        return list(result.scalars().all())
