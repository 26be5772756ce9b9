"""Production Tracker: physical fulfillment by the selected printing shop.

confirmed -> in_progress -> quality_check -> completed, guarded by
ProductionStateMachine. Completion gates, but never triggers, the shop payout:
that happens when the order ships (see PaymentReconciler.update_order_status).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from marketplace_escrow.domain.enums import (
    EventType,
    PaymentStatus,
    PaymentType,
    ProductionStatus,
    RequestStatus,
)
from marketplace_escrow.domain.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace_escrow.domain.state_machine import ProductionStateMachine, fire_transition
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from marketplace_escrow.infrastructure.database.orm_models import CustomizationRequest
    from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)

ENTITY = "customization_request"

# update_production may only move forward to these targets.
_UPDATE_EVENTS = {
    ProductionStatus.IN_PROGRESS: "start",
    ProductionStatus.QUALITY_CHECK: "submit_for_quality_check",
}


class ProductionTracker:
    """Tracks the shop's production of an approved customization request."""

    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow

    async def confirm_production(
        self,
        request_id: uuid.UUID,
        shop_owner_id: uuid.UUID,
        estimated_completion_date: datetime | None = None,
        notes: str | None = None,
    ) -> CustomizationRequest:
        """Shop accepts the job. Requires an approved design and enough payment."""
        async with self._uow:
            request = await self._load_for_shop(request_id, shop_owner_id)
            if request.production_status is not None:
                raise InvalidStateError(request.production_status, "confirm production")
            if request.status != RequestStatus.APPROVED:
                raise InvalidStateError(
                    request.status, "confirm production", "request must be approved first"
                )
            self._check_payment_gate(request)

            now = datetime.now(UTC)
            await self._write(
                request,
                None,
                {
                    "production_status": ProductionStatus.CONFIRMED.value,
                    "production_confirmed_at": now,
                    "estimated_completion_date": estimated_completion_date,
                    "production_notes": notes,
                    "status": RequestStatus.IN_PRODUCTION.value,
                },
                "confirm production",
            )
            await self._uow.record(
                ENTITY, request.id, EventType.PRODUCTION_CONFIRMED, None,
                ProductionStatus.CONFIRMED, str(shop_owner_id),
                printing_shop_id=request.printing_shop_id,
            )
            logger.info("production.confirmed", request_id=request.id)
            return request

    async def start_production(
        self,
        request_id: uuid.UUID,
        shop_owner_id: uuid.UUID,
        materials: list[str] | None = None,
    ) -> CustomizationRequest:
        async with self._uow:
            request = await self._load_for_shop(request_id, shop_owner_id)
            old_status = request.production_status
            new_status = self._fire(old_status, "start")

            values: dict = {
                "production_status": new_status,
                "production_started_at": datetime.now(UTC),
            }
            if materials is not None:
                values["materials"] = materials
            await self._write(request, old_status, values, "start production")
            await self._uow.record(
                ENTITY, request.id, EventType.PRODUCTION_STARTED, old_status, new_status,
                str(shop_owner_id),
            )
            logger.info("production.started", request_id=request.id)
            return request

    async def update_production(
        self,
        request_id: uuid.UUID,
        shop_owner_id: uuid.UUID,
        status: ProductionStatus | None = None,
        notes: str | None = None,
        materials: list[str] | None = None,
        estimated_completion_date: datetime | None = None,
        quality_check_notes: str | None = None,
    ) -> CustomizationRequest:
        """Record progress. Can move to quality_check, never to completed."""
        if status == ProductionStatus.COMPLETED:
            raise ValidationError("Use complete_production to finish production")

        async with self._uow:
            request = await self._load_for_shop(request_id, shop_owner_id)
            old_status = request.production_status
            if old_status is None:
                raise InvalidStateError("none", "update production", "production not confirmed")

            new_status = old_status
            if status is not None and status != old_status:
                new_status = self._fire(old_status, _UPDATE_EVENTS.get(status, status.value))

            values: dict = {"production_status": new_status}
            if notes is not None:
                values["production_notes"] = notes
            if materials is not None:
                values["materials"] = materials
            if estimated_completion_date is not None:
                values["estimated_completion_date"] = estimated_completion_date
            if quality_check_notes is not None:
                values["quality_check_notes"] = quality_check_notes

            await self._write(request, old_status, values, "update production")
            await self._uow.record(
                ENTITY, request.id, EventType.PRODUCTION_UPDATED, old_status, new_status,
                str(shop_owner_id),
            )
            logger.info("production.updated", request_id=request.id, production_status=new_status)
            return request

    async def complete_production(
        self,
        request_id: uuid.UUID,
        shop_owner_id: uuid.UUID,
        quality_check_passed: bool,
        quality_check_notes: str | None = None,
    ) -> CustomizationRequest:
        """Finish production. A failed quality check is rejected, never stored as completed."""
        if not quality_check_passed:
            raise ValidationError("Quality check must pass before completing production")

        async with self._uow:
            request = await self._load_for_shop(request_id, shop_owner_id)
            old_status = request.production_status
            new_status = self._fire(old_status, "complete")

            await self._write(
                request,
                old_status,
                {
                    "production_status": new_status,
                    "quality_check_passed": True,
                    "quality_check_notes": quality_check_notes,
                    "production_completed_at": datetime.now(UTC),
                    "status": RequestStatus.READY_FOR_PICKUP.value,
                },
                "complete production",
            )
            await self._uow.record(
                ENTITY, request.id, EventType.PRODUCTION_COMPLETED, old_status, new_status,
                str(shop_owner_id),
            )
            logger.info("production.completed", request_id=request.id)
            return request

    async def get_production_stats(self, shop_id: uuid.UUID) -> dict[str, int]:
        async with self._uow:
            counts = await self._uow.requests.count_by_production_status(shop_id)
        return {status.value: counts.get(status.value, 0) for status in ProductionStatus}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_for_shop(
        self, request_id: uuid.UUID, shop_owner_id: uuid.UUID
    ) -> CustomizationRequest:
        request = await self._uow.requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("CustomizationRequest", request_id)
        if request.printing_shop_id is None:
            raise ValidationError("No printing shop selected for this request")
        if request.shop_owner_id != shop_owner_id:
            raise ForbiddenError("You do not own this printing shop")
        return request

    @staticmethod
    def _check_payment_gate(request: CustomizationRequest) -> None:
        if request.payment_type == PaymentType.UPFRONT:
            if request.payment_status != PaymentStatus.FULLY_PAID:
                raise ValidationError("Full payment is required before production")
        elif request.payment_type == PaymentType.HALF_PAYMENT:
            if request.paid_amount * 2 < request.total_amount:
                raise ValidationError("At least 50% payment is required before production")
        else:
            raise ValidationError("No payment has been received for this request")

    @staticmethod
    def _fire(current: str | None, event: str) -> str:
        if current is None:
            raise InvalidStateError("none", event, "production not confirmed")
        try:
            return fire_transition(ProductionStateMachine, current, event)
        except ValueError as err:
            raise InvalidStateError(current, event) from err

    async def _write(
        self,
        request: CustomizationRequest,
        expected_status: str | None,
        values: dict,
        attempted: str,
    ) -> None:
        won = await self._uow.requests.update_production(request, expected_status, values)
        if not won:
            raise InvalidStateError(
                str(request.production_status), attempted, "production changed concurrently"
            )
