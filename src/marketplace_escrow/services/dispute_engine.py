"""Dispute Resolution Engine: customer complaints against a designer or shop.

A dispute never owns money. It commands the EscrowLedger (freeze, refund,
unfreeze, release) inside the same unit of work as its own stage change, so
"dispute filed" and "escrow frozen" commit together or not at all.

Every terminal stage (accepted, partial_refund_accepted, admin_resolved,
cancelled) ends with an unfreeze, which is a no-op when a refund already
settled the escrow, so no dispute can leave funds frozen.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from marketplace_escrow.config import get_settings
from marketplace_escrow.domain.commission import to_money
from marketplace_escrow.domain.enums import (
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    EscrowStatus,
    EventType,
    OfferStatus,
    OrderStatus,
    PartyRole,
    RequestStatus,
    ResolutionOutcome,
)
from marketplace_escrow.domain.exceptions import (
    ForbiddenError,
    InvalidStateError,
    MarketplaceError,
    NothingToDisputeError,
    NotFoundError,
    ValidationError,
)
from marketplace_escrow.domain.models import EligibilityResult
from marketplace_escrow.domain.state_machine import DisputeStateMachine, fire_transition
from marketplace_escrow.infrastructure.database.orm_models import Dispute
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from marketplace_escrow.config import Settings
    from marketplace_escrow.domain.models import DisputeResolution
    from marketplace_escrow.infrastructure.database.orm_models import (
        CustomizationRequest,
        Order,
    )
    from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork
    from marketplace_escrow.services.escrow_ledger import EscrowLedger
    from marketplace_escrow.services.strike_service import StrikeService

logger = get_logger(__name__)

ENTITY = "dispute"

DISPUTABLE_ORDER_STATUSES = (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value)
DISPUTABLE_REQUEST_STATUSES = frozenset(
    {
        RequestStatus.IN_PROGRESS,
        RequestStatus.AWAITING_CUSTOMER_APPROVAL,
        RequestStatus.APPROVED,
        RequestStatus.IN_PRODUCTION,
        RequestStatus.READY_FOR_PICKUP,
    }
)
DESIGN_CATEGORIES = frozenset(c for c in DisputeCategory if c.value.startswith("design_"))


class DisputeEngine:
    """Files, negotiates and resolves disputes over escrowed funds."""

    def __init__(
        self,
        uow: UnitOfWork,
        ledger: EscrowLedger,
        strikes: StrikeService,
        settings: Settings | None = None,
    ) -> None:
        self._uow = uow
        self._ledger = ledger
        self._strikes = strikes
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    async def can_file_dispute(
        self,
        filer_id: uuid.UUID,
        order_id: uuid.UUID | None = None,
        customization_request_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> EligibilityResult:
        now = now or datetime.now(UTC)
        try:
            async with self._uow:
                order, request = await self._load_target(order_id, customization_request_id)
                deadline = await self._check_eligibility(filer_id, order, request, now)
        except MarketplaceError as exc:
            return EligibilityResult(can_file=False, reason=exc.message)
        return EligibilityResult(can_file=True, deadline=deadline)

    async def file_dispute(
        self,
        filer_id: uuid.UUID,
        category: DisputeCategory,
        title: str,
        description: str,
        order_id: uuid.UUID | None = None,
        customization_request_id: uuid.UUID | None = None,
        evidence_urls: list[str] | None = None,
        now: datetime | None = None,
    ) -> Dispute:
        """Freeze the escrow and open a dispute in one transaction.

        Raises:
            ValidationError: Not exactly one target, wrong category, or too late.
            ForbiddenError: The filer is not the customer.
            NothingToDisputeError: No held escrow backs the target.
        """
        now = now or datetime.now(UTC)
        is_design_category = category in DESIGN_CATEGORIES
        if customization_request_id is not None and not is_design_category:
            raise ValidationError(f"Category '{category}' does not apply to a design request")
        if order_id is not None and is_design_category:
            raise ValidationError(f"Category '{category}' does not apply to an order")

        async with self._uow:
            order, request = await self._load_target(order_id, customization_request_id)
            await self._check_eligibility(filer_id, order, request, now)

            if order is not None:
                accused_id, accused_role = order.business_owner_id, PartyRole.SHOP
                escrow_request = (
                    await self._uow.requests.get_by_id(order.customization_request_id)
                    if order.customization_request_id
                    else None
                )
                if escrow_request is None:
                    raise NothingToDisputeError(order.id, "none")
            else:
                accused_id, accused_role = request.designer_id, PartyRole.DESIGNER
                escrow_request = request

            if accused_id is None:
                raise ValidationError(f"No {accused_role} is assigned to dispute against")
            if escrow_request.escrow_status != EscrowStatus.HELD:
                raise NothingToDisputeError(escrow_request.id, escrow_request.escrow_status)

            # Freeze before the dispute row exists: no window where funds are claimable.
            await self._ledger.freeze_escrow(
                escrow_request.id, actor=str(filer_id), reason="dispute filed"
            )

            dispute = await self._uow.disputes.create(
                Dispute(
                    filed_by=filer_id,
                    accused_party_id=accused_id,
                    accused_role=accused_role.value,
                    order_id=order_id,
                    customization_request_id=customization_request_id,
                    escrow_request_id=escrow_request.id,
                    category=category.value,
                    title=title,
                    description=description,
                    evidence_urls=evidence_urls,
                    stage=DisputeStage.FILED.value,
                    status=DisputeStatus.OPEN.value,
                    negotiation_deadline=now
                    + timedelta(hours=self._settings.dispute_negotiation_deadline_hours),
                )
            )
            await self._uow.record(
                ENTITY,
                dispute.id,
                EventType.DISPUTE_FILED,
                None,
                dispute.stage,
                str(filer_id),
                accused_party_id=accused_id,
                accused_role=accused_role,
                category=category,
                escrow_request_id=escrow_request.id,
            )
            logger.info(
                "dispute.filed",
                dispute_id=dispute.id,
                escrow_request_id=escrow_request.id,
                category=category,
            )
            return dispute

    # ------------------------------------------------------------------
    # Accused responses
    # ------------------------------------------------------------------

    async def accept_dispute(self, dispute_id: uuid.UUID, accused_id: uuid.UUID) -> Dispute:
        """Accused concedes: refund everything still owed on the escrow."""
        async with self._uow:
            dispute = await self._load(dispute_id)
            self._require_accused(dispute, accused_id)
            now = datetime.now(UTC)
            old_stage = await self._move(
                dispute,
                "accept",
                status=DisputeStatus.CLOSED.value,
                resolution_outcome=ResolutionOutcome.REFUNDED.value,
                resolution_reason="Accepted by accused party",
                closed_at=now,
            )

            await self._refund_all(dispute, reason=f"Dispute {dispute.id} accepted")
            await self._ledger.unfreeze_escrow(
                dispute.escrow_request_id, actor=str(accused_id), reason="dispute accepted"
            )

            await self._uow.record(
                ENTITY, dispute.id, EventType.DISPUTE_ACCEPTED, old_stage, dispute.stage,
                str(accused_id),
            )
            logger.info("dispute.accepted", dispute_id=dispute.id)
            return dispute

    async def offer_partial_refund(
        self,
        dispute_id: uuid.UUID,
        accused_id: uuid.UUID,
        amount: Decimal | None = None,
        percentage: Decimal | None = None,
        message: str | None = None,
    ) -> Dispute:
        """Record an offer; no money moves until the filer accepts it."""
        if (amount is None) == (percentage is None):
            raise ValidationError("Provide exactly one of amount or percentage")

        async with self._uow:
            dispute = await self._load(dispute_id)
            self._require_accused(dispute, accused_id)
            request = await self._escrow_request(dispute)
            refundable = self._ledger.refundable_balance(request)

            if percentage is not None:
                if not Decimal("0") < percentage <= Decimal("100"):
                    raise ValidationError("Percentage must be in (0, 100]")
                amount = to_money(refundable * percentage / Decimal("100"))
            else:
                amount = to_money(amount)
            if amount <= 0:
                raise ValidationError("Offer amount must be positive")
            if amount > refundable:
                raise ValidationError(
                    f"Offer {amount} exceeds the refundable balance {refundable}"
                )

            old_stage = await self._move(
                dispute,
                "offer_partial_refund",
                offer_amount=amount,
                offer_percentage=percentage,
                offer_message=message,
                offer_status=OfferStatus.PENDING.value,
                offer_made_at=datetime.now(UTC),
                offer_responded_at=None,
            )
            await self._uow.record(
                ENTITY, dispute.id, EventType.PARTIAL_REFUND_OFFERED, old_stage, dispute.stage,
                str(accused_id), amount=amount, percentage=percentage,
            )
            logger.info("dispute.partial_refund_offered", dispute_id=dispute.id, amount=amount)
            return dispute

    # ------------------------------------------------------------------
    # Filer responses
    # ------------------------------------------------------------------

    async def accept_partial_refund(self, dispute_id: uuid.UUID, filer_id: uuid.UUID) -> Dispute:
        """Refund the offered amount; the rest goes out through the normal payout path."""
        async with self._uow:
            dispute = await self._load(dispute_id)
            self._require_filer(dispute, filer_id)
            self._require_pending_offer(dispute)
            now = datetime.now(UTC)
            amount = dispute.offer_amount

            old_stage = await self._move(
                dispute,
                "accept_offer",
                offer_status=OfferStatus.ACCEPTED.value,
                offer_responded_at=now,
                status=DisputeStatus.CLOSED.value,
                resolution_outcome=ResolutionOutcome.PARTIAL_REFUND.value,
                resolution_reason="Partial refund accepted by filer",
                resolution_refund_amount=amount,
                closed_at=now,
            )

            await self._ledger.refund_escrow(
                dispute.escrow_request_id,
                amount,
                reason=f"Dispute {dispute.id} partial refund",
                leg=PartyRole(dispute.accused_role),
                actor=str(filer_id),
            )
            await self._ledger.unfreeze_escrow(
                dispute.escrow_request_id, actor=str(filer_id), reason="partial refund accepted"
            )
            await self._release_remainder(dispute, actor=str(filer_id))

            await self._uow.record(
                ENTITY, dispute.id, EventType.PARTIAL_REFUND_ACCEPTED, old_stage, dispute.stage,
                str(filer_id), amount=amount,
            )
            logger.info("dispute.partial_refund_accepted", dispute_id=dispute.id, amount=amount)
            return dispute

    async def reject_partial_refund(self, dispute_id: uuid.UUID, filer_id: uuid.UUID) -> Dispute:
        """Back to ``filed``; escrow stays frozen and the deadline keeps running."""
        async with self._uow:
            dispute = await self._load(dispute_id)
            self._require_filer(dispute, filer_id)
            self._require_pending_offer(dispute)

            old_stage = await self._move(
                dispute,
                "reject_offer",
                offer_status=OfferStatus.REJECTED.value,
                offer_responded_at=datetime.now(UTC),
            )
            await self._uow.record(
                ENTITY, dispute.id, EventType.PARTIAL_REFUND_REJECTED, old_stage, dispute.stage,
                str(filer_id), amount=dispute.offer_amount,
            )
            logger.info("dispute.partial_refund_rejected", dispute_id=dispute.id)
            return dispute

    async def cancel_dispute(self, dispute_id: uuid.UUID, filer_id: uuid.UUID) -> Dispute:
        """Withdraw a dispute before the accused has responded."""
        async with self._uow:
            dispute = await self._load(dispute_id)
            self._require_filer(dispute, filer_id)
            if dispute.offer_made_at is not None:
                raise InvalidStateError(dispute.stage, "cancel", "the accused party already responded")

            old_stage = await self._move(
                dispute,
                "cancel",
                status=DisputeStatus.CLOSED.value,
                closed_at=datetime.now(UTC),
            )
            await self._ledger.unfreeze_escrow(
                dispute.escrow_request_id, actor=str(filer_id), reason="dispute cancelled"
            )
            await self._uow.record(
                ENTITY, dispute.id, EventType.DISPUTE_CANCELLED, old_stage, dispute.stage,
                str(filer_id),
            )
            logger.info("dispute.cancelled", dispute_id=dispute.id)
            return dispute

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def resolve_dispute(
        self,
        dispute_id: uuid.UUID,
        resolution: DisputeResolution,
        admin_id: uuid.UUID,
    ) -> Dispute:
        """Terminal admin decision; always unfreezes the escrow."""
        outcome = resolution.outcome
        if outcome == ResolutionOutcome.PARTIAL_REFUND and not resolution.partial_refund_amount:
            raise ValidationError("Partial refund amount is required")
        if resolution.issue_strike and outcome in (
            ResolutionOutcome.RELEASED,
            ResolutionOutcome.DISMISSED,
        ):
            raise ValidationError("A strike can only be issued against a losing party")

        async with self._uow:
            dispute = await self._load(dispute_id)
            now = datetime.now(UTC)
            actor = str(admin_id)
            old_stage = await self._move(
                dispute,
                "admin_resolve",
                status=DisputeStatus.CLOSED.value,
                resolution_outcome=outcome.value,
                resolution_reason=resolution.reason,
                resolution_refund_amount=resolution.partial_refund_amount,
                resolution_issue_strike=resolution.issue_strike,
                resolution_admin_notes=resolution.admin_notes,
                resolved_by=admin_id,
                resolved_at=now,
                closed_at=now,
            )
            if dispute.offer_status == OfferStatus.PENDING:
                dispute.offer_status = OfferStatus.REJECTED.value
                dispute.offer_responded_at = now

            if outcome == ResolutionOutcome.REFUNDED:
                await self._refund_all(dispute, reason=resolution.reason, actor=actor)
            elif outcome == ResolutionOutcome.PARTIAL_REFUND:
                await self._ledger.refund_escrow(
                    dispute.escrow_request_id,
                    resolution.partial_refund_amount,
                    reason=resolution.reason,
                    leg=PartyRole(dispute.accused_role),
                    actor=actor,
                )

            await self._ledger.unfreeze_escrow(
                dispute.escrow_request_id, actor=actor, reason=f"dispute {outcome}"
            )
            if outcome in (ResolutionOutcome.PARTIAL_REFUND, ResolutionOutcome.RELEASED):
                await self._release_remainder(dispute, actor=actor)

            if resolution.issue_strike:
                await self._strikes.issue_strike(
                    dispute.accused_party_id,
                    PartyRole(dispute.accused_role),
                    dispute.id,
                    resolution.reason,
                    issued_by=admin_id,
                )

            await self._uow.record(
                ENTITY, dispute.id, EventType.DISPUTE_RESOLVED, old_stage, dispute.stage, actor,
                **resolution.to_dict(),
            )
            logger.info("dispute.resolved", dispute_id=dispute.id, outcome=outcome)
            return dispute

    async def escalate_overdue_disputes(self, now: datetime | None = None) -> list[Dispute]:
        """Move ``filed`` disputes past their negotiation deadline to admin review."""
        now = now or datetime.now(UTC)
        escalated: list[Dispute] = []
        async with self._uow:
            for dispute in await self._uow.disputes.get_overdue(DisputeStage.FILED.value, now):
                try:
                    old_stage = await self._move(dispute, "escalate")
                except InvalidStateError:
                    logger.info("dispute.escalation_skipped", dispute_id=dispute.id)
                    continue
                await self._uow.record(
                    ENTITY, dispute.id, EventType.DISPUTE_ESCALATED, old_stage, dispute.stage,
                    reason="Negotiation deadline expired",
                )
                escalated.append(dispute)
        if escalated:
            logger.info("dispute.escalated", count=len(escalated))
        return escalated

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        async with self._uow:
            return await self._load(dispute_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self._uow.disputes.get_by_id(dispute_id)
        if dispute is None:
            raise NotFoundError("Dispute", dispute_id)
        return dispute

    async def _escrow_request(self, dispute: Dispute) -> CustomizationRequest:
        request = await self._uow.requests.get_by_id(dispute.escrow_request_id)
        if request is None:
            raise NotFoundError("CustomizationRequest", dispute.escrow_request_id)
        return request

    async def _load_target(
        self, order_id: uuid.UUID | None, request_id: uuid.UUID | None
    ) -> tuple[Order | None, CustomizationRequest | None]:
        if (order_id is None) == (request_id is None):
            raise ValidationError("Exactly one of order_id or customization_request_id is required")
        if order_id is not None:
            order = await self._uow.orders.get_by_id(order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            return order, None
        request = await self._uow.requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("CustomizationRequest", request_id)
        return None, request

    async def _check_eligibility(
        self,
        filer_id: uuid.UUID,
        order: Order | None,
        request: CustomizationRequest | None,
        now: datetime,
    ) -> datetime:
        """Raise why the filer can't dispute this target; return the filing deadline."""
        window = timedelta(days=self._settings.dispute_filing_deadline_days)

        if order is not None:
            if order.customer_id != filer_id:
                raise ForbiddenError("You can only file disputes for your own orders")
            if order.status not in DISPUTABLE_ORDER_STATUSES:
                raise ValidationError(
                    "Disputes can only be filed for shipped or delivered orders. "
                    f"Current status: {order.status}"
                )
            started = order.status_reached_at(*DISPUTABLE_ORDER_STATUSES) or order.updated_at
            escrow_request_id = order.customization_request_id
        else:
            if request.customer_id != filer_id:
                raise ForbiddenError("You can only file disputes for your own requests")
            if request.status not in DISPUTABLE_REQUEST_STATUSES:
                raise ValidationError(
                    f"Disputes can't be filed while the request is '{request.status}'"
                )
            started = request.assigned_at or request.created_at
            escrow_request_id = request.id

        deadline = started + window
        if now > deadline:
            raise ValidationError(
                f"Dispute filing deadline has passed. You have "
                f"{self._settings.dispute_filing_deadline_days} days to file a dispute."
            )
        if escrow_request_id is not None:
            existing = await self._uow.disputes.get_open_for_escrow(escrow_request_id)
            if existing is not None:
                raise ValidationError(f"An open dispute already exists: {existing.id}")
        return deadline

    async def _move(self, dispute: Dispute, event: str, **values: object) -> str:
        """Fire ``event`` on the dispute's stage and persist it conditionally.

        Returns the stage the dispute was in before the move.
        """
        old_stage = dispute.stage
        new_stage = fire_transition(DisputeStateMachine, old_stage, event)
        won = await self._uow.disputes.transition(
            dispute, old_stage, {"stage": new_stage, **values}
        )
        if not won:
            raise InvalidStateError(dispute.stage, event, "dispute changed concurrently")
        return old_stage

    def _require_accused(self, dispute: Dispute, actor_id: uuid.UUID) -> None:
        if dispute.accused_party_id != actor_id:
            raise ForbiddenError("Only the accused party can respond to this dispute")

    def _require_filer(self, dispute: Dispute, actor_id: uuid.UUID) -> None:
        if dispute.filed_by != actor_id:
            raise ForbiddenError("Only the filer can do this")

    def _require_pending_offer(self, dispute: Dispute) -> None:
        if dispute.offer_status != OfferStatus.PENDING or dispute.offer_amount is None:
            raise InvalidStateError(dispute.stage, "respond to offer", "no pending partial refund offer")

    async def _refund_all(self, dispute: Dispute, reason: str, actor: str = "SYSTEM") -> None:
        request = await self._escrow_request(dispute)
        amount = self._ledger.refundable_balance(request)
        if amount <= 0:
            logger.info("dispute.nothing_to_refund", dispute_id=dispute.id)
            return
        await self._ledger.refund_escrow(
            request.id, amount, reason=reason, leg=PartyRole(dispute.accused_role), actor=actor
        )

    async def _release_remainder(self, dispute: Dispute, actor: str) -> None:
        """Pay out whatever legs are eligible now; the rest waits for the normal triggers."""
        for release in (self._ledger.release_designer_payment, self._ledger.release_shop_payment):
            try:
                await release(dispute.escrow_request_id, actor=actor)
            except InvalidStateError as exc:
                logger.info(
                    "dispute.release_deferred",
                    dispute_id=dispute.id,
                    reason=exc.message,
                )
                return
