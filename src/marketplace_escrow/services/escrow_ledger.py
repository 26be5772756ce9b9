"""Escrow Ledger: the only writer of a request's payment sub-state.

Coordinates between:
    - EscrowStateMachine (transition guard)
    - CustomizationRequestRepository (conditional writes)
    - Commission calculator (payout amounts)
    - PaymentGateway (refund instructions)
    - Unit of work (audit trail + post-commit events)

Claim-then-verify: every payout re-reads the persisted row, checks the guards,
then writes ``*_paid_at`` with a conditional UPDATE. Two racing releases can
both pass the checks but only one UPDATE matches; the loser re-reads, sees the
timestamp and reports an idempotent success instead of paying twice.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from marketplace_escrow.config import get_settings
from marketplace_escrow.domain.commission import calculate_commission, to_money
from marketplace_escrow.domain.enums import (
    DESIGN_APPROVED_STATUSES,
    EscrowStatus,
    EventType,
    OrderStatus,
    PartyRole,
    PaymentStatus,
    PaymentType,
    ProductionStatus,
    RequestStatus,
)
from marketplace_escrow.domain.exceptions import (
    EscrowFrozenError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    RefundExceedsBalanceError,
    ValidationError,
)
from marketplace_escrow.domain.models import PaymentState
from marketplace_escrow.domain.state_machine import EscrowStateMachine, fire_transition
from marketplace_escrow.infrastructure.database.orm_models import CustomizationRequest
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from marketplace_escrow.config import Settings
    from marketplace_escrow.domain.protocols import PaymentGateway
    from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)

ENTITY = "customization_request"
ZERO = Decimal("0.00")
SHIPPED_STATUSES = (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value)


class EscrowLedger:
    """Holds, releases, freezes and refunds a customization request's funds."""

    def __init__(
        self,
        uow: UnitOfWork,
        gateway: PaymentGateway,
        settings: Settings | None = None,
    ) -> None:
        self._uow = uow
        self._gateway = gateway
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_escrow_status(self, request_id: uuid.UUID) -> PaymentState:
        async with self._uow:
            return self.snapshot(await self._load(request_id))

    async def can_release_designer_payment(self, request_id: uuid.UUID) -> bool:
        async with self._uow:
            request = await self._load(request_id)
            if request.designer_paid_at is not None:
                return False
            try:
                self._check_designer_release(request)
            except MarketplaceError:
                return False
            return True

    async def can_release_shop_payment(self, request_id: uuid.UUID) -> bool:
        async with self._uow:
            request = await self._load(request_id)
            if request.shop_paid_at is not None:
                return False
            try:
                await self._check_shop_release(request, order_status=None)
            except MarketplaceError:
                return False
            return True

    def snapshot(self, request: CustomizationRequest) -> PaymentState:
        """Build the PaymentState value object for a persisted request."""
        return PaymentState(
            request_id=request.id,
            escrow_status=EscrowStatus(request.escrow_status),
            payment_status=PaymentStatus(request.payment_status),
            payment_type=PaymentType(request.payment_type) if request.payment_type else None,
            total_amount=request.total_amount,
            paid_amount=request.paid_amount,
            refunded_amount=request.refunded_amount,
            designer_payout_amount=request.designer_payout_amount,
            designer_leg=request.designer_leg,
            shop_leg=request.shop_leg,
            settlement={
                "designer_released": request.designer_released_amount,
                "shop_released": request.shop_released_amount,
                "refunded": request.refunded_amount,
                "held": request.held_amount,
                "split": request.refunded_amount > 0 and request.released_amount > 0,
            },
        )

    def refundable_balance(self, request: CustomizationRequest) -> Decimal:
        """Largest refund allowed: unclaimed entitlement, capped by funds actually held."""
        unclaimed = request.total_amount - request.released_amount - request.refunded_amount
        return max(ZERO, min(unclaimed, request.held_amount))

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def hold_funds(
        self,
        request_id: uuid.UUID,
        amount: Decimal,
        payment_type: PaymentType,
        payment_reference: str | None = None,
        actor: str = "SYSTEM",
    ) -> PaymentState:
        """Record the first payment and move escrow pending -> held.

        Raises:
            InvalidStateError: Funds are already held, frozen, released or refunded.
            ValidationError: The amount doesn't cover what the payment type requires.
        """
        async with self._uow:
            request = await self._load(request_id)
            amount = to_money(amount)
            old_status = request.escrow_status
            new_status = fire_transition(EscrowStateMachine, old_status, "hold_confirmed")

            total = request.pricing_total or request.total_amount or amount
            if amount <= 0:
                raise ValidationError("Payment amount must be positive")
            if amount > total:
                raise ValidationError(f"Payment {amount} exceeds total {total}")
            if payment_type == PaymentType.UPFRONT and amount < total:
                raise ValidationError(f"Upfront payment must cover the full {total}")
            if payment_type == PaymentType.HALF_PAYMENT and amount * 2 < total:
                raise ValidationError(f"Half payment must cover at least 50% of {total}")

            values = {
                "escrow_status": new_status,
                "total_amount": total,
                "paid_amount": amount,
                "payment_type": payment_type.value,
                "payment_status": self._payment_status(amount, total).value,
                "escrow_held_at": datetime.now(UTC),
            }
            if payment_reference is not None:
                values["payment_reference"] = payment_reference
            if request.designer_payout_amount is None:
                leg = request.design_fee if request.pricing_total else total
                values["designer_payout_amount"] = (
                    leg - calculate_commission(customization_design_fee=leg).amount
                )

            won = await self._uow.requests.update_ledger(
                request,
                values,
                CustomizationRequest.escrow_status == EscrowStatus.PENDING.value,
            )
            if not won:
                raise InvalidStateError(request.escrow_status, "hold funds")

            await self._uow.record(
                ENTITY,
                request.id,
                EventType.FUNDS_HELD,
                old_status,
                new_status,
                actor,
                amount=amount,
                total_amount=total,
                payment_type=payment_type,
            )
            logger.info(
                "escrow.funds_held",
                request_id=request.id,
                amount=amount,
                total=total,
                payment_type=payment_type,
            )
            return self.snapshot(request)

    async def record_payment(
        self,
        request_id: uuid.UUID,
        amount: Decimal,
        actor: str = "SYSTEM",
    ) -> PaymentState:
        """Add a later installment; paid_amount only ever grows."""
        async with self._uow:
            request = await self._load(request_id)
            amount = to_money(amount)
            if amount <= 0:
                raise ValidationError("Payment amount must be positive")
            if request.escrow_status not in (EscrowStatus.HELD, EscrowStatus.FROZEN):
                raise InvalidStateError(request.escrow_status, "record payment")

            new_paid = request.paid_amount + amount
            if new_paid > request.total_amount:
                raise ValidationError(
                    f"Payment would bring paid amount to {new_paid}, "
                    f"above total {request.total_amount}"
                )
            old_payment_status = request.payment_status
            new_payment_status = self._payment_status(new_paid, request.total_amount)

            won = await self._uow.requests.update_ledger(
                request,
                {"paid_amount": new_paid, "payment_status": new_payment_status.value},
            )
            if not won:
                raise InvalidStateError(
                    request.escrow_status, "record payment", "ledger changed concurrently; retry"
                )

            await self._uow.record(
                ENTITY,
                request.id,
                EventType.PAYMENT_RECORDED,
                old_payment_status,
                new_payment_status,
                actor,
                amount=amount,
                paid_amount=new_paid,
            )
            logger.info(
                "escrow.payment_recorded",
                request_id=request.id,
                amount=amount,
                paid_amount=new_paid,
            )
            return self.snapshot(request)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    async def release_designer_payment(
        self, request_id: uuid.UUID, actor: str = "SYSTEM"
    ) -> PaymentState:
        """Pay the designer leg once; later calls return the same state flagged as replayed.

        Raises:
            EscrowFrozenError: An open dispute holds the escrow.
            InvalidStateError: Escrow not held, design not approved, or funds short.
        """
        async with self._uow:
            request = await self._load(request_id)
            if request.designer_paid_at is not None:
                return self.snapshot(request).replayed()

            gross, new_status = self._check_designer_release(request)
            net = gross - calculate_commission(customization_design_fee=gross).amount
            old_status = request.escrow_status

            won = await self._uow.requests.claim_designer_payout(
                request, gross, net, new_status, datetime.now(UTC)
            )
            if not won:
                return self._lost_claim(request, request.designer_paid_at, "release designer payment")

            await self._uow.record(
                ENTITY,
                request.id,
                EventType.DESIGNER_PAID,
                old_status,
                new_status,
                actor,
                designer_id=request.designer_id,
                gross=gross,
                net=net,
            )
            logger.info(
                "escrow.designer_paid",
                request_id=request.id,
                gross=gross,
                net=net,
                escrow_status=new_status,
            )
            return self.snapshot(request)

    async def release_shop_payment(
        self,
        request_id: uuid.UUID,
        order_status: OrderStatus | None = None,
        actor: str = "SYSTEM",
    ) -> PaymentState:
        """Pay the shop leg once, only after the designer leg and a shipped order.

        Args:
            order_status: Status of the order for this request when the caller
                has just changed it; otherwise the linked order is read.
        """
        async with self._uow:
            request = await self._load(request_id)
            if request.shop_paid_at is not None:
                return self.snapshot(request).replayed()

            gross = await self._check_shop_release(request, order_status)
            net = gross - calculate_commission(product_subtotal=gross).amount
            old_status = request.escrow_status
            new_status = EscrowStatus(fire_transition(EscrowStateMachine, old_status, "settled"))

            won = await self._uow.requests.claim_shop_payout(
                request, gross, net, new_status, datetime.now(UTC)
            )
            if not won:
                return self._lost_claim(request, request.shop_paid_at, "release shop payment")

            await self._uow.record(
                ENTITY,
                request.id,
                EventType.SHOP_PAID,
                old_status,
                new_status,
                actor,
                printing_shop_id=request.printing_shop_id,
                gross=gross,
                net=net,
            )
            logger.info("escrow.shop_paid", request_id=request.id, gross=gross, net=net)
            return self.snapshot(request)

    # ------------------------------------------------------------------
    # Dispute controls
    # ------------------------------------------------------------------

    async def freeze_escrow(
        self, request_id: uuid.UUID, actor: str = "SYSTEM", reason: str | None = None
    ) -> PaymentState:
        """held -> frozen. Payouts fail with EscrowFrozenError until unfrozen."""
        async with self._uow:
            request = await self._load(request_id)
            old_status = request.escrow_status
            new_status = fire_transition(EscrowStateMachine, old_status, "dispute_opened")

            won = await self._uow.requests.update_ledger(
                request,
                {"escrow_status": new_status},
                CustomizationRequest.escrow_status == EscrowStatus.HELD.value,
            )
            if not won:
                if request.escrow_status == EscrowStatus.FROZEN:
                    return self.snapshot(request).replayed()
                raise InvalidStateError(request.escrow_status, "dispute_opened")

            await self._uow.record(
                ENTITY, request.id, EventType.ESCROW_FROZEN, old_status, new_status, actor,
                reason=reason,
            )
            logger.info("escrow.frozen", request_id=request.id, reason=reason)
            return self.snapshot(request)

    async def unfreeze_escrow(
        self, request_id: uuid.UUID, actor: str = "SYSTEM", reason: str | None = None
    ) -> PaymentState:
        """frozen -> held. A no-op when already held or settled by a refund."""
        async with self._uow:
            request = await self._load(request_id)
            if request.escrow_status != EscrowStatus.FROZEN:
                if request.escrow_status == EscrowStatus.PENDING:
                    raise InvalidStateError(request.escrow_status, "dispute_closed")
                return self.snapshot(request).replayed()

            old_status = request.escrow_status
            new_status = fire_transition(EscrowStateMachine, old_status, "dispute_closed")
            won = await self._uow.requests.update_ledger(
                request,
                {"escrow_status": new_status},
                CustomizationRequest.escrow_status == EscrowStatus.FROZEN.value,
            )
            if not won:
                return self.snapshot(request).replayed()

            await self._uow.record(
                ENTITY, request.id, EventType.ESCROW_UNFROZEN, old_status, new_status, actor,
                reason=reason,
            )
            logger.info("escrow.unfrozen", request_id=request.id, reason=reason)
            return self.snapshot(request)

    async def refund_escrow(
        self,
        request_id: uuid.UUID,
        amount: Decimal,
        reason: str,
        leg: PartyRole | None = None,
        actor: str = "SYSTEM",
    ) -> PaymentState:
        """Refund part or all of the unclaimed funds to the customer.

        The refund is charged against ``leg`` first (shop first when omitted).
        Once nothing remains owed to either leg the escrow settles: ``refunded``
        if no leg was ever paid, otherwise ``released`` with a non-zero refunded
        amount (the split result).

        The gateway call is queued on the unit of work and runs only when the
        outermost block commits. Its idempotency key is
        ``"{request_id}:{ledger_version}"`` with the version read here, so a
        retried commit reuses the key and the gateway refunds at most once.

        Raises:
            RefundExceedsBalanceError: amount > refundable balance.
            GatewayUnavailableError: The refund instruction failed; nothing is
                persisted and the caller owns the retry. Raised on exit of the
                outermost ``async with uow`` block.
        """
        async with self._uow:
            request = await self._load(request_id)
            old_status = request.escrow_status
            if old_status not in (EscrowStatus.HELD, EscrowStatus.FROZEN):
                raise InvalidStateError(old_status, "refund")

            amount = to_money(amount)
            if amount <= 0:
                raise ValidationError("Refund amount must be positive")
            if not request.payment_reference:
                raise ValidationError(f"Request {request.id} has no payment reference to refund")

            refundable = self.refundable_balance(request)
            if amount > refundable:
                raise RefundExceedsBalanceError(str(amount), str(refundable))

            allocation = self._allocate_refund(request, amount, leg)
            designer_refunded = request.designer_refunded_amount + allocation[PartyRole.DESIGNER]
            shop_refunded = request.shop_refunded_amount + allocation[PartyRole.SHOP]
            still_owed = self._outstanding(request, PartyRole.DESIGNER, designer_refunded) + (
                self._outstanding(request, PartyRole.SHOP, shop_refunded)
            )

            new_status = old_status
            if still_owed <= 0:
                any_leg_paid = request.designer_paid_at or request.shop_paid_at
                event = "settled" if any_leg_paid else "fully_refunded"
                new_status = fire_transition(EscrowStateMachine, old_status, event)

            idempotency_key = f"{request.id}:{request.ledger_version}"
            reference = request.payment_reference
            won = await self._uow.requests.update_ledger(
                request,
                {
                    "designer_refunded_amount": designer_refunded,
                    "shop_refunded_amount": shop_refunded,
                    "escrow_status": str(new_status),
                },
                CustomizationRequest.escrow_status.in_(
                    [EscrowStatus.HELD.value, EscrowStatus.FROZEN.value]
                ),
            )
            if not won:
                raise InvalidStateError(
                    request.escrow_status, "refund", "ledger changed concurrently; retry"
                )

            await self._uow.record(
                ENTITY,
                request.id,
                EventType.ESCROW_REFUNDED,
                old_status,
                new_status,
                actor,
                amount=amount,
                reason=reason,
                idempotency_key=idempotency_key,
                designer_portion=allocation[PartyRole.DESIGNER],
                shop_portion=allocation[PartyRole.SHOP],
            )

            async def send_refund() -> None:
                refund_id = await self._gateway.refund_invoice(
                    reference, amount, reason, idempotency_key=idempotency_key
                )
                logger.info(
                    "escrow.refunded",
                    request_id=request_id,
                    amount=amount,
                    refund_id=refund_id,
                    idempotency_key=idempotency_key,
                    escrow_status=new_status,
                )

            self._uow.before_commit(send_refund)
            return self.snapshot(request)

    # ------------------------------------------------------------------
    # Guards and helpers
    # ------------------------------------------------------------------

    async def _load(self, request_id: uuid.UUID) -> CustomizationRequest:
        request = await self._uow.requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("CustomizationRequest", request_id)
        return request

    def _check_designer_release(
        self, request: CustomizationRequest
    ) -> tuple[Decimal, EscrowStatus]:
        """Return (gross payout, escrow status after payout) or raise why not."""
        if request.escrow_status == EscrowStatus.FROZEN:
            raise EscrowFrozenError(request.id)
        if request.escrow_status != EscrowStatus.HELD:
            raise InvalidStateError(request.escrow_status, "release designer payment")
        if not self._design_approved(request):
            raise InvalidStateError(
                request.status, "release designer payment", "design not approved yet"
            )

        gross = self._outstanding(request, PartyRole.DESIGNER, request.designer_refunded_amount)
        if request.held_amount < gross:
            raise InvalidStateError(
                request.payment_status,
                "release designer payment",
                f"held {request.held_amount} is less than the {gross} owed",
            )

        shop_owed = self._outstanding(request, PartyRole.SHOP, request.shop_refunded_amount)
        if shop_owed > 0:
            return gross, EscrowStatus.HELD
        return gross, EscrowStatus(
            fire_transition(EscrowStateMachine, request.escrow_status, "settled")
        )

    async def _check_shop_release(
        self, request: CustomizationRequest, order_status: OrderStatus | None
    ) -> Decimal:
        if request.escrow_status == EscrowStatus.FROZEN:
            raise EscrowFrozenError(request.id)
        if request.designer_paid_at is None:
            raise InvalidStateError(
                request.escrow_status, "release shop payment", "designer leg not paid yet"
            )
        if request.escrow_status != EscrowStatus.HELD:
            raise InvalidStateError(request.escrow_status, "release shop payment")
        if request.production_status != ProductionStatus.COMPLETED:
            raise InvalidStateError(
                str(request.production_status), "release shop payment", "production not completed"
            )

        if order_status is None:
            order = await self._uow.orders.get_by_request(request.id)
            order_status = OrderStatus(order.status) if order else None
        if order_status not in SHIPPED_STATUSES:
            raise InvalidStateError(
                str(order_status), "release shop payment", "order not shipped or delivered"
            )

        gross = self._outstanding(request, PartyRole.SHOP, request.shop_refunded_amount)
        if request.held_amount < gross:
            raise InvalidStateError(
                request.payment_status,
                "release shop payment",
                f"held {request.held_amount} is less than the {gross} owed",
            )
        return gross

    def _design_approved(self, request: CustomizationRequest) -> bool:
        if request.status in DESIGN_APPROVED_STATUSES:
            return True
        if (
            request.status == RequestStatus.AWAITING_CUSTOMER_APPROVAL
            and request.design_submitted_at is not None
        ):
            window = timedelta(days=self._settings.escrow_auto_approval_days)
            return request.design_submitted_at + window <= datetime.now(UTC)
        return False

    @staticmethod
    def _outstanding(
        request: CustomizationRequest, leg: PartyRole, refunded: Decimal
    ) -> Decimal:
        """What a leg is still owed: nothing once paid, else its amount minus refunds."""
        if leg == PartyRole.DESIGNER:
            if request.designer_paid_at is not None:
                return ZERO
            return max(ZERO, request.designer_leg_amount - refunded)
        if request.shop_paid_at is not None:
            return ZERO
        return max(ZERO, request.shop_leg_amount - refunded)

    def _allocate_refund(
        self, request: CustomizationRequest, amount: Decimal, leg: PartyRole | None
    ) -> dict[PartyRole, Decimal]:
        order = [PartyRole.SHOP, PartyRole.DESIGNER]
        if leg == PartyRole.DESIGNER:
            order.reverse()

        allocation = {PartyRole.DESIGNER: ZERO, PartyRole.SHOP: ZERO}
        remaining = amount
        for party in order:
            already = (
                request.designer_refunded_amount
                if party == PartyRole.DESIGNER
                else request.shop_refunded_amount
            )
            portion = min(remaining, self._outstanding(request, party, already))
            allocation[party] += portion
            remaining -= portion
        # Overpayment beyond both legs' entitlement is charged to the first leg.
        allocation[order[0]] += remaining
        return allocation

    def _lost_claim(
        self, request: CustomizationRequest, paid_at: datetime | None, attempted: str
    ) -> PaymentState:
        if paid_at is not None:
            logger.info("escrow.payout_claim_lost", request_id=request.id, attempted=attempted)
            return self.snapshot(request).replayed()
        if request.escrow_status == EscrowStatus.FROZEN:
            raise EscrowFrozenError(request.id)
        raise InvalidStateError(request.escrow_status, attempted, "ledger changed concurrently; retry")

    @staticmethod
    def _payment_status(paid: Decimal, total: Decimal) -> PaymentStatus:
        if paid >= total:
            return PaymentStatus.FULLY_PAID
        if paid > 0:
            return PaymentStatus.PARTIALLY_PAID
        return PaymentStatus.PENDING
