"""Order/Payment Reconciler: aligns local payment state with the gateway.

Two inputs converge on the same idempotent transition:
    - gateway webhooks (at-least-once, unordered), via handle_webhook
    - the manual "verify payment" pull, via verify_payment

Whichever arrives first moves the order's payment_status out of ``pending``
with a conditional UPDATE; the other observes the move and reports
``was_updated=False``. Design-only orders are delivered immediately and earn
the designer a single earnings row; product orders go to ``processing``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from marketplace_escrow.domain.commission import calculate_commission
from marketplace_escrow.domain.enums import (
    EscrowStatus,
    EventType,
    InvoiceStatus,
    OrderPaymentStatus,
    OrderStatus,
    PaymentType,
    ProductionStatus,
)
from marketplace_escrow.domain.exceptions import (
    EscrowFrozenError,
    ForbiddenError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)
from marketplace_escrow.domain.models import PaymentVerification
from marketplace_escrow.domain.state_machine import OrderStateMachine, fire_transition
from marketplace_escrow.infrastructure.database.orm_models import DesignerEarning, Order
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from marketplace_escrow.domain.models import WebhookEvent
    from marketplace_escrow.domain.protocols import PaymentGateway
    from marketplace_escrow.infrastructure.database.orm_models import CustomizationRequest
    from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork
    from marketplace_escrow.services.escrow_ledger import EscrowLedger

logger = get_logger(__name__)

ENTITY = "order"
REQUEST_ENTITY = "customization_request"
EXTERNAL_ID_PREFIX = "order_"

_STATUS_EVENTS = {
    OrderStatus.PROCESSING: "begin_processing",
    OrderStatus.SHIPPED: "ship",
    OrderStatus.DELIVERED: "deliver",
    OrderStatus.CANCELLED: "cancel",
}


class PaymentReconciler:
    """Drives orders and escrow forward from gateway payment reports."""

    def __init__(self, uow: UnitOfWork, ledger: EscrowLedger, gateway: PaymentGateway) -> None:
        self._uow = uow
        self._ledger = ledger
        self._gateway = gateway

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    async def handle_webhook(self, event: WebhookEvent) -> bool:
        """Apply a gateway callback. Returns True if local state changed.

        Unknown invoices are logged and acknowledged so the gateway stops retrying.
        """
        async with self._uow:
            order = await self._find_order(event.invoice_id, event.external_id)
            if order is None:
                logger.warning(
                    "reconciler.unknown_invoice",
                    invoice_id=event.invoice_id,
                    external_id=event.external_id,
                )
                return False
            changed = await self._apply_invoice_status(
                order, event.status, event.amount, actor="webhook"
            )
            logger.info(
                "reconciler.webhook_handled",
                order_id=order.id,
                invoice_status=event.status,
                changed=changed,
            )
            return changed

    async def verify_payment(
        self,
        order_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: str | None = None,
    ) -> PaymentVerification:
        """Pull the invoice from the gateway and catch up if a webhook was missed.

        Raises:
            GatewayUnavailableError: The lookup failed after its retries.
        """
        async with self._uow:
            order = await self._load(order_id)
            if actor_role != "admin" and actor_id not in (
                order.customer_id,
                order.business_owner_id,
                order.designer_id,
            ):
                raise ForbiddenError("Unauthorized to access this order")
            if not order.payment_reference:
                raise ValidationError("Order does not have a payment reference")

            invoice = await self._gateway.get_invoice(order.payment_reference)
            was_updated = await self._apply_invoice_status(
                order, invoice.status, invoice.amount, actor=str(actor_id)
            )
            logger.info(
                "reconciler.payment_verified",
                order_id=order.id,
                invoice_status=invoice.status,
                was_updated=was_updated,
            )
            return PaymentVerification(
                invoice_status=invoice.status,
                order_status=OrderStatus(order.status),
                payment_status=OrderPaymentStatus(order.payment_status),
                was_updated=was_updated,
            )

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        status: OrderStatus,
        actor_id: uuid.UUID,
        actor_role: str | None = None,
    ) -> Order:
        """Move an order forward; shipping a completed production releases the shop leg."""
        event = _STATUS_EVENTS.get(status)
        if event is None:
            raise ValidationError(f"Orders can't be moved back to '{status}'")

        async with self._uow:
            order = await self._load(order_id)
            if actor_role != "admin" and order.business_owner_id != actor_id:
                raise ForbiddenError("Only the shop fulfilling this order can update it")

            old_status = order.status
            new_status = fire_transition(OrderStateMachine, old_status, event)
            won = await self._uow.orders.transition(
                order,
                {
                    "status": new_status,
                    "status_history": self._history(order, new_status, str(actor_id)),
                },
                Order.status == old_status,
            )
            if not won:
                raise InvalidStateError(order.status, event, "order changed concurrently")

            await self._uow.record(
                ENTITY, order.id, EventType.ORDER_STATUS_UPDATED, old_status, new_status,
                str(actor_id),
            )
            logger.info("order.status_updated", order_id=order.id, status=new_status)

            if new_status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
                await self._try_release_shop(order, OrderStatus(new_status), str(actor_id))
            return order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _apply_invoice_status(
        self,
        order: Order,
        status: InvoiceStatus,
        amount: Decimal | None,
        actor: str,
    ) -> bool:
        if status.is_paid:
            return await self._confirm_paid(order, amount, actor)
        if status in (InvoiceStatus.EXPIRED, InvoiceStatus.FAILED):
            return await self._mark_failed(order, status, actor)
        if status == InvoiceStatus.REFUNDED:
            return await self._mark_refunded(order, actor)
        return False

    async def _confirm_paid(self, order: Order, amount: Decimal | None, actor: str) -> bool:
        if order.payment_status != OrderPaymentStatus.PENDING:
            return False

        now = datetime.now(UTC)
        event = "deliver" if order.is_design_only else "begin_processing"
        new_status = fire_transition(OrderStateMachine, order.status, event)
        won = await self._uow.orders.mark_payment(
            order,
            OrderPaymentStatus.PAID,
            {
                "status": new_status,
                "paid_at": now,
                "status_history": self._history(order, new_status, actor),
            },
        )
        if not won:
            return False

        await self._uow.record(
            ENTITY,
            order.id,
            EventType.ORDER_PAYMENT_CONFIRMED,
            OrderPaymentStatus.PENDING,
            OrderPaymentStatus.PAID,
            actor,
            order_status=new_status,
            amount=amount if amount is not None else order.total_amount,
        )
        if order.is_design_only:
            await self._record_designer_earnings(order)
        if order.customization_request_id is not None:
            await self._fund_escrow(order, amount, actor)
        return True

    async def _mark_failed(self, order: Order, status: InvoiceStatus, actor: str) -> bool:
        if order.payment_status != OrderPaymentStatus.PENDING:
            return False

        values: dict = {}
        if order.status == OrderStatus.PENDING:
            cancelled = fire_transition(OrderStateMachine, order.status, "cancel")
            values = {
                "status": cancelled,
                "status_history": self._history(order, cancelled, actor),
            }
        won = await self._uow.orders.mark_payment(order, OrderPaymentStatus.FAILED, values)
        if won:
            await self._uow.record(
                ENTITY, order.id, EventType.ORDER_PAYMENT_FAILED, OrderPaymentStatus.PENDING,
                OrderPaymentStatus.FAILED, actor, invoice_status=status,
            )
        return won

    async def _mark_refunded(self, order: Order, actor: str) -> bool:
        won = await self._uow.orders.mark_payment(
            order, OrderPaymentStatus.REFUNDED, {}, from_status=OrderPaymentStatus.PAID
        )
        if won:
            await self._uow.record(
                ENTITY, order.id, EventType.ORDER_PAYMENT_REFUNDED, OrderPaymentStatus.PAID,
                OrderPaymentStatus.REFUNDED, actor,
            )
        return won

    async def _record_designer_earnings(self, order: Order) -> None:
        if order.designer_id is None:
            logger.warning("reconciler.design_order_without_designer", order_id=order.id)
            return
        if await self._uow.earnings.get_by_order(order.id) is not None:
            return

        gross = order.design_subtotal or order.total_amount
        commission = calculate_commission(design_subtotal=gross)
        await self._uow.earnings.create(
            DesignerEarning(
                designer_id=order.designer_id,
                order_id=order.id,
                gross_amount=gross,
                commission_amount=commission.amount,
                net_amount=gross - commission.amount,
            )
        )
        await self._uow.record(
            ENTITY, order.id, EventType.DESIGNER_EARNINGS_RECORDED,
            designer_id=order.designer_id, gross=gross, net=gross - commission.amount,
        )
        logger.info("reconciler.designer_earnings_recorded", order_id=order.id, gross=gross)

    async def _fund_escrow(self, order: Order, amount: Decimal | None, actor: str) -> None:
        """Move the paid amount into the linked request's escrow.

        The order is already paid by the time this runs; a payment the ledger
        refuses (overpaid, short of the payment type's minimum) is recorded
        as a funding mismatch for an admin to settle and never undoes the order
        transition. Orders without a payment type count as a half payment when
        the amount is short of the request total.
        """
        request = await self._uow.requests.get_by_id(order.customization_request_id)
        if request is None:
            logger.warning(
                "reconciler.linked_request_missing",
                order_id=order.id,
                request_id=order.customization_request_id,
            )
            return

        amount = amount if amount is not None else order.total_amount
        try:
            if request.escrow_status == EscrowStatus.PENDING:
                await self._ledger.hold_funds(
                    request.id,
                    amount,
                    self._payment_type(order, request, amount),
                    payment_reference=order.payment_reference,
                    actor=actor,
                )
            else:
                await self._ledger.record_payment(request.id, amount, actor=actor)
        except InvalidStateError as exc:
            logger.info(
                "reconciler.escrow_already_processed",
                request_id=request.id,
                escrow_status=exc.current_state,
            )
        except MarketplaceError as exc:
            logger.warning(
                "reconciler.escrow_funding_mismatch",
                order_id=order.id,
                request_id=request.id,
                amount=amount,
                reason=exc.message,
            )
            await self._uow.record(
                REQUEST_ENTITY,
                request.id,
                EventType.FUNDING_MISMATCH,
                request.escrow_status,
                request.escrow_status,
                actor,
                order_id=order.id,
                amount=amount,
                reason=exc.message,
            )

    @staticmethod
    def _payment_type(
        order: Order, request: CustomizationRequest, amount: Decimal
    ) -> PaymentType:
        if order.payment_type:
            return PaymentType(order.payment_type)
        total = request.pricing_total or request.total_amount
        if total and amount < total:
            return PaymentType.HALF_PAYMENT
        return PaymentType.UPFRONT

    async def _try_release_shop(self, order: Order, status: OrderStatus, actor: str) -> None:
        if order.customization_request_id is None:
            return
        request = await self._uow.requests.get_by_id(order.customization_request_id)
        if request is None or request.production_status != ProductionStatus.COMPLETED:
            return
        try:
            await self._ledger.release_shop_payment(request.id, order_status=status, actor=actor)
        except (EscrowFrozenError, InvalidStateError) as exc:
            logger.warning(
                "reconciler.shop_release_deferred",
                order_id=order.id,
                request_id=request.id,
                reason=exc.message,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, order_id: uuid.UUID) -> Order:
        order = await self._uow.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def _find_order(self, invoice_id: str, external_id: str | None) -> Order | None:
        order = await self._uow.orders.get_by_payment_reference(invoice_id)
        if order is not None or not external_id:
            return order
        if not external_id.startswith(EXTERNAL_ID_PREFIX):
            return None
        try:
            order_id = uuid.UUID(external_id.removeprefix(EXTERNAL_ID_PREFIX))
        except ValueError:
            return None
        return await self._uow.orders.get_by_id(order_id)

    @staticmethod
    def _history(order: Order, status: str, actor: str) -> list[dict]:
        return [
            *(order.status_history or []),
            {"status": str(status), "at": datetime.now(UTC).isoformat(), "updated_by": actor},
        ]
