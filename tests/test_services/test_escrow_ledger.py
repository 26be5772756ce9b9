"""Tests for the EscrowLedger service.

Pricing used throughout (see conftest): design fee 1000, product 400,
printing 100, so the designer leg is 1000 (net 920 after 8%) and the shop
leg is 500 (net 460).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from marketplace_escrow.domain.enums import (
    EscrowStatus,
    EventType,
    OrderStatus,
    PartyRole,
    PaymentStatus,
    PaymentType,
    RequestStatus,
)
from marketplace_escrow.domain.exceptions import (
    EscrowFrozenError,
    GatewayUnavailableError,
    InvalidStateError,
    NotFoundError,
    RefundExceedsBalanceError,
    ValidationError,
)
from marketplace_escrow.gateways.simulated import SimulatedGateway
from marketplace_escrow.infrastructure.database.orm_models import CustomizationRequest
from marketplace_escrow.infrastructure.database.repositories import (
    CustomizationRequestRepository,
)
from marketplace_escrow.services.escrow_ledger import EscrowLedger


class UnreachableGateway(SimulatedGateway):
    """Gateway whose refund endpoint is down."""

    async def refund_invoice(
        self,
        reference: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str | None = None,
    ) -> str:
        raise GatewayUnavailableError("gateway timed out")


class CompetingPayoutRepository(CustomizationRequestRepository):
    """Lets another worker pay the designer between our checks and our claim."""

    async def claim_designer_payout(self, request, gross, net, new_escrow_status, paid_at):
        await self._session.execute(
            update(CustomizationRequest)
            .where(CustomizationRequest.id == request.id)
            .values(
                designer_paid_at=paid_at,
                designer_released_amount=gross,
                designer_paid_amount=net,
                ledger_version=CustomizationRequest.ledger_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return await super().claim_designer_payout(
            request, gross, net, new_escrow_status, paid_at
        )


class TestHoldFunds:
    @pytest.mark.asyncio
    async def test_upfront_payment_holds_full_amount(self, make_request, ledger, events) -> None:
        request = await make_request()
        state = await ledger.hold_funds(
            request.id, Decimal("1500"), PaymentType.UPFRONT, payment_reference="inv-0001"
        )

        assert state.escrow_status == EscrowStatus.HELD
        assert state.payment_status == PaymentStatus.FULLY_PAID
        assert state.total_amount == Decimal("1500.00")
        assert state.designer_payout_amount == Decimal("920.00")
        assert state.settlement["held"] == Decimal("1500.00")
        assert events.names() == [EventType.FUNDS_HELD.value]

    @pytest.mark.asyncio
    async def test_upfront_must_cover_total(self, make_request, ledger, events) -> None:
        request_id = (await make_request()).id
        with pytest.raises(ValidationError, match="full"):
            await ledger.hold_funds(request_id, Decimal("1000"), PaymentType.UPFRONT)

        state = await ledger.get_escrow_status(request_id)
        assert state.escrow_status == EscrowStatus.PENDING
        assert events.events == []

    @pytest.mark.asyncio
    async def test_half_payment_then_installment(self, make_request, ledger) -> None:
        request_id = (await make_request()).id
        state = await ledger.hold_funds(request_id, Decimal("750"), PaymentType.HALF_PAYMENT)
        assert state.payment_status == PaymentStatus.PARTIALLY_PAID

        state = await ledger.record_payment(request_id, Decimal("750"))
        assert state.payment_status == PaymentStatus.FULLY_PAID
        assert state.paid_amount == Decimal("1500.00")

    @pytest.mark.asyncio
    async def test_half_payment_below_half_rejected(self, make_request, ledger) -> None:
        request_id = (await make_request()).id
        with pytest.raises(ValidationError, match="50%"):
            await ledger.hold_funds(request_id, Decimal("700"), PaymentType.HALF_PAYMENT)

    @pytest.mark.asyncio
    async def test_installment_cannot_overpay(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        with pytest.raises(ValidationError, match="above total"):
            await ledger.record_payment(request_id, Decimal("1"))

    @pytest.mark.asyncio
    async def test_cannot_hold_twice(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        with pytest.raises(InvalidStateError):
            await ledger.hold_funds(request_id, Decimal("1500"), PaymentType.UPFRONT)

    @pytest.mark.asyncio
    async def test_unknown_request(self, ledger) -> None:
        with pytest.raises(NotFoundError):
            await ledger.get_escrow_status(uuid.uuid4())


class TestDesignerRelease:
    @pytest.mark.asyncio
    async def test_pays_designer_leg_net_of_commission(
        self, make_held_request, ledger, events
    ) -> None:
        request_id = (await make_held_request()).id
        state = await ledger.release_designer_payment(request_id)

        assert state.already_processed is False
        assert state.designer_leg.is_paid
        assert state.designer_leg.gross == Decimal("1000.00")
        assert state.designer_leg.net == Decimal("920.00")
        # Shop leg still owed, so the escrow stays held.
        assert state.escrow_status == EscrowStatus.HELD
        assert state.settlement["held"] == Decimal("500.00")
        assert events.count(EventType.DESIGNER_PAID.value) == 1

    @pytest.mark.asyncio
    async def test_second_release_is_idempotent(self, make_held_request, ledger, events) -> None:
        request_id = (await make_held_request()).id
        first = await ledger.release_designer_payment(request_id)
        second = await ledger.release_designer_payment(request_id)

        assert second.already_processed is True
        assert second.designer_leg == first.designer_leg
        assert events.count(EventType.DESIGNER_PAID.value) == 1

    @pytest.mark.asyncio
    async def test_design_only_request_settles_on_designer_payout(
        self, make_request, ledger
    ) -> None:
        request_id = (
            await make_request(product_cost=Decimal("0"), printing_cost=Decimal("0"))
        ).id
        await ledger.hold_funds(request_id, Decimal("1000"), PaymentType.UPFRONT)
        state = await ledger.release_designer_payment(request_id)
        assert state.escrow_status == EscrowStatus.RELEASED

    @pytest.mark.asyncio
    async def test_unapproved_design_blocks_release(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request(status=RequestStatus.IN_PROGRESS.value)).id
        with pytest.raises(InvalidStateError, match="design not approved"):
            await ledger.release_designer_payment(request_id)
        assert await ledger.can_release_designer_payment(request_id) is False

    @pytest.mark.asyncio
    async def test_auto_approval_after_window(self, make_held_request, ledger) -> None:
        request_id = (
            await make_held_request(
                status=RequestStatus.AWAITING_CUSTOMER_APPROVAL.value,
                design_submitted_at=datetime.now(UTC) - timedelta(days=8),
            )
        ).id
        state = await ledger.release_designer_payment(request_id)
        assert state.designer_leg.is_paid

    @pytest.mark.asyncio
    async def test_no_auto_approval_inside_window(self, make_held_request, ledger) -> None:
        request_id = (
            await make_held_request(
                status=RequestStatus.AWAITING_CUSTOMER_APPROVAL.value,
                design_submitted_at=datetime.now(UTC) - timedelta(days=2),
            )
        ).id
        with pytest.raises(InvalidStateError):
            await ledger.release_designer_payment(request_id)

    @pytest.mark.asyncio
    async def test_frozen_escrow_blocks_release(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        await ledger.freeze_escrow(request_id, reason="dispute")
        with pytest.raises(EscrowFrozenError):
            await ledger.release_designer_payment(request_id)

    @pytest.mark.asyncio
    async def test_half_payment_does_not_cover_designer_leg(self, make_request, ledger) -> None:
        request_id = (await make_request()).id
        await ledger.hold_funds(request_id, Decimal("750"), PaymentType.HALF_PAYMENT)
        with pytest.raises(InvalidStateError, match="less than"):
            await ledger.release_designer_payment(request_id)

    @pytest.mark.asyncio
    async def test_concurrent_release_pays_once(
        self, make_held_request, ledger, uow, session, events
    ) -> None:
        request_id = (await make_held_request()).id
        uow.requests = CompetingPayoutRepository(session)

        state = await ledger.release_designer_payment(request_id)

        assert state.already_processed is True
        assert state.designer_leg.gross == Decimal("1000.00")
        assert events.count(EventType.DESIGNER_PAID.value) == 0


class TestShopRelease:
    @pytest.mark.asyncio
    async def test_requires_designer_leg_first(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request(production_status="completed")).id
        with pytest.raises(InvalidStateError, match="designer leg"):
            await ledger.release_shop_payment(request_id, order_status=OrderStatus.SHIPPED)

    @pytest.mark.asyncio
    async def test_requires_completed_production(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        await ledger.release_designer_payment(request_id)
        with pytest.raises(InvalidStateError, match="production"):
            await ledger.release_shop_payment(request_id, order_status=OrderStatus.SHIPPED)

    @pytest.mark.asyncio
    async def test_requires_shipped_order(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request(production_status="completed")).id
        await ledger.release_designer_payment(request_id)
        with pytest.raises(InvalidStateError, match="shipped"):
            await ledger.release_shop_payment(request_id, order_status=OrderStatus.PROCESSING)

    @pytest.mark.asyncio
    async def test_pays_shop_and_settles(self, make_held_request, ledger, events) -> None:
        request_id = (await make_held_request(production_status="completed")).id
        await ledger.release_designer_payment(request_id)
        state = await ledger.release_shop_payment(request_id, order_status=OrderStatus.SHIPPED)

        assert state.escrow_status == EscrowStatus.RELEASED
        assert state.shop_leg.gross == Decimal("500.00")
        assert state.shop_leg.net == Decimal("460.00")
        assert state.settlement["held"] == Decimal("0.00")
        assert events.count(EventType.SHOP_PAID.value) == 1

        replay = await ledger.release_shop_payment(request_id, order_status=OrderStatus.SHIPPED)
        assert replay.already_processed is True

    @pytest.mark.asyncio
    async def test_reads_linked_order_status(
        self, make_held_request, make_order, ledger
    ) -> None:
        request_id = (await make_held_request(production_status="completed")).id
        await make_order(customization_request_id=request_id, status=OrderStatus.DELIVERED.value)
        await ledger.release_designer_payment(request_id)

        assert await ledger.can_release_shop_payment(request_id) is True
        state = await ledger.release_shop_payment(request_id)
        assert state.shop_leg.is_paid

    @pytest.mark.asyncio
    async def test_frozen_escrow_blocks_shop_release_until_unfrozen(
        self, make_held_request, make_order, ledger, events
    ) -> None:
        request_id = (await make_held_request(production_status="completed")).id
        await make_order(customization_request_id=request_id, status=OrderStatus.SHIPPED.value)
        await ledger.release_designer_payment(request_id)
        await ledger.freeze_escrow(request_id, reason="dispute")

        with pytest.raises(EscrowFrozenError):
            await ledger.release_shop_payment(request_id)
        assert (await ledger.get_escrow_status(request_id)).shop_leg.is_paid is False
        assert events.count(EventType.SHOP_PAID.value) == 0

        await ledger.unfreeze_escrow(request_id)
        state = await ledger.release_shop_payment(request_id)
        assert state.shop_leg.net == Decimal("460.00")
        assert state.escrow_status == EscrowStatus.RELEASED


class TestFreeze:
    @pytest.mark.asyncio
    async def test_freeze_and_unfreeze(self, make_held_request, ledger, events) -> None:
        request_id = (await make_held_request()).id
        frozen = await ledger.freeze_escrow(request_id, reason="dispute")
        assert frozen.escrow_status == EscrowStatus.FROZEN

        thawed = await ledger.unfreeze_escrow(request_id)
        assert thawed.escrow_status == EscrowStatus.HELD
        assert EventType.ESCROW_FROZEN.value in events.names()
        assert EventType.ESCROW_UNFROZEN.value in events.names()

    @pytest.mark.asyncio
    async def test_cannot_freeze_twice(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        await ledger.freeze_escrow(request_id)
        with pytest.raises(InvalidStateError):
            await ledger.freeze_escrow(request_id)

    @pytest.mark.asyncio
    async def test_unfreeze_when_held_is_noop(self, make_held_request, ledger, events) -> None:
        request_id = (await make_held_request()).id
        state = await ledger.unfreeze_escrow(request_id)
        assert state.already_processed is True
        assert EventType.ESCROW_UNFROZEN.value not in events.names()

    @pytest.mark.asyncio
    async def test_cannot_freeze_pending_escrow(self, make_request, ledger) -> None:
        request_id = (await make_request()).id
        with pytest.raises(InvalidStateError):
            await ledger.freeze_escrow(request_id)


class TestRefund:
    @pytest.mark.asyncio
    async def test_full_refund(self, make_held_request, ledger, gateway, invoice_id) -> None:
        request_id = (await make_held_request()).id
        state = await ledger.refund_escrow(request_id, Decimal("1500"), reason="customer request")

        assert state.escrow_status == EscrowStatus.REFUNDED
        assert state.refunded_amount == Decimal("1500.00")
        assert [(r.reference, r.amount) for r in gateway.refunds] == [
            (invoice_id, Decimal("1500.00"))
        ]

    @pytest.mark.asyncio
    async def test_partial_refund_charges_shop_leg_first(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request(production_status="completed")).id
        state = await ledger.refund_escrow(request_id, Decimal("200"), reason="late")
        assert state.escrow_status == EscrowStatus.HELD

        await ledger.release_designer_payment(request_id)
        state = await ledger.release_shop_payment(request_id, order_status=OrderStatus.SHIPPED)
        assert state.designer_leg.gross == Decimal("1000.00")
        assert state.shop_leg.gross == Decimal("300.00")
        assert state.shop_leg.net == Decimal("276.00")
        assert state.escrow_status == EscrowStatus.RELEASED

    @pytest.mark.asyncio
    async def test_refund_after_designer_paid_is_a_split(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        await ledger.release_designer_payment(request_id)
        state = await ledger.refund_escrow(request_id, Decimal("500"), reason="shop no-show")

        assert state.escrow_status == EscrowStatus.RELEASED
        assert state.settlement["split"] is True
        assert state.settlement["held"] == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_refund_charged_to_designer_leg(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        await ledger.refund_escrow(
            request_id, Decimal("300"), reason="late design", leg=PartyRole.DESIGNER
        )
        state = await ledger.release_designer_payment(request_id)
        assert state.designer_leg.gross == Decimal("700.00")
        assert state.designer_leg.net == Decimal("644.00")

    @pytest.mark.asyncio
    async def test_refund_exceeding_balance(self, make_held_request, ledger) -> None:
        request_id = (await make_held_request()).id
        await ledger.release_designer_payment(request_id)
        with pytest.raises(RefundExceedsBalanceError) as exc_info:
            await ledger.refund_escrow(request_id, Decimal("500.01"), reason="too much")
        assert exc_info.value.refundable == "500.00"

    @pytest.mark.asyncio
    async def test_gateway_failure_persists_nothing(
        self, make_held_request, uow, settings, events
    ) -> None:
        request_id = (await make_held_request()).id
        gateway = UnreachableGateway()
        ledger = EscrowLedger(uow, gateway, settings)
        held_events = len(events.events)

        with pytest.raises(GatewayUnavailableError):
            await ledger.refund_escrow(request_id, Decimal("1500"), reason="customer request")

        state = await ledger.get_escrow_status(request_id)
        assert state.escrow_status == EscrowStatus.HELD
        assert state.refunded_amount == Decimal("0.00")
        assert len(events.events) == held_events

    @pytest.mark.asyncio
    async def test_refund_requires_held_funds(self, make_request, ledger) -> None:
        request_id = (await make_request()).id
        with pytest.raises(InvalidStateError):
            await ledger.refund_escrow(request_id, Decimal("10"), reason="nothing here")

    @pytest.mark.asyncio
    async def test_refund_carries_ledger_version_key(
        self, make_held_request, ledger, gateway
    ) -> None:
        request = await make_held_request()
        request_id, version = request.id, request.ledger_version

        await ledger.refund_escrow(request_id, Decimal("100"), reason="late")
        await ledger.refund_escrow(request_id, Decimal("100"), reason="later")

        assert [r.idempotency_key for r in gateway.refunds] == [
            f"{request_id}:{version}",
            f"{request_id}:{version + 1}",
        ]

    @pytest.mark.asyncio
    async def test_enclosing_failure_sends_no_refund(
        self, make_held_request, uow, ledger, gateway, events
    ) -> None:
        request_id = (await make_held_request()).id
        held_events = len(events.events)

        with pytest.raises(RuntimeError):
            async with uow:
                await ledger.refund_escrow(request_id, Decimal("1500"), reason="customer request")
                assert gateway.refunds == []
                raise RuntimeError("later step failed")

        assert gateway.refunds == []
        state = await ledger.get_escrow_status(request_id)
        assert state.escrow_status == EscrowStatus.HELD
        assert state.refunded_amount == Decimal("0.00")
        assert len(events.events) == held_events
