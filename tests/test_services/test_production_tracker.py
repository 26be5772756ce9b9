"""Tests for the ProductionTracker service."""

from __future__ import annotations

from decimal import Decimal

import pytest

from marketplace_escrow.domain.enums import (
    EventType,
    PaymentType,
    ProductionStatus,
    RequestStatus,
)
from marketplace_escrow.domain.exceptions import (
    ForbiddenError,
    InvalidStateError,
    ValidationError,
)


@pytest.fixture
def confirmed_request(make_held_request, tracker, parties):
    async def _make():
        request_id = (await make_held_request()).id
        await tracker.confirm_production(request_id, parties["shop_owner"], notes="Rush job")
        return request_id

    return _make


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_paid_approved_request(
        self, make_held_request, tracker, parties, events
    ) -> None:
        request_id = (await make_held_request()).id
        request = await tracker.confirm_production(request_id, parties["shop_owner"])

        assert request.production_status == ProductionStatus.CONFIRMED
        assert request.status == RequestStatus.IN_PRODUCTION
        assert request.production_confirmed_at is not None
        assert EventType.PRODUCTION_CONFIRMED.value in events.names()

    @pytest.mark.asyncio
    async def test_half_payment_is_enough(self, make_request, ledger, tracker, parties) -> None:
        request_id = (await make_request()).id
        await ledger.hold_funds(request_id, Decimal("750"), PaymentType.HALF_PAYMENT)

        request = await tracker.confirm_production(request_id, parties["shop_owner"])
        assert request.production_status == ProductionStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_unpaid_request_rejected(self, make_request, tracker, parties) -> None:
        request_id = (await make_request()).id
        with pytest.raises(ValidationError, match="payment"):
            await tracker.confirm_production(request_id, parties["shop_owner"])

    @pytest.mark.asyncio
    async def test_unapproved_design_rejected(self, make_held_request, tracker, parties) -> None:
        request_id = (
            await make_held_request(status=RequestStatus.AWAITING_CUSTOMER_APPROVAL.value)
        ).id
        with pytest.raises(InvalidStateError, match="approved"):
            await tracker.confirm_production(request_id, parties["shop_owner"])

    @pytest.mark.asyncio
    async def test_other_shop_rejected(self, make_held_request, tracker, parties) -> None:
        request_id = (await make_held_request()).id
        with pytest.raises(ForbiddenError):
            await tracker.confirm_production(request_id, parties["designer"])

    @pytest.mark.asyncio
    async def test_request_without_shop(self, make_held_request, tracker, parties) -> None:
        request_id = (await make_held_request(printing_shop_id=None)).id
        with pytest.raises(ValidationError, match="No printing shop"):
            await tracker.confirm_production(request_id, parties["shop_owner"])

    @pytest.mark.asyncio
    async def test_confirm_twice_rejected(self, confirmed_request, tracker, parties) -> None:
        request_id = await confirmed_request()
        with pytest.raises(InvalidStateError):
            await tracker.confirm_production(request_id, parties["shop_owner"])


class TestProgress:
    @pytest.mark.asyncio
    async def test_full_path_to_completion(self, confirmed_request, tracker, parties) -> None:
        request_id = await confirmed_request()
        owner = parties["shop_owner"]

        request = await tracker.start_production(request_id, owner, materials=["cotton", "ink"])
        assert request.production_status == ProductionStatus.IN_PROGRESS
        assert request.materials == ["cotton", "ink"]

        request = await tracker.update_production(
            request_id,
            owner,
            status=ProductionStatus.QUALITY_CHECK,
            quality_check_notes="Checking seams",
        )
        assert request.production_status == ProductionStatus.QUALITY_CHECK

        request = await tracker.complete_production(
            request_id, owner, quality_check_passed=True, quality_check_notes="All good"
        )
        assert request.production_status == ProductionStatus.COMPLETED
        assert request.quality_check_passed is True
        assert request.status == RequestStatus.READY_FOR_PICKUP
        assert request.production_completed_at is not None

    @pytest.mark.asyncio
    async def test_notes_only_update_keeps_status(
        self, confirmed_request, tracker, parties
    ) -> None:
        request_id = await confirmed_request()
        request = await tracker.update_production(
            request_id, parties["shop_owner"], notes="Waiting on fabric"
        )
        assert request.production_status == ProductionStatus.CONFIRMED
        assert request.production_notes == "Waiting on fabric"

    @pytest.mark.asyncio
    async def test_update_cannot_complete(self, confirmed_request, tracker, parties) -> None:
        request_id = await confirmed_request()
        with pytest.raises(ValidationError, match="complete_production"):
            await tracker.update_production(
                request_id, parties["shop_owner"], status=ProductionStatus.COMPLETED
            )

    @pytest.mark.asyncio
    async def test_failed_quality_check_is_not_completion(
        self, confirmed_request, tracker, parties
    ) -> None:
        request_id = await confirmed_request()
        await tracker.start_production(request_id, parties["shop_owner"])
        with pytest.raises(ValidationError, match="Quality check"):
            await tracker.complete_production(
                request_id, parties["shop_owner"], quality_check_passed=False
            )

    @pytest.mark.asyncio
    async def test_cannot_complete_before_start(
        self, confirmed_request, tracker, parties
    ) -> None:
        request_id = await confirmed_request()
        with pytest.raises(InvalidStateError):
            await tracker.complete_production(
                request_id, parties["shop_owner"], quality_check_passed=True
            )

    @pytest.mark.asyncio
    async def test_cannot_start_unconfirmed(self, make_held_request, tracker, parties) -> None:
        request_id = (await make_held_request()).id
        with pytest.raises(InvalidStateError, match="not confirmed"):
            await tracker.start_production(request_id, parties["shop_owner"])


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_every_status(
        self, confirmed_request, make_held_request, tracker, parties
    ) -> None:
        await confirmed_request()
        started = await confirmed_request()
        await tracker.start_production(started, parties["shop_owner"])
        await make_held_request()

        stats = await tracker.get_production_stats(parties["shop"])

        assert stats == {
            "confirmed": 1,
            "in_progress": 1,
            "quality_check": 0,
            "completed": 0,
        }
