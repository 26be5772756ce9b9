"""API tests for the dispute endpoints."""

from __future__ import annotations

import uuid

import pytest

DISPUTE_BODY = {
    "category": "design_quality_mismatch",
    "title": "Design does not match brief",
    "description": "The delivered design ignores the brief entirely.",
}


@pytest.fixture
def file_dispute(client, as_user):
    async def _file(request_id: uuid.UUID, **overrides):
        body = {**DISPUTE_BODY, "customization_request_id": str(request_id), **overrides}
        return await client.post("/api/v1/disputes", json=body, headers=as_user("customer"))

    return _file


class TestFileDispute:
    @pytest.mark.asyncio
    async def test_file_freezes_escrow(self, client, make_held_request, file_dispute) -> None:
        request_id = (await make_held_request()).id

        response = await file_dispute(request_id)

        assert response.status_code == 201
        body = response.json()
        assert body["stage"] == "filed"
        assert body["status"] == "open"
        assert body["accused_role"] == "designer"
        state = (await client.get(f"/api/v1/escrow/{request_id}")).json()
        assert state["escrow_status"] == "frozen"

    @pytest.mark.asyncio
    async def test_short_description_is_422(self, make_held_request, file_dispute) -> None:
        request_id = (await make_held_request()).id
        response = await file_dispute(request_id, description="bad")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_two_targets_is_422(self, make_held_request, file_dispute) -> None:
        request_id = (await make_held_request()).id
        response = await file_dispute(request_id, order_id=str(uuid.uuid4()))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_nothing_to_dispute_is_409(self, make_request, file_dispute) -> None:
        request_id = (await make_request()).id

        response = await file_dispute(request_id)

        assert response.status_code == 409
        assert response.json()["error"] == "NOTHING_TO_DISPUTE"

    @pytest.mark.asyncio
    async def test_duplicate_is_400(self, make_held_request, file_dispute) -> None:
        request_id = (await make_held_request()).id
        await file_dispute(request_id)

        response = await file_dispute(request_id)

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_eligibility(self, client, make_held_request, as_user) -> None:
        request_id = (await make_held_request()).id

        response = await client.get(
            "/api/v1/disputes/eligibility",
            params={"customization_request_id": str(request_id)},
            headers=as_user("customer"),
        )

        assert response.status_code == 200
        assert response.json()["can_file"] is True


class TestDisputeAccess:
    @pytest.mark.asyncio
    async def test_parties_and_admin_can_view(
        self, client, make_held_request, file_dispute, as_user
    ) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]

        for name in ("customer", "designer", "admin"):
            response = await client.get(f"/api/v1/disputes/{dispute_id}", headers=as_user(name))
            assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_outsider_is_403(self, client, make_held_request, file_dispute, as_user) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]

        response = await client.get(f"/api/v1/disputes/{dispute_id}", headers=as_user("shop"))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_dispute_is_404(self, client, as_user) -> None:
        response = await client.get(f"/api/v1/disputes/{uuid.uuid4()}", headers=as_user("admin"))
        assert response.status_code == 404


class TestNegotiation:
    @pytest.mark.asyncio
    async def test_offer_then_accept(
        self, client, make_held_request, file_dispute, as_user
    ) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]

        offer = await client.post(
            f"/api/v1/disputes/{dispute_id}/offer",
            json={"percentage": "50", "message": "Half back, keep the files"},
            headers=as_user("designer"),
        )
        assert offer.status_code == 200
        assert offer.json()["offer_amount"] == "750.00"

        accepted = await client.post(
            f"/api/v1/disputes/{dispute_id}/offer/accept", headers=as_user("customer")
        )
        assert accepted.status_code == 200
        assert accepted.json()["stage"] == "partial_refund_accepted"
        assert accepted.json()["status"] == "closed"

    @pytest.mark.asyncio
    async def test_customer_cannot_offer(
        self, client, make_held_request, file_dispute, as_user
    ) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]

        response = await client.post(
            f"/api/v1/disputes/{dispute_id}/offer",
            json={"amount": "100.00"},
            headers=as_user("customer"),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_accept_without_offer_is_409(
        self, client, make_held_request, file_dispute, as_user
    ) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]

        response = await client.post(
            f"/api/v1/disputes/{dispute_id}/offer/accept", headers=as_user("customer")
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_cancel(self, client, make_held_request, file_dispute, as_user) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]

        response = await client.post(
            f"/api/v1/disputes/{dispute_id}/cancel", headers=as_user("customer")
        )

        assert response.json()["stage"] == "cancelled"
        state = (await client.get(f"/api/v1/escrow/{request_id}")).json()
        assert state["escrow_status"] == "held"


class TestAdmin:
    @pytest.mark.asyncio
    async def test_resolve_requires_admin(
        self, client, make_held_request, file_dispute, as_user
    ) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]

        response = await client.post(
            f"/api/v1/disputes/{dispute_id}/resolve",
            json={"outcome": "dismissed", "reason": "no merit"},
            headers=as_user("customer"),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_resolve_with_strike(
        self, client, make_held_request, file_dispute, as_user, parties
    ) -> None:
        request_id = (await make_held_request()).id
        dispute_id = (await file_dispute(request_id)).json()["id"]
        admin = as_user("admin")

        response = await client.post(
            f"/api/v1/disputes/{dispute_id}/resolve",
            json={"outcome": "refunded", "reason": "Brief was ignored", "issue_strike": True},
            headers=admin,
        )

        assert response.status_code == 200
        assert response.json()["stage"] == "admin_resolved"
        assert response.json()["resolution_outcome"] == "refunded"

        strikes = await client.get(
            f"/api/v1/disputes/strikes/designer/{parties['designer']}", headers=admin
        )
        assert strikes.json()["strikes"] == 1

    @pytest.mark.asyncio
    async def test_escalate_overdue_with_nothing_due(self, client, as_user) -> None:
        response = await client.post(
            "/api/v1/disputes/escalate-overdue", headers=as_user("admin")
        )
        assert response.status_code == 200
        assert response.json() == {"escalated": []}
