"""API tests for the gateway webhook, payment verification and order status routes."""

from __future__ import annotations

import uuid

import pytest

from marketplace_escrow.domain.enums import InvoiceStatus, OrderPaymentStatus, OrderStatus


def webhook_body(invoice_id: str, status: str = "PAID", **extra) -> dict:
    return {"id": invoice_id, "status": status, "amount": "1500.00", **extra}


class TestWebhook:
    @pytest.mark.asyncio
    async def test_paid_invoice_updates_order(
        self, client, make_order, invoice_id, as_user
    ) -> None:
        order_id = (await make_order(payment_reference=invoice_id)).id

        response = await client.post("/api/v1/payments/webhook", json=webhook_body(invoice_id))

        assert response.status_code == 200
        assert response.json() == {"received": True, "updated": True}
        verified = await client.post(
            f"/api/v1/payments/orders/{order_id}/verify", headers=as_user("customer")
        )
        assert verified.json()["order_status"] == "processing"
        assert verified.json()["was_updated"] is False

    @pytest.mark.asyncio
    async def test_unknown_invoice_is_acknowledged(self, client) -> None:
        response = await client.post(
            "/api/v1/payments/webhook",
            json=webhook_body("inv-unknown", external_id="order_nope", extra_field="ignored"),
        )
        assert response.status_code == 200
        assert response.json()["updated"] is False

    @pytest.mark.asyncio
    async def test_unknown_status_is_422(self, client) -> None:
        response = await client.post(
            "/api/v1/payments/webhook", json=webhook_body("inv-1", status="BOUNCED")
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_token_checked_when_configured(self, client, settings, invoice_id) -> None:
        settings.xendit_webhook_token = "cb-secret"

        rejected = await client.post(
            "/api/v1/payments/webhook",
            json=webhook_body(invoice_id),
            headers={"x-callback-token": "wrong"},
        )
        missing = await client.post("/api/v1/payments/webhook", json=webhook_body(invoice_id))
        accepted = await client.post(
            "/api/v1/payments/webhook",
            json=webhook_body(invoice_id),
            headers={"x-callback-token": "cb-secret"},
        )

        assert rejected.status_code == 403
        assert missing.status_code == 403
        assert accepted.status_code == 200


class TestVerifyPayment:
    @pytest.mark.asyncio
    async def test_catches_up(self, client, make_order, invoice_id, as_user) -> None:
        order_id = (await make_order(payment_reference=invoice_id)).id

        response = await client.post(
            f"/api/v1/payments/orders/{order_id}/verify", headers=as_user("customer")
        )

        assert response.status_code == 200
        assert response.json() == {
            "invoice_status": InvoiceStatus.PAID.value,
            "order_status": OrderStatus.PROCESSING.value,
            "payment_status": OrderPaymentStatus.PAID.value,
            "was_updated": True,
        }

    @pytest.mark.asyncio
    async def test_stranger_is_403(self, client, make_order, invoice_id) -> None:
        order_id = (await make_order(payment_reference=invoice_id)).id
        response = await client.post(
            f"/api/v1/payments/orders/{order_id}/verify",
            headers={"X-Actor-Id": str(uuid.uuid4()), "X-Actor-Role": "customer"},
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_invoice_at_gateway_is_404(self, client, make_order, as_user) -> None:
        order_id = (await make_order(payment_reference="inv-gone")).id
        response = await client.post(
            f"/api/v1/payments/orders/{order_id}/verify", headers=as_user("customer")
        )
        assert response.status_code == 404


class TestOrderStatus:
    @pytest.mark.asyncio
    async def test_shop_moves_order_forward(self, client, make_order, as_user) -> None:
        order_id = (
            await make_order(
                status=OrderStatus.PROCESSING.value,
                payment_status=OrderPaymentStatus.PAID.value,
            )
        ).id

        response = await client.patch(
            f"/api/v1/payments/orders/{order_id}/status",
            json={"status": "shipped"},
            headers=as_user("shop_owner"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "shipped"
        assert body["status_history"][-1]["status"] == "shipped"

    @pytest.mark.asyncio
    async def test_customer_is_403(self, client, make_order, as_user) -> None:
        order_id = (await make_order(status=OrderStatus.PROCESSING.value)).id
        response = await client.patch(
            f"/api/v1/payments/orders/{order_id}/status",
            json={"status": "shipped"},
            headers=as_user("customer"),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_shipping_unpaid_order_is_409(self, client, make_order, as_user) -> None:
        order_id = (await make_order()).id
        response = await client.patch(
            f"/api/v1/payments/orders/{order_id}/status",
            json={"status": "shipped"},
            headers=as_user("shop_owner"),
        )
        assert response.status_code == 409
