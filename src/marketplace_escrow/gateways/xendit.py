"""Xendit payment gateway client.

Talks to the Xendit REST API over httpx with HTTP basic auth (secret key as
username, empty password).

Retry policy: only the read-only invoice lookup is retried (tenacity,
exponential backoff). Refunds move money and are never retried here; a
GatewayUnavailableError goes back to the caller, who owns the retry. Refunds
carry an ``Idempotency-key`` header so that retry cannot refund twice.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from marketplace_escrow.domain.enums import InvoiceStatus
from marketplace_escrow.domain.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    NotFoundError,
)
from marketplace_escrow.domain.models import Invoice
from marketplace_escrow.logging_config import get_logger

logger = get_logger(__name__)


class RefundPayload(BaseModel):
    """Body of ``POST /refunds``. Decimal amounts serialize as exact strings."""

    invoice_id: str
    amount: Decimal
    reason: str = "REQUESTED_BY_CUSTOMER"
    metadata: dict[str, str]


class XenditGateway:
    """PaymentGateway backed by the Xendit invoices and refunds APIs."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ) -> None:
        """
        Args:
            client: AsyncClient with base_url, auth and timeout already set
                (see ``build_xendit_client``).
            max_attempts: Attempts for the invoice lookup, including the first.
            retry_wait: tenacity wait strategy between lookup attempts.
        """
        self._client = client
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=10)

    async def get_invoice(self, reference: str) -> Invoice:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(GatewayUnavailableError),
            reraise=True,
        ):
            with attempt:
                data = await self._request("GET", f"/v2/invoices/{reference}")
                return Invoice(
                    id=data["id"],
                    status=InvoiceStatus(data["status"]),
                    amount=Decimal(str(data["amount"])),
                    external_id=data.get("external_id"),
                )
        raise AssertionError("unreachable")  # pragma: no cover

    async def refund_invoice(
        self,
        reference: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str | None = None,
    ) -> str:
        payload = RefundPayload(invoice_id=reference, amount=amount, metadata={"note": reason})
        headers = {"Content-Type": "application/json"}
        if idempotency_key is not None:
            headers["Idempotency-key"] = idempotency_key
        data = await self._request(
            "POST", "/refunds", content=payload.model_dump_json(), headers=headers
        )
        logger.info(
            "gateway.refund_requested",
            invoice_id=reference,
            refund_id=data.get("id"),
            amount=amount,
            idempotency_key=idempotency_key,
        )
        return str(data["id"])

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("gateway.transport_error", path=path, error=str(exc))
            raise GatewayUnavailableError(f"Xendit unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayUnavailableError(
                f"Xendit returned {response.status_code} for {path}",
                status_code=response.status_code,
            )
        if response.status_code == 404:
            raise NotFoundError("Invoice", path.rsplit("/", 1)[-1])
        if response.is_error:
            raise GatewayError(
                f"Xendit rejected {method} {path}: {response.text}",
                status_code=response.status_code,
            )
        return response.json()


def build_xendit_client(base_url: str, secret_key: str, timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        auth=httpx.BasicAuth(secret_key, ""),
        timeout=timeout,
        headers={"Accept": "application/json"},
    )
