"""Collaborator protocols consumed by the escrow core.

Structural subtyping: concrete gateways and event buses don't inherit from
anything, they just need to match the shape. The domain layer has ZERO
imports from httpx or redis.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal

    from marketplace_escrow.domain.models import Invoice


@runtime_checkable
class PaymentGateway(Protocol):
    """External payment gateway.

    Concrete implementations:
        - gateways/xendit.py     (Xendit REST API over httpx)
        - gateways/simulated.py  (in-memory, development and demos)
    """

    async def get_invoice(self, reference: str) -> Invoice:
        """Fetch the authoritative invoice state.

        Raises:
            NotFoundError: Unknown invoice reference.
            GatewayUnavailableError: Network failure or 5xx from the gateway.
        """

    async def refund_invoice(
        self,
        reference: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str | None = None,
    ) -> str:
        """Instruct the gateway to refund ``amount`` against an invoice.

        Returns the gateway's refund id. Never retried by the core; a repeated
        ``idempotency_key`` must not refund twice.
        """


@runtime_checkable
class EventBus(Protocol):
    """Fire-and-forget domain event sink (notifications, activity feeds)."""

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        """Publish one event. May raise; callers log and continue."""
