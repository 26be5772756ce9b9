"""Payment gateway implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_escrow.gateways.simulated import SimulatedGateway
from marketplace_escrow.gateways.xendit import XenditGateway, build_xendit_client

if TYPE_CHECKING:
    from marketplace_escrow.config import Settings
    from marketplace_escrow.domain.protocols import PaymentGateway


def build_gateway(settings: Settings) -> PaymentGateway:
    """Pick the gateway implementation from settings.

    Raises ValueError when the real gateway is requested without a secret key.
    """
    if settings.gateway_simulate:
        return SimulatedGateway()
    if not settings.xendit_secret_key:
        raise ValueError("XENDIT_SECRET_KEY is required when GATEWAY_SIMULATE is false")
    client = build_xendit_client(
        settings.xendit_base_url,
        settings.xendit_secret_key,
        settings.xendit_timeout_seconds,
    )
    return XenditGateway(client)


__all__ = ["SimulatedGateway", "XenditGateway", "build_gateway", "build_xendit_client"]
