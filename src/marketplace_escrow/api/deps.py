"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the unit of work,
the services built on it, the calling actor, and configuration. FastAPI
caches a dependency per request, so every service in one request shares the
same UnitOfWork and therefore the same transaction.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved by FastAPI at runtime

from marketplace_escrow.config import Settings, get_settings
from marketplace_escrow.domain.exceptions import ForbiddenError
from marketplace_escrow.domain.protocols import EventBus, PaymentGateway  # noqa: TC001
from marketplace_escrow.infrastructure.database.engine import get_async_session
from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork
from marketplace_escrow.infrastructure.event_bus import LoggingEventBus
from marketplace_escrow.services import (
    DisputeEngine,
    EscrowLedger,
    PaymentReconciler,
    ProductionTracker,
    StrikeService,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as forwarded by the API gateway."""

    id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def get_actor(
    x_actor_id: uuid.UUID = Header(..., description="Id of the authenticated user"),
    x_actor_role: str = Header(default="customer", description="customer, designer, shop or admin"),
) -> Actor:
    """Read the caller identity set by the upstream auth layer."""
    return Actor(id=x_actor_id, role=x_actor_role.lower())


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise ForbiddenError("Admin access required")
    return actor


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_event_bus(request: Request) -> EventBus:
    """Provide the bus chosen at startup (Redis, or logging when Redis is down)."""
    return getattr(request.app.state, "event_bus", None) or LoggingEventBus()


def get_gateway(request: Request) -> PaymentGateway:
    """Provide the payment gateway created at startup."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise RuntimeError("Payment gateway is not initialized")
    return gateway


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_uow(
    session: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
) -> UnitOfWork:
    return UnitOfWork(session, events)


def get_ledger(
    uow: UnitOfWork = Depends(get_uow),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_app_settings),
) -> EscrowLedger:
    return EscrowLedger(uow, gateway, settings)


def get_strike_service(
    uow: UnitOfWork = Depends(get_uow),
    settings: Settings = Depends(get_app_settings),
) -> StrikeService:
    return StrikeService(uow, settings)


def get_dispute_engine(
    uow: UnitOfWork = Depends(get_uow),
    ledger: EscrowLedger = Depends(get_ledger),
    strikes: StrikeService = Depends(get_strike_service),
    settings: Settings = Depends(get_app_settings),
) -> DisputeEngine:
    return DisputeEngine(uow, ledger, strikes, settings)


def get_production_tracker(uow: UnitOfWork = Depends(get_uow)) -> ProductionTracker:
    return ProductionTracker(uow)


def get_reconciler(
    uow: UnitOfWork = Depends(get_uow),
    ledger: EscrowLedger = Depends(get_ledger),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentReconciler:
    return PaymentReconciler(uow, ledger, gateway)
