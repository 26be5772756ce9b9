"""Shared test fixtures for the marketplace escrow test suite.

Provides:
    - A fresh in-memory SQLite database per test (aiosqlite)
    - A recording event bus and the in-memory payment gateway
    - The services wired onto one UnitOfWork, as the API wires them
    - Factory helpers that COMMIT seed rows, so a service call that raises
      (and rolls back its unit of work) never takes the seed data with it
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace_escrow.config import Settings
from marketplace_escrow.domain.enums import InvoiceStatus, PaymentType, RequestStatus
from marketplace_escrow.gateways.simulated import SimulatedGateway
from marketplace_escrow.infrastructure.database.engine import make_session_factory
from marketplace_escrow.infrastructure.database.orm_models import (
    Base,
    CustomizationRequest,
    Order,
)
from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork
from marketplace_escrow.services import (
    DisputeEngine,
    EscrowLedger,
    PaymentReconciler,
    ProductionTracker,
    StrikeService,
)

INVOICE_ID = "inv-0001"


class RecordingEventBus:
    """EventBus that keeps every emitted event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        self.events.append((event_name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def count(self, event_name: str) -> int:
        return self.names().count(event_name)


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite://",
        gateway_simulate=True,
        xendit_webhook_token="",
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def invoice_id() -> str:
    return INVOICE_ID


@pytest.fixture
def events() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def gateway() -> SimulatedGateway:
    gateway = SimulatedGateway()
    gateway.register_invoice(INVOICE_ID, Decimal("1500.00"), status=InvoiceStatus.PAID)
    return gateway


@pytest.fixture
def uow(session, events) -> UnitOfWork:
    return UnitOfWork(session, events)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger(uow, gateway, settings) -> EscrowLedger:
    return EscrowLedger(uow, gateway, settings)


@pytest.fixture
def strikes(uow, settings) -> StrikeService:
    return StrikeService(uow, settings)


@pytest.fixture
def disputes(uow, ledger, strikes, settings) -> DisputeEngine:
    return DisputeEngine(uow, ledger, strikes, settings)


@pytest.fixture
def tracker(uow) -> ProductionTracker:
    return ProductionTracker(uow)


@pytest.fixture
def reconciler(uow, ledger, gateway) -> PaymentReconciler:
    return PaymentReconciler(uow, ledger, gateway)


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def parties() -> dict[str, uuid.UUID]:
    """Deterministic ids for the people involved in a request."""
    return {
        "customer": uuid.UUID("00000000-0000-0000-0000-00000000c001"),
        "designer": uuid.UUID("00000000-0000-0000-0000-00000000d001"),
        "shop": uuid.UUID("00000000-0000-0000-0000-00000000e001"),
        "shop_owner": uuid.UUID("00000000-0000-0000-0000-00000000f001"),
        "admin": uuid.UUID("00000000-0000-0000-0000-00000000a001"),
    }


@pytest.fixture
def make_request(session, parties):
    """Insert a customization request (design 1000 + product 400 + printing 100)."""

    async def _make(**overrides: Any) -> CustomizationRequest:
        values: dict[str, Any] = {
            "customer_id": parties["customer"],
            "designer_id": parties["designer"],
            "printing_shop_id": parties["shop"],
            "shop_owner_id": parties["shop_owner"],
            "status": RequestStatus.APPROVED.value,
            "design_fee": Decimal("1000.00"),
            "product_cost": Decimal("400.00"),
            "printing_cost": Decimal("100.00"),
            "assigned_at": datetime.now(UTC),
        }
        values.update(overrides)
        request = CustomizationRequest(**values)
        session.add(request)
        await session.commit()
        return request

    return _make


@pytest.fixture
def make_held_request(make_request, ledger):
    """Insert a request and hold its full 1500.00 upfront on INVOICE_ID."""

    async def _make(**overrides: Any) -> CustomizationRequest:
        request = await make_request(**overrides)
        await ledger.hold_funds(
            request.id,
            Decimal("1500.00"),
            PaymentType.UPFRONT,
            payment_reference=INVOICE_ID,
        )
        return request

    return _make


@pytest.fixture
def make_order(session, parties):
    """Insert a pending product order of 1500.00."""

    async def _make(**overrides: Any) -> Order:
        values: dict[str, Any] = {
            "customer_id": parties["customer"],
            "business_owner_id": parties["shop_owner"],
            "total_amount": Decimal("1500.00"),
            "product_subtotal": Decimal("1500.00"),
            "status_history": [],
        }
        values.update(overrides)
        order = Order(**values)
        session.add(order)
        await session.commit()
        return order

    return _make
