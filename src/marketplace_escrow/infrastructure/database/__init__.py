"""Database infrastructure: engine, ORM models, repositories and unit of work."""

from marketplace_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from marketplace_escrow.infrastructure.database.orm_models import (
    Base,
    CustomizationRequest,
    DesignerEarning,
    Dispute,
    EscrowEvent,
    Order,
    Strike,
)
from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork

__all__ = [
    "Base",
    "CustomizationRequest",
    "DesignerEarning",
    "Dispute",
    "EscrowEvent",
    "Order",
    "Strike",
    "UnitOfWork",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
