"""Domain layer: pure business logic with zero framework dependencies."""

from marketplace_escrow.domain.commission import Commission, calculate_commission
from marketplace_escrow.domain.enums import (
    DisputeStage,
    EscrowStatus,
    EventType,
    ProductionStatus,
)
from marketplace_escrow.domain.exceptions import (
    EscrowFrozenError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
)
from marketplace_escrow.domain.models import LegPayout, PaymentState
from marketplace_escrow.domain.protocols import EventBus, PaymentGateway
from marketplace_escrow.domain.state_machine import (
    DisputeStateMachine,
    EscrowStateMachine,
    ProductionStateMachine,
    validate_transition,
)

__all__ = [
    "Commission",
    "calculate_commission",
    "DisputeStage",
    "EscrowStatus",
    "EventType",
    "ProductionStatus",
    "EscrowFrozenError",
    "InvalidStateError",
    "MarketplaceError",
    "NotFoundError",
    "LegPayout",
    "PaymentState",
    "EventBus",
    "PaymentGateway",
    "DisputeStateMachine",
    "EscrowStateMachine",
    "ProductionStateMachine",
    "validate_transition",
]
