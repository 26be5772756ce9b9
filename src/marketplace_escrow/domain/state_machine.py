"""Lifecycle guards for escrow funds, disputes, production and orders.

Uses python-statemachine to enforce legal state transitions at the domain
level. A machine is instantiated at the persisted status, the named event is
fired, and the resulting status is what the service writes back. An illegal
transition (e.g. released -> held) raises TransitionNotAllowed before any
row is touched.

Escrow transition table:
    pending   -> held       (hold_confirmed)
    held      -> frozen     (dispute_opened)
    frozen    -> held       (dispute_closed)
    held      -> refunded   (fully_refunded)
    frozen    -> refunded   (fully_refunded)
    held      -> released   (settled)
    frozen    -> released   (settled)

Dispute transition table:
    filed                  -> partial_refund_offered  (offer_partial_refund)
    filed                  -> accepted                (accept)
    partial_refund_offered -> accepted                (accept)
    partial_refund_offered -> partial_refund_accepted (accept_offer)
    partial_refund_offered -> filed                   (reject_offer)
    filed                  -> admin_review            (escalate)
    filed                  -> admin_resolved          (admin_resolve)
    partial_refund_offered -> admin_resolved          (admin_resolve)
    admin_review           -> admin_resolved          (admin_resolve)
    filed                  -> cancelled               (cancel)

Production transition table:
    confirmed     -> in_progress    (start)
    in_progress   -> quality_check  (submit_for_quality_check)
    in_progress   -> completed      (complete)
    quality_check -> completed      (complete)

Order transition table:
    pending    -> processing  (begin_processing)
    pending    -> delivered   (deliver)   design-only orders
    pending    -> cancelled   (cancel)
    processing -> shipped     (ship)
    processing -> cancelled   (cancel)
    shipped    -> delivered   (deliver)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from marketplace_escrow.domain.exceptions import InvalidStateError


class _PersistedStatusMixin:
    """Start a machine at a persisted status value instead of its initial state."""

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the StrEnum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the ids of the events that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class EscrowStateMachine(_PersistedStatusMixin, StateMachine):
    """Guards the escrow status of a customization request's funds.

    Usage:
        sm = EscrowStateMachine(current_status="held")
        sm.dispute_opened()
        sm.status  # "frozen"
    """

    PENDING = State("Pending", value="pending", initial=True)
    HELD = State("Held", value="held")
    FROZEN = State("Frozen", value="frozen")
    RELEASED = State("Released", value="released", final=True)
    REFUNDED = State("Refunded", value="refunded", final=True)

    hold_confirmed = PENDING.to(HELD)

    dispute_opened = HELD.to(FROZEN)
    dispute_closed = FROZEN.to(HELD)

    fully_refunded = HELD.to(REFUNDED) | FROZEN.to(REFUNDED)
    settled = HELD.to(RELEASED) | FROZEN.to(RELEASED)

    def __init__(self, current_status: str = "pending") -> None:
        super().__init__(current_status=current_status)


class DisputeStateMachine(_PersistedStatusMixin, StateMachine):
    """Guards the stage of a dispute."""

    FILED = State("Filed", value="filed", initial=True)
    PARTIAL_REFUND_OFFERED = State("Partial refund offered", value="partial_refund_offered")
    ADMIN_REVIEW = State("Admin review", value="admin_review")
    ACCEPTED = State("Accepted", value="accepted", final=True)
    PARTIAL_REFUND_ACCEPTED = State(
        "Partial refund accepted", value="partial_refund_accepted", final=True
    )
    ADMIN_RESOLVED = State("Admin resolved", value="admin_resolved", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    # Accused responses
    offer_partial_refund = FILED.to(PARTIAL_REFUND_OFFERED)
    accept = FILED.to(ACCEPTED) | PARTIAL_REFUND_OFFERED.to(ACCEPTED)

    # Filer responses
    accept_offer = PARTIAL_REFUND_OFFERED.to(PARTIAL_REFUND_ACCEPTED)
    reject_offer = PARTIAL_REFUND_OFFERED.to(FILED)
    cancel = FILED.to(CANCELLED)

    # Admin
    escalate = FILED.to(ADMIN_REVIEW)
    admin_resolve = (
        FILED.to(ADMIN_RESOLVED)
        | PARTIAL_REFUND_OFFERED.to(ADMIN_RESOLVED)
        | ADMIN_REVIEW.to(ADMIN_RESOLVED)
    )

    def __init__(self, current_status: str = "filed") -> None:
        super().__init__(current_status=current_status)


class ProductionStateMachine(_PersistedStatusMixin, StateMachine):
    """Guards physical fulfillment of a customization request."""

    CONFIRMED = State("Confirmed", value="confirmed", initial=True)
    IN_PROGRESS = State("In progress", value="in_progress")
    QUALITY_CHECK = State("Quality check", value="quality_check")
    COMPLETED = State("Completed", value="completed", final=True)

    start = CONFIRMED.to(IN_PROGRESS)
    submit_for_quality_check = IN_PROGRESS.to(QUALITY_CHECK)
    complete = IN_PROGRESS.to(COMPLETED) | QUALITY_CHECK.to(COMPLETED)

    def __init__(self, current_status: str = "confirmed") -> None:
        super().__init__(current_status=current_status)


class OrderStateMachine(_PersistedStatusMixin, StateMachine):
    """Guards the fulfillment status of a marketplace order."""

    PENDING = State("Pending", value="pending", initial=True)
    PROCESSING = State("Processing", value="processing")
    SHIPPED = State("Shipped", value="shipped")
    DELIVERED = State("Delivered", value="delivered", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    begin_processing = PENDING.to(PROCESSING)
    ship = PROCESSING.to(SHIPPED)
    deliver = SHIPPED.to(DELIVERED) | PENDING.to(DELIVERED)
    cancel = PENDING.to(CANCELLED) | PROCESSING.to(CANCELLED)

    def __init__(self, current_status: str = "pending") -> None:
        super().__init__(current_status=current_status)


def validate_transition(
    machine_cls: type[StateMachine], current_status: str, event_name: str
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary machine at ``current_status``, fires the named event,
    and returns the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


def fire_transition(
    machine_cls: type[StateMachine], current_status: str, event_name: str
) -> str:
    """Like validate_transition, but raises the domain InvalidStateError."""
    try:
        return validate_transition(machine_cls, str(current_status), event_name)
    except TransitionNotAllowed as err:
        raise InvalidStateError(str(current_status), event_name) from err
