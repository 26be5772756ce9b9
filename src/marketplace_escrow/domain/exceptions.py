"""Domain exceptions for the marketplace escrow engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

"Already processed" is deliberately not an exception: idempotent replays of
payouts return a PaymentState with ``already_processed=True``.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup / authorization ---


class NotFoundError(MarketplaceError):
    """Raised when a request, order or dispute id does not exist. Never retried."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code="NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = str(entity_id)


class ForbiddenError(MarketplaceError):
    """Raised when the actor lacks the required relationship to the entity."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FORBIDDEN")


class ValidationError(MarketplaceError):
    """Raised when input is well-formed but violates a business rule."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")


# --- State errors ---


class InvalidStateError(MarketplaceError):
    """Raised when an operation is attempted outside its legal source state.

    Carries the current state so the caller can decide to retry later or abandon.
    """

    def __init__(self, current_state: str, attempted: str, detail: str = "") -> None:
        message = f"Cannot {attempted} from state '{current_state}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message=message, code="INVALID_STATE")
        self.current_state = str(current_state)
        self.attempted = attempted


class RefundExceedsBalanceError(InvalidStateError):
    """Raised when a refund is larger than the funds still refundable."""

    def __init__(self, requested: str, refundable: str) -> None:
        super().__init__(
            current_state="held",
            attempted="refund",
            detail=f"requested {requested} exceeds refundable balance {refundable}",
        )
        self.code = "REFUND_EXCEEDS_BALANCE"
        self.requested = requested
        self.refundable = refundable


class EscrowFrozenError(MarketplaceError):
    """Raised when a payout is attempted while a dispute holds the escrow frozen."""

    def __init__(self, request_id: object) -> None:
        super().__init__(
            message=f"Escrow is frozen by an open dispute: {request_id}",
            code="ESCROW_FROZEN",
        )
        self.request_id = str(request_id)


class NothingToDisputeError(MarketplaceError):
    """Raised when a dispute targets funds that are no longer held."""

    def __init__(self, request_id: object, escrow_status: str) -> None:
        super().__init__(
            message=(
                f"No held funds to dispute for request {request_id} "
                f"(escrow status: {escrow_status})"
            ),
            code="NOTHING_TO_DISPUTE",
        )
        self.escrow_status = str(escrow_status)


# --- Payment gateway ---


class GatewayError(MarketplaceError):
    """Raised when the payment gateway rejects a call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message=message, code="GATEWAY_ERROR")
        self.status_code = status_code


class GatewayUnavailableError(GatewayError):
    """Raised on network failures or 5xx responses from the payment gateway.

    Money-moving calls are never retried internally; the caller owns the retry.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message=message, status_code=status_code)
        self.code = "GATEWAY_UNAVAILABLE"
