"""Escrow ledger REST API routes.

Money-moving endpoints are admin/internal; the marketplace frontend only
reads. Payment confirmation normally arrives through the payments router,
which calls the same ledger.

Routes:
    GET    /api/v1/escrow/{request_id}                  Payment state
    GET    /api/v1/escrow/{request_id}/eligibility      Can each leg be released now
    GET    /api/v1/escrow/{request_id}/events           Audit trail
    POST   /api/v1/escrow/{request_id}/hold            Record the first payment
    POST   /api/v1/escrow/{request_id}/payments        Record a later installment
    POST   /api/v1/escrow/{request_id}/release/designer Pay the designer leg
    POST   /api/v1/escrow/{request_id}/release/shop    Pay the shop leg
    POST   /api/v1/escrow/{request_id}/freeze          Freeze (admin)
    POST   /api/v1/escrow/{request_id}/unfreeze        Unfreeze (admin)
    POST   /api/v1/escrow/{request_id}/refund          Refund to the customer (admin)
"""

from __future__ import annotations

import uuid  # noqa: TC003 - path parameters are resolved at runtime

from fastapi import APIRouter, Depends

from marketplace_escrow.api.deps import Actor, get_ledger, get_uow, require_admin
from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork  # noqa: TC001
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.escrow import (
    EscrowEventResponse,
    FreezeRequest,
    HoldFundsRequest,
    PaymentStateResponse,
    RecordPaymentRequest,
    RefundRequest,
    ReleaseEligibilityResponse,
)
from marketplace_escrow.services.escrow_ledger import EscrowLedger  # noqa: TC001

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{request_id}",
    response_model=PaymentStateResponse,
    summary="Get the payment state of a customization request",
)
async def get_escrow_status(
    request_id: uuid.UUID,
    ledger: EscrowLedger = Depends(get_ledger),
) -> PaymentStateResponse:
    state = await ledger.get_escrow_status(request_id)
    return PaymentStateResponse.model_validate(state)


@router.get(
    "/{request_id}/eligibility",
    response_model=ReleaseEligibilityResponse,
    summary="Check whether each payout leg can be released now",
)
async def get_release_eligibility(
    request_id: uuid.UUID,
    ledger: EscrowLedger = Depends(get_ledger),
) -> ReleaseEligibilityResponse:
    return ReleaseEligibilityResponse(
        request_id=request_id,
        designer=await ledger.can_release_designer_payment(request_id),
        shop=await ledger.can_release_shop_payment(request_id),
    )


@router.get(
    "/{request_id}/events",
    response_model=list[EscrowEventResponse],
    summary="Get the audit trail of a customization request",
)
async def get_escrow_events(
    request_id: uuid.UUID,
    uow: UnitOfWork = Depends(get_uow),
) -> list[EscrowEventResponse]:
    async with uow:
        events = await uow.audit.get_for_entity("customization_request", request_id)
    return [EscrowEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Funding
# ---------------------------------------------------------------------------


@router.post(
    "/{request_id}/hold",
    response_model=PaymentStateResponse,
    summary="Record the first payment and hold funds",
)
async def hold_funds(
    request_id: uuid.UUID,
    body: HoldFundsRequest,
    ledger: EscrowLedger = Depends(get_ledger),
    actor: Actor = Depends(require_admin),
) -> PaymentStateResponse:
    """pending -> held. Normally triggered by a confirmed gateway payment."""
    state = await ledger.hold_funds(
        request_id,
        body.amount,
        body.payment_type,
        payment_reference=body.payment_reference,
        actor=str(actor.id),
    )
    return PaymentStateResponse.model_validate(state)


@router.post(
    "/{request_id}/payments",
    response_model=PaymentStateResponse,
    summary="Record a later installment",
)
async def record_payment(
    request_id: uuid.UUID,
    body: RecordPaymentRequest,
    ledger: EscrowLedger = Depends(get_ledger),
    actor: Actor = Depends(require_admin),
) -> PaymentStateResponse:
    state = await ledger.record_payment(request_id, body.amount, actor=str(actor.id))
    return PaymentStateResponse.model_validate(state)


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


@router.post(
    "/{request_id}/release/designer",
    response_model=PaymentStateResponse,
    summary="Release the designer payout",
)
async def release_designer_payment(
    request_id: uuid.UUID,
    ledger: EscrowLedger = Depends(get_ledger),
    actor: Actor = Depends(require_admin),
) -> PaymentStateResponse:
    """Idempotent: a second call returns the same state with already_processed=true."""
    state = await ledger.release_designer_payment(request_id, actor=str(actor.id))
    return PaymentStateResponse.model_validate(state)


@router.post(
    "/{request_id}/release/shop",
    response_model=PaymentStateResponse,
    summary="Release the printing shop payout",
)
async def release_shop_payment(
    request_id: uuid.UUID,
    ledger: EscrowLedger = Depends(get_ledger),
    actor: Actor = Depends(require_admin),
) -> PaymentStateResponse:
    state = await ledger.release_shop_payment(request_id, actor=str(actor.id))
    return PaymentStateResponse.model_validate(state)


# ---------------------------------------------------------------------------
# Admin controls
# ---------------------------------------------------------------------------


@router.post(
    "/{request_id}/freeze",
    response_model=PaymentStateResponse,
    summary="Freeze escrowed funds",
)
async def freeze_escrow(
    request_id: uuid.UUID,
    body: FreezeRequest,
    ledger: EscrowLedger = Depends(get_ledger),
    actor: Actor = Depends(require_admin),
) -> PaymentStateResponse:
    state = await ledger.freeze_escrow(request_id, actor=str(actor.id), reason=body.reason)
    return PaymentStateResponse.model_validate(state)


@router.post(
    "/{request_id}/unfreeze",
    response_model=PaymentStateResponse,
    summary="Unfreeze escrowed funds",
)
async def unfreeze_escrow(
    request_id: uuid.UUID,
    body: FreezeRequest,
    ledger: EscrowLedger = Depends(get_ledger),
    actor: Actor = Depends(require_admin),
) -> PaymentStateResponse:
    state = await ledger.unfreeze_escrow(request_id, actor=str(actor.id), reason=body.reason)
    return PaymentStateResponse.model_validate(state)


@router.post(
    "/{request_id}/refund",
    response_model=PaymentStateResponse,
    summary="Refund escrowed funds to the customer",
)
async def refund_escrow(
    request_id: uuid.UUID,
    body: RefundRequest,
    ledger: EscrowLedger = Depends(get_ledger),
    actor: Actor = Depends(require_admin),
) -> PaymentStateResponse:
    """Fails with 409 REFUND_EXCEEDS_BALANCE when amount > refundable balance."""
    state = await ledger.refund_escrow(
        request_id, body.amount, body.reason, leg=body.leg, actor=str(actor.id)
    )
    logger.info("api.escrow_refunded", request_id=request_id, amount=body.amount)
    return PaymentStateResponse.model_validate(state)
