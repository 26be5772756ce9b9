"""Dispute REST API routes.

Routes:
    GET    /api/v1/disputes/eligibility                 Can the caller file a dispute
    POST   /api/v1/disputes                             File a dispute (freezes escrow)
    GET    /api/v1/disputes/{id}                        Dispute details
    POST   /api/v1/disputes/{id}/accept                 Accused concedes (full refund)
    POST   /api/v1/disputes/{id}/offer                  Accused offers a partial refund
    POST   /api/v1/disputes/{id}/offer/accept           Filer accepts the offer
    POST   /api/v1/disputes/{id}/offer/reject           Filer rejects the offer
    POST   /api/v1/disputes/{id}/cancel                 Filer withdraws
    POST   /api/v1/disputes/{id}/resolve                Admin decision
    POST   /api/v1/disputes/escalate-overdue            Admin: escalate stale disputes
    GET    /api/v1/disputes/strikes/{role}/{party_id}   Strike count of a profile
"""

from __future__ import annotations

import uuid  # noqa: TC003 - path and query parameters are resolved at runtime

from fastapi import APIRouter, Depends

from marketplace_escrow.api.deps import (
    Actor,
    get_actor,
    get_dispute_engine,
    get_strike_service,
    require_admin,
)
from marketplace_escrow.domain.enums import PartyRole  # noqa: TC001
from marketplace_escrow.domain.exceptions import ForbiddenError
from marketplace_escrow.schemas.disputes import (
    DisputeResponse,
    EligibilityResponse,
    EscalationResponse,
    FileDisputeRequest,
    PartialRefundOfferRequest,
    ResolveDisputeRequest,
)
from marketplace_escrow.services.dispute_engine import DisputeEngine  # noqa: TC001
from marketplace_escrow.services.strike_service import StrikeService  # noqa: TC001

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])


# ---------------------------------------------------------------------------
# Filing
# ---------------------------------------------------------------------------


@router.get(
    "/eligibility",
    response_model=EligibilityResponse,
    summary="Check whether the caller may file a dispute",
)
async def check_eligibility(
    order_id: uuid.UUID | None = None,
    customization_request_id: uuid.UUID | None = None,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> EligibilityResponse:
    result = await engine.can_file_dispute(
        actor.id, order_id=order_id, customization_request_id=customization_request_id
    )
    return EligibilityResponse.model_validate(result)


@router.post(
    "",
    response_model=DisputeResponse,
    status_code=201,
    summary="File a dispute",
)
async def file_dispute(
    body: FileDisputeRequest,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> DisputeResponse:
    """Freezes the escrow behind the order or request in the same transaction."""
    dispute = await engine.file_dispute(
        actor.id,
        body.category,
        body.title,
        body.description,
        order_id=body.order_id,
        customization_request_id=body.customization_request_id,
        evidence_urls=body.evidence_urls,
    )
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/escalate-overdue",
    response_model=EscalationResponse,
    summary="Escalate disputes past their negotiation deadline",
)
async def escalate_overdue(
    engine: DisputeEngine = Depends(get_dispute_engine),
    _admin: Actor = Depends(require_admin),
) -> EscalationResponse:
    escalated = await engine.escalate_overdue_disputes()
    return EscalationResponse(escalated=[d.id for d in escalated])


@router.get(
    "/strikes/{party_role}/{party_id}",
    summary="Count strikes against a designer or shop profile",
)
async def get_strike_count(
    party_role: PartyRole,
    party_id: uuid.UUID,
    strikes: StrikeService = Depends(get_strike_service),
    _admin: Actor = Depends(require_admin),
) -> dict:
    count = await strikes.count_strikes(party_id, party_role)
    return {"party_id": str(party_id), "party_role": party_role.value, "strikes": count}


@router.get(
    "/{dispute_id}",
    response_model=DisputeResponse,
    summary="Get dispute details",
)
async def get_dispute(
    dispute_id: uuid.UUID,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> DisputeResponse:
    dispute = await engine.get_dispute(dispute_id)
    if not actor.is_admin and actor.id not in (dispute.filed_by, dispute.accused_party_id):
        raise ForbiddenError("Only the parties to a dispute can view it")
    return DisputeResponse.model_validate(dispute)


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


@router.post("/{dispute_id}/accept", response_model=DisputeResponse, summary="Accept a dispute")
async def accept_dispute(
    dispute_id: uuid.UUID,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> DisputeResponse:
    dispute = await engine.accept_dispute(dispute_id, actor.id)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{dispute_id}/offer",
    response_model=DisputeResponse,
    summary="Offer a partial refund",
)
async def offer_partial_refund(
    dispute_id: uuid.UUID,
    body: PartialRefundOfferRequest,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> DisputeResponse:
    dispute = await engine.offer_partial_refund(
        dispute_id,
        actor.id,
        amount=body.amount,
        percentage=body.percentage,
        message=body.message,
    )
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{dispute_id}/offer/accept",
    response_model=DisputeResponse,
    summary="Accept the partial refund offer",
)
async def accept_partial_refund(
    dispute_id: uuid.UUID,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> DisputeResponse:
    dispute = await engine.accept_partial_refund(dispute_id, actor.id)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{dispute_id}/offer/reject",
    response_model=DisputeResponse,
    summary="Reject the partial refund offer",
)
async def reject_partial_refund(
    dispute_id: uuid.UUID,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> DisputeResponse:
    dispute = await engine.reject_partial_refund(dispute_id, actor.id)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/cancel", response_model=DisputeResponse, summary="Cancel a dispute")
async def cancel_dispute(
    dispute_id: uuid.UUID,
    engine: DisputeEngine = Depends(get_dispute_engine),
    actor: Actor = Depends(get_actor),
) -> DisputeResponse:
    dispute = await engine.cancel_dispute(dispute_id, actor.id)
    return DisputeResponse.model_validate(dispute)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post(
    "/{dispute_id}/resolve",
    response_model=DisputeResponse,
    summary="Resolve a dispute (admin)",
)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    body: ResolveDisputeRequest,
    engine: DisputeEngine = Depends(get_dispute_engine),
    admin: Actor = Depends(require_admin),
) -> DisputeResponse:
    dispute = await engine.resolve_dispute(dispute_id, body.to_resolution(), admin.id)
    return DisputeResponse.model_validate(dispute)
