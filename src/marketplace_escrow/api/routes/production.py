"""Production tracking REST API routes (printing shop side).

Routes:
    GET    /api/v1/production/{request_id}           Production sub-state
    POST   /api/v1/production/{request_id}/confirm   Shop accepts the job
    POST   /api/v1/production/{request_id}/start     Work begins
    PATCH  /api/v1/production/{request_id}           Progress update
    POST   /api/v1/production/{request_id}/complete  Finish after quality check
    GET    /api/v1/production/shops/{shop_id}/stats  Requests per production status
"""

from __future__ import annotations

import uuid  # noqa: TC003 - path parameters are resolved at runtime

from fastapi import APIRouter, Depends

from marketplace_escrow.api.deps import Actor, get_actor, get_production_tracker, get_uow
from marketplace_escrow.domain.exceptions import NotFoundError
from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork  # noqa: TC001
from marketplace_escrow.schemas.production import (
    CompleteProductionRequest,
    ConfirmProductionRequest,
    ProductionResponse,
    ProductionStatsResponse,
    StartProductionRequest,
    UpdateProductionRequest,
)
from marketplace_escrow.services.production_tracker import ProductionTracker  # noqa: TC001

router = APIRouter(prefix="/api/v1/production", tags=["Production"])


@router.get(
    "/shops/{shop_id}/stats",
    response_model=ProductionStatsResponse,
    summary="Count a shop's requests per production status",
)
async def get_production_stats(
    shop_id: uuid.UUID,
    tracker: ProductionTracker = Depends(get_production_tracker),
) -> ProductionStatsResponse:
    counts = await tracker.get_production_stats(shop_id)
    return ProductionStatsResponse(shop_id=shop_id, counts=counts)


@router.get(
    "/{request_id}",
    response_model=ProductionResponse,
    summary="Get the production state of a request",
)
async def get_production(
    request_id: uuid.UUID,
    uow: UnitOfWork = Depends(get_uow),
) -> ProductionResponse:
    async with uow:
        request = await uow.requests.get_by_id(request_id)
    if request is None:
        raise NotFoundError("CustomizationRequest", request_id)
    return ProductionResponse.model_validate(request)


@router.post(
    "/{request_id}/confirm",
    response_model=ProductionResponse,
    summary="Confirm production",
)
async def confirm_production(
    request_id: uuid.UUID,
    body: ConfirmProductionRequest,
    tracker: ProductionTracker = Depends(get_production_tracker),
    actor: Actor = Depends(get_actor),
) -> ProductionResponse:
    """Requires an approved design and upfront / >=50% payment."""
    request = await tracker.confirm_production(
        request_id,
        actor.id,
        estimated_completion_date=body.estimated_completion_date,
        notes=body.notes,
    )
    return ProductionResponse.model_validate(request)


@router.post(
    "/{request_id}/start",
    response_model=ProductionResponse,
    summary="Start production",
)
async def start_production(
    request_id: uuid.UUID,
    body: StartProductionRequest,
    tracker: ProductionTracker = Depends(get_production_tracker),
    actor: Actor = Depends(get_actor),
) -> ProductionResponse:
    request = await tracker.start_production(request_id, actor.id, materials=body.materials)
    return ProductionResponse.model_validate(request)


@router.patch(
    "/{request_id}",
    response_model=ProductionResponse,
    summary="Update production progress",
)
async def update_production(
    request_id: uuid.UUID,
    body: UpdateProductionRequest,
    tracker: ProductionTracker = Depends(get_production_tracker),
    actor: Actor = Depends(get_actor),
) -> ProductionResponse:
    request = await tracker.update_production(
        request_id,
        actor.id,
        status=body.status,
        notes=body.notes,
        materials=body.materials,
        estimated_completion_date=body.estimated_completion_date,
        quality_check_notes=body.quality_check_notes,
    )
    return ProductionResponse.model_validate(request)


@router.post(
    "/{request_id}/complete",
    response_model=ProductionResponse,
    summary="Complete production",
)
async def complete_production(
    request_id: uuid.UUID,
    body: CompleteProductionRequest,
    tracker: ProductionTracker = Depends(get_production_tracker),
    actor: Actor = Depends(get_actor),
) -> ProductionResponse:
    request = await tracker.complete_production(
        request_id,
        actor.id,
        quality_check_passed=body.quality_check_passed,
        quality_check_notes=body.quality_check_notes,
    )
    return ProductionResponse.model_validate(request)
