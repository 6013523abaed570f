"""HTTP API routes for the Pluribots plan execution engine.

This module defines the endpoints for the plan lifecycle (approve, continue,
refine, abort), plan and deliverable lookups, provider health and the
service health check. Engine events are streamed over SSE in stream.py.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, status

from llm.health import get_health_checker
from models.schemas import (
    ApprovePlanRequest,
    DeliverableListResponse,
    HealthResponse,
    PlanActionResponse,
    PlanResponse,
    ProviderHealthResponse,
    RefineStepRequest,
)
from plan_manager import PlanBusyError, PlanError, PlanNotFoundError, PlanStateError

if TYPE_CHECKING:
    from plan_manager import PlanManager

logger = structlog.get_logger(__name__)

router = APIRouter()

ConversationId = Annotated[str, Path(description="The conversation ID", min_length=1)]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _events_url(conversation_id: str) -> str:
    return f"/api/conversations/{conversation_id}/events"


def _to_http_error(error: PlanError) -> HTTPException:
    """Map a plan lifecycle error to its HTTP status."""
    if isinstance(error, PlanNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PlanBusyError | PlanStateError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))


# Plan manager dependency (set during application startup)
_plan_manager: PlanManager | None = None


def set_plan_manager(manager: PlanManager) -> None:
    """Set the plan manager instance for the routes.

    This should be called during application startup to inject the plan
    manager dependency.

    Args:
        manager: The PlanManager instance to use for all routes.
    """
    global _plan_manager
    _plan_manager = manager
    logger.info("plan_manager_configured")


def get_plan_manager() -> PlanManager:
    """Get the plan manager instance.

    Raises:
        RuntimeError: If the plan manager has not been configured.
    """
    if _plan_manager is None:
        logger.error("plan_manager_not_configured")
        raise RuntimeError("PlanManager not configured. Call set_plan_manager() during startup.")
    return _plan_manager


# -----------------------------------------------------------------------------
# Plan lifecycle
# -----------------------------------------------------------------------------


@router.post(
    "/api/conversations/{conversation_id}/plan/approve",
    response_model=PlanActionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Approve a plan",
    description="Start executing the approved steps in the background.",
)
async def approve_plan(
    conversation_id: ConversationId,
    request: ApprovePlanRequest,
) -> PlanActionResponse:
    """Approve a plan and start its first execution group.

    Raises:
        HTTPException: 409 if an operation is already running.
    """
    manager = get_plan_manager()
    try:
        await manager.approve_plan(
            conversation_id=conversation_id,
            steps=request.steps,
            user_id=request.user_id,
            model_override=request.model_override,
            image=request.image,
        )
    except PlanError as e:
        logger.warning("approve_plan_rejected", conversation_id=conversation_id, error=str(e))
        raise _to_http_error(e) from e

    return PlanActionResponse(
        conversation_id=conversation_id,
        message=f"Plan with {len(request.steps)} steps started",
        events_url=_events_url(conversation_id),
    )


@router.post(
    "/api/conversations/{conversation_id}/plan/continue",
    response_model=PlanActionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Continue a paused plan",
    description="Run the next group of a paused plan, or retry a failed group.",
)
async def continue_plan(conversation_id: ConversationId) -> PlanActionResponse:
    manager = get_plan_manager()
    try:
        await manager.continue_plan(conversation_id)
    except PlanError as e:
        logger.warning("continue_plan_rejected", conversation_id=conversation_id, error=str(e))
        raise _to_http_error(e) from e

    return PlanActionResponse(
        conversation_id=conversation_id,
        message="Plan resumed",
        events_url=_events_url(conversation_id),
    )


@router.post(
    "/api/conversations/{conversation_id}/plan/steps/{instance_id}/refine",
    response_model=PlanActionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Refine a completed step",
    description="Re-run a completed step with feedback without moving the plan cursor.",
)
async def refine_step(
    conversation_id: ConversationId,
    instance_id: Annotated[str, Path(description="The step's instance ID")],
    request: RefineStepRequest,
) -> PlanActionResponse:
    """Schedule a refinement of one step.

    Raises:
        HTTPException: 404 for an unknown plan or step, 409 when the step
            has not completed or an operation is running.
    """
    manager = get_plan_manager()
    try:
        await manager.refine(
            conversation_id=conversation_id,
            instance_id=instance_id,
            feedback=request.feedback,
            user_id=request.user_id,
        )
    except PlanError as e:
        logger.warning(
            "refine_step_rejected",
            conversation_id=conversation_id,
            instance_id=instance_id,
            error=str(e),
        )
        raise _to_http_error(e) from e

    return PlanActionResponse(
        conversation_id=conversation_id,
        message=f"Refining {instance_id}",
        events_url=_events_url(conversation_id),
    )


@router.post(
    "/api/conversations/{conversation_id}/plan/abort",
    status_code=status.HTTP_200_OK,
    summary="Abort a plan",
    description="Cancel the running operation and discard the plan.",
)
async def abort_plan(conversation_id: ConversationId) -> dict[str, str]:
    manager = get_plan_manager()
    try:
        await manager.abort_plan(conversation_id)
    except PlanError as e:
        raise _to_http_error(e) from e

    logger.info("plan_abort_requested", conversation_id=conversation_id)
    return {"message": f"Plan for {conversation_id} aborted"}


# -----------------------------------------------------------------------------
# Lookups
# -----------------------------------------------------------------------------


@router.get(
    "/api/conversations/{conversation_id}/plan",
    response_model=PlanResponse,
    summary="Get the executing plan",
)
async def get_plan(conversation_id: ConversationId) -> PlanResponse:
    plan = await get_plan_manager().get_plan(conversation_id)
    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No executing plan for conversation {conversation_id}",
        )
    return PlanResponse.from_plan(plan)


@router.get(
    "/api/conversations/{conversation_id}/deliverables",
    response_model=DeliverableListResponse,
    summary="List deliverables",
    description="Deliverables produced in a conversation, oldest first, including refinements.",
)
async def list_deliverables(conversation_id: ConversationId) -> DeliverableListResponse:
    deliverables = await get_plan_manager().store.list_deliverables(conversation_id)
    return DeliverableListResponse(conversation_id=conversation_id, deliverables=deliverables)


@router.get(
    "/api/providers/health",
    response_model=ProviderHealthResponse,
    summary="LLM provider health",
    description="Cached credential and quota status of every LLM provider.",
)
async def provider_health() -> ProviderHealthResponse:
    statuses = await get_health_checker().get_status()
    return ProviderHealthResponse(
        providers={name: health.to_dict() for name, health in statuses.items()}
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Service health and number of plans currently executing.",
)
async def health_check() -> HealthResponse:
    active_plans = 0
    try:
        active_plans = get_plan_manager().active_count
    except RuntimeError:
        # PlanManager not configured yet (e.g., during startup)
        logger.debug("health_check_without_plan_manager")

    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        active_plans=active_plans,
    )
