"""Models module for Pydantic schemas and persistence.

This module exposes the plan/deliverable models and the request/response
models used by the API.
"""

from models.schemas import (
    ApprovePlanRequest,
    Deliverable,
    DeliverableListResponse,
    DeliverableType,
    ExecutingPlan,
    HealthResponse,
    ImageAttachment,
    PlanActionResponse,
    PlanResponse,
    PlanStatus,
    ProviderHealthResponse,
    RefineStepRequest,
    Step,
)

__all__ = [
    "ApprovePlanRequest",
    "Deliverable",
    "DeliverableListResponse",
    "DeliverableType",
    "ExecutingPlan",
    "HealthResponse",
    "ImageAttachment",
    "PlanActionResponse",
    "PlanResponse",
    "PlanStatus",
    "ProviderHealthResponse",
    "RefineStepRequest",
    "Step",
]
