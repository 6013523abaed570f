"""Pydantic schemas for plan state, deliverables and API request/response models.

This module defines the data models used by the execution engine, the plan
store and the HTTP API. All models use Pydantic v2 with strict type validation.
"""

import base64
import binascii
import time
import uuid
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from artifacts.types import ProjectArtifact


class PlanStatus(StrEnum):
    """Lifecycle status of an executing plan."""

    RUNNING = "running"
    PAUSED = "paused"
    FAILED = "failed"


class DeliverableType(StrEnum):
    """Kind of rendered result a step produces."""

    REPORT = "report"
    DESIGN = "design"
    COPY = "copy"
    VIDEO = "video"
    PROJECT = "project"
    CODE = "code"


class ImageAttachment(BaseModel):
    """An image attached by the user to the conversation turn."""

    data: str = Field(description="Base64-encoded image bytes")
    media_type: str = Field(
        default="image/png",
        pattern=r"^image/(png|jpeg|gif|webp)$",
        examples=["image/png"],
    )

    @field_validator("data")
    @classmethod
    def validate_base64(cls, value: str) -> str:
        """Reject payloads the vendor bindings could not decode."""
        try:
            base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"image data is not valid base64: {e}") from e
        return value


class Step(BaseModel):
    """One agent invocation within a plan."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(description="Which specialized agent runs the step", examples=["web"])
    instance_id: str = Field(
        min_length=1,
        description="Handle unique within the plan",
        examples=["web-1"],
    )
    task: str = Field(min_length=1, description="Instruction text for the agent")
    user_description: str = Field(default="", description="Human-readable summary")
    depends_on: list[str] = Field(
        default_factory=list,
        description="instance_ids this step waits for; unknown ids are ignored",
    )


class ExecutingPlan(BaseModel):
    """Mutable state of one in-flight plan for a conversation.

    Created when the plan is approved, advanced group by group, persisted
    between groups and deleted when the plan finishes or is aborted.
    """

    conversation_id: str
    user_id: str
    steps: list[Step]
    execution_groups: list[list[str]] = Field(default_factory=list)
    current_group_index: int = 0
    completed_instances: list[str] = Field(default_factory=list)
    agent_outputs: dict[str, str] = Field(default_factory=dict)
    artifacts: dict[str, ProjectArtifact] = Field(default_factory=dict)
    model_override: str | None = None
    image: ImageAttachment | None = None
    status: PlanStatus = PlanStatus.RUNNING
    created_at: float = Field(default_factory=time.time)

    def get_step(self, instance_id: str) -> Step | None:
        """Return the step with ``instance_id``, if it is part of the plan."""
        for step in self.steps:
            if step.instance_id == instance_id:
                return step
        return None

    def group_steps(self, index: int) -> list[Step]:
        """Return the steps of group ``index`` in group order."""
        if index < 0 or index >= len(self.execution_groups):
            return []
        steps_by_id = {step.instance_id: step for step in self.steps}
        return [steps_by_id[iid] for iid in self.execution_groups[index] if iid in steps_by_id]

    def pending_steps(self) -> list[Step]:
        """Steps of the current group that have not completed yet."""
        done = set(self.completed_instances)
        return [s for s in self.group_steps(self.current_group_index) if s.instance_id not in done]

    @property
    def is_finished(self) -> bool:
        """True once the cursor is past the last group."""
        return self.current_group_index >= len(self.execution_groups)


class Deliverable(BaseModel):
    """The persisted, user-facing result of one step execution."""

    id: str = Field(default_factory=lambda: f"dlv_{uuid.uuid4().hex[:12]}")
    conversation_id: str
    instance_id: str
    agent_id: str
    title: str
    type: DeliverableType
    content: str = Field(description="Rendered HTML shown in the preview iframe")
    artifact: ProjectArtifact | None = None
    refined: bool = False
    created_at: float = Field(default_factory=time.time)


# =============================================================================
# API request / response models
# =============================================================================


class ApprovePlanRequest(BaseModel):
    """Request body for approving a plan and starting its execution."""

    steps: list[Step] = Field(min_length=1, description="Planner output to execute")
    user_id: str = Field(min_length=1, description="User billed for the plan")
    model_override: str | None = Field(
        default=None,
        description="Model key applied to every step instead of agent defaults",
        examples=["claude-sonnet", "gpt-4o", "gemini-2.5-pro"],
    )
    image: ImageAttachment | None = Field(default=None)

    @field_validator("steps")
    @classmethod
    def validate_unique_instance_ids(cls, steps: list[Step]) -> list[Step]:
        """instance_id must be unique within a plan."""
        seen: set[str] = set()
        for step in steps:
            if step.instance_id in seen:
                raise ValueError(f"duplicate instance_id: {step.instance_id}")
            seen.add(step.instance_id)
        return steps


class RefineStepRequest(BaseModel):
    """Request body for re-running a completed step with feedback."""

    feedback: str = Field(
        min_length=1,
        max_length=10000,
        description="What the user wants changed",
        examples=["Make the hero section darker and add a pricing table."],
    )
    user_id: str | None = Field(
        default=None,
        description="User billed for the refinement; defaults to the plan owner",
    )


class PlanResponse(BaseModel):
    """Snapshot of an executing plan."""

    conversation_id: str
    status: PlanStatus
    current_group_index: int
    execution_groups: list[list[str]]
    completed_instances: list[str]
    total_steps: int

    @classmethod
    def from_plan(cls, plan: ExecutingPlan) -> "PlanResponse":
        return cls(
            conversation_id=plan.conversation_id,
            status=plan.status,
            current_group_index=plan.current_group_index,
            execution_groups=plan.execution_groups,
            completed_instances=plan.completed_instances,
            total_steps=len(plan.steps),
        )


class PlanActionResponse(BaseModel):
    """Response for plan lifecycle actions that run in the background."""

    conversation_id: str
    accepted: bool = True
    message: str
    events_url: str = Field(
        description="Server-Sent Events URL for this conversation",
        examples=["/api/conversations/conv_abc123/events"],
    )


class DeliverableListResponse(BaseModel):
    """Deliverables of a conversation, oldest first."""

    conversation_id: str
    deliverables: list[Deliverable]


class ProviderHealthResponse(BaseModel):
    """Cached health of each LLM provider."""

    providers: dict[str, dict[str, Any]]


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(description="Overall health status")
    timestamp: float = Field(description="Current server timestamp")
    version: str = Field(default="0.1.0", description="API version")
    active_plans: int = Field(default=0, description="Plans with a running background task")
