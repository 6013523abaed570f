"""Plan lifecycle management for the Pluribots engine.

This module provides the PlanManager class that owns the background task
executing each conversation's plan. The HTTP layer calls it to approve,
continue, refine and abort plans; every long-running operation is scheduled
as an asyncio task and reports progress through the event bus.

At most one operation runs per conversation at a time. A request arriving
while one is in flight is rejected with PlanBusyError.
"""

import asyncio
import contextlib
from collections.abc import Coroutine
from typing import Any

import structlog

from agents.registry import is_refine_agent
from agents.tools import ToolExecutor
from engine.orchestrator import Orchestrator
from engine.refinement import RefinementController
from engine.runner import StepRunner
from events.bus import EventBus
from events.types import EngineEvent, EventType
from llm.health import ProviderHealthChecker, get_health_checker
from llm.router import ProviderRouter, get_provider_router
from models.credits import CreditLedger
from models.database import PlanStore
from models.schemas import ExecutingPlan, ImageAttachment, PlanStatus, Step

logger = structlog.get_logger()


class PlanError(Exception):
    """Base class for plan lifecycle errors."""


class PlanNotFoundError(PlanError):
    """No executing plan (or no such step) for the conversation."""


class PlanBusyError(PlanError):
    """Another operation is already running for the conversation."""


class PlanStateError(PlanError):
    """The plan is not in a state that allows the operation."""


class PlanManager:
    """Manages executing plans and their background tasks.

    Attributes:
        store: Plan and deliverable persistence
        event_bus: Event bus for engine events
        orchestrator: Runs plan groups
        refinement: Runs refinement turns
    """

    def __init__(
        self,
        store: PlanStore,
        ledger: CreditLedger,
        event_bus: EventBus,
        router: ProviderRouter | None = None,
        health: ProviderHealthChecker | None = None,
        tool_executor: ToolExecutor | None = None,
    ) -> None:
        self.store = store
        self.event_bus = event_bus
        runner = StepRunner(
            store=store,
            ledger=ledger,
            event_bus=event_bus,
            router=router or get_provider_router(),
            health=health or get_health_checker(),
            tool_executor=tool_executor,
        )
        self.orchestrator = Orchestrator(runner)
        self.refinement = RefinementController(runner)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Task bookkeeping
    # -------------------------------------------------------------------------

    def is_busy(self, conversation_id: str) -> bool:
        task = self._tasks.get(conversation_id)
        return task is not None and not task.done()

    @property
    def active_count(self) -> int:
        """Number of conversations with a running background task."""
        return sum(1 for task in self._tasks.values() if not task.done())

    async def _schedule(
        self,
        conversation_id: str,
        operation: str,
        coro: Coroutine[Any, Any, Any],
    ) -> None:
        """Create and register the background task for an operation."""
        async with self._lock:
            if self.is_busy(conversation_id):
                coro.close()
                raise PlanBusyError(
                    f"Conversation {conversation_id} already has an operation in progress"
                )
            background_task = asyncio.create_task(
                self._run_guarded(conversation_id, operation, coro),
                name=f"plan_{operation}_{conversation_id}",
            )
            self._tasks[conversation_id] = background_task

            # Clean up task reference when it completes
            def _remove_task(t: asyncio.Task[None], cid: str = conversation_id) -> None:
                if self._tasks.get(cid) is t:
                    self._tasks.pop(cid, None)

            background_task.add_done_callback(_remove_task)

    async def _run_guarded(
        self,
        conversation_id: str,
        operation: str,
        coro: Coroutine[Any, Any, Any],
    ) -> None:
        """Run an operation, turning unexpected failures into error events."""
        try:
            await coro
        except asyncio.CancelledError:
            logger.info("plan_operation_cancelled", conversation_id=conversation_id, operation=operation)
            raise
        except Exception as e:
            logger.error(
                "plan_operation_failed",
                conversation_id=conversation_id,
                operation=operation,
                error=str(e),
                exc_info=True,
            )
            await self.event_bus.publish(
                EngineEvent(
                    type=EventType.ERROR,
                    conversation_id=conversation_id,
                    data={"message": str(e), "phase": operation},
                )
            )

    async def _require_idle_plan(self, conversation_id: str) -> ExecutingPlan:
        if self.is_busy(conversation_id):
            raise PlanBusyError(f"Conversation {conversation_id} already has an operation in progress")
        plan = await self.store.get_plan(conversation_id)
        if plan is None:
            raise PlanNotFoundError(f"No executing plan for conversation {conversation_id}")
        return plan

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def approve_plan(
        self,
        conversation_id: str,
        steps: list[Step],
        user_id: str,
        model_override: str | None = None,
        image: ImageAttachment | None = None,
    ) -> None:
        """Start executing approved steps in the background.

        A paused or failed plan of the same conversation is replaced.

        Raises:
            PlanBusyError: An operation is already running.
        """
        await self._schedule(
            conversation_id,
            "approve",
            self.orchestrator.start(
                conversation_id=conversation_id,
                steps=steps,
                user_id=user_id,
                model_override=model_override,
                image=image,
            ),
        )
        logger.info("plan_approved", conversation_id=conversation_id, step_count=len(steps))

    async def continue_plan(self, conversation_id: str) -> None:
        """Resume a paused plan, or retry the pending steps of a failed group.

        Raises:
            PlanNotFoundError: No plan for the conversation.
            PlanBusyError: An operation is already running.
            PlanStateError: The plan is neither paused nor failed.
        """
        plan = await self._require_idle_plan(conversation_id)
        if plan.status not in (PlanStatus.PAUSED, PlanStatus.FAILED):
            raise PlanStateError(f"Plan is {plan.status.value}, not paused")

        await self._schedule(conversation_id, "continue", self.orchestrator.run_current_group(plan))
        logger.info(
            "plan_continued",
            conversation_id=conversation_id,
            group_index=plan.current_group_index,
            previous_status=plan.status.value,
        )

    async def refine(
        self,
        conversation_id: str,
        instance_id: str,
        feedback: str,
        user_id: str | None = None,
    ) -> None:
        """Re-run a completed step with feedback in the background.

        Raises:
            PlanNotFoundError: No plan, or no such step in it.
            PlanBusyError: An operation is already running.
            PlanStateError: The step has not completed or cannot be refined.
        """
        plan = await self._require_idle_plan(conversation_id)
        step = plan.get_step(instance_id)
        if step is None:
            raise PlanNotFoundError(f"Step {instance_id} is not part of the plan")
        if instance_id not in plan.completed_instances:
            raise PlanStateError(f"Step {instance_id} has not completed yet")
        if not is_refine_agent(step.agent_id):
            raise PlanStateError(f"Agent {step.agent_id} does not support refinement")

        await self._schedule(
            conversation_id,
            "refine",
            self.refinement.refine_step(plan, step, feedback, user_id=user_id),
        )
        logger.info("plan_refine_scheduled", conversation_id=conversation_id, instance_id=instance_id)

    async def abort_plan(self, conversation_id: str) -> None:
        """Cancel any running operation and drop the plan.

        Raises:
            PlanNotFoundError: Neither a running operation nor a stored plan.
        """
        # Extract the task under the lock, then cancel outside it.
        async with self._lock:
            task = self._tasks.pop(conversation_id, None)

        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        plan = await self.store.get_plan(conversation_id)
        if plan is None and task is None:
            raise PlanNotFoundError(f"No executing plan for conversation {conversation_id}")

        await self.store.delete_plan(conversation_id)
        await self.event_bus.publish(
            EngineEvent(
                type=EventType.COORDINATION_END,
                conversation_id=conversation_id,
                data={"reason": "aborted"},
            )
        )
        await self.event_bus.close_conversation(conversation_id)
        logger.info("plan_aborted", conversation_id=conversation_id, had_task=task is not None)

    async def get_plan(self, conversation_id: str) -> ExecutingPlan | None:
        return await self.store.get_plan(conversation_id)

    async def recover_interrupted(self) -> int:
        """Mark plans left running by a previous process as failed.

        Failed plans can be continued, which re-runs their pending steps.

        Returns:
            Number of plans recovered.
        """
        recovered = 0
        for plan in await self.store.list_plans(limit=1000):
            if plan.status == PlanStatus.RUNNING and not self.is_busy(plan.conversation_id):
                plan.status = PlanStatus.FAILED
                await self.store.save_plan(plan)
                recovered += 1
        if recovered:
            logger.info("interrupted_plans_recovered", count=recovered)
        return recovered

    async def cleanup_all(self) -> None:
        """Cancel every background task. Called on application shutdown."""
        async with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()

        logger.info("cleanup_all_start", task_count=len(tasks))
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("cleanup_all_complete")
