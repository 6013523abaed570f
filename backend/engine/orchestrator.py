"""Group-at-a-time plan execution as a LangGraph StateGraph.

Graph Structure:
    START -> dispatch_group -> [execute_step x N] -> advance_group
    advance_group -> dispatch_group (next group runs automatically)
    advance_group -> END (paused, failed or completed)

Every step of the current group is fanned out with ``Send`` and runs
concurrently; ``advance_group`` is the join barrier. A group that contained
a visual agent pauses the plan until the user continues it, so they can
review or refine the visual result first. Groups without visual agents
advance on their own.
"""

import operator
from typing import Annotated, Any, Literal, TypedDict

import structlog
from langgraph.graph import END, START, StateGraph
from langgraph.types import Send

from agents.registry import get_agent, is_visual_agent
from engine.context import build_step_messages
from engine.runner import StepOutcome, StepRunner
from engine.scheduler import build_execution_groups
from events.types import EngineEvent, EventType
from models.schemas import ExecutingPlan, ImageAttachment, PlanStatus, Step

logger = structlog.get_logger()

GroupOutcome = Literal["continue", "paused", "failed", "completed"]


class StepResult(TypedDict):
    """Result of one fanned-out step, collected at the group barrier."""

    group_index: int
    outcome: StepOutcome


class PlanGraphState(TypedDict):
    """State for the plan execution graph.

    Attributes:
        plan: The executing plan; only advance_group mutates it
        step_results: Results of every executed step (fan-in via operator.add)
        outcome: What happened at the last barrier
    """

    plan: ExecutingPlan
    step_results: Annotated[list[StepResult], operator.add]
    outcome: GroupOutcome | None


def step_complete_data(plan: ExecutingPlan, summary: str) -> dict[str, Any]:
    """Payload of a ``step_complete`` event.

    Points at the first step of the group under the cursor, which is the
    next group to run; absent once the plan has no further group.
    """
    next_steps = plan.group_steps(plan.current_group_index)
    next_step = next_steps[0] if next_steps else None
    return {
        "summary": summary,
        "next_agent_id": next_step.agent_id if next_step else None,
        "next_instance_id": next_step.instance_id if next_step else None,
        "next_task": next_step.task if next_step else None,
        "step_index": len(plan.completed_instances),
        "total_steps": len(plan.steps),
    }


def summarize_steps(steps: list[Step]) -> str:
    names = []
    for step in steps:
        agent = get_agent(step.agent_id)
        names.append(agent.name if agent else step.agent_id)
    return f"{', '.join(names)} finished: " + "; ".join(
        step.user_description or step.task[:80] for step in steps
    )


class Orchestrator:
    """Runs approved plans group by group.

    Attributes:
        runner: Executes individual steps
    """

    def __init__(self, runner: StepRunner) -> None:
        self.runner = runner
        self.store = runner.store
        self.event_bus = runner.event_bus
        self._compiled_graph = self._build_graph()

    def _build_graph(self):
        """Build and compile the LangGraph StateGraph.

        Returns:
            Compiled graph ready for execution
        """
        graph = StateGraph(PlanGraphState)

        graph.add_node("dispatch_group", self._dispatch_group)
        graph.add_node("execute_step", self._execute_step)
        graph.add_node("advance_group", self._advance_group)

        graph.add_edge(START, "dispatch_group")

        # Fan out the pending steps of the current group.
        graph.add_conditional_edges(
            "dispatch_group",
            self._fan_out_current_group,
            ["execute_step", "advance_group"],
        )
        graph.add_edge("execute_step", "advance_group")
        graph.add_conditional_edges(
            "advance_group",
            self._route_after_group,
            {
                "dispatch": "dispatch_group",
                "end": END,
            },
        )

        return graph.compile()

    async def _emit(self, event_type: EventType, plan: ExecutingPlan, **data: Any) -> None:
        await self.event_bus.publish(
            EngineEvent(type=event_type, conversation_id=plan.conversation_id, data=data)
        )

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    async def _dispatch_group(self, state: PlanGraphState) -> dict[str, Any]:
        plan = state["plan"]
        plan.status = PlanStatus.RUNNING
        logger.info(
            "dispatch_group_start",
            conversation_id=plan.conversation_id,
            group_index=plan.current_group_index,
            total_groups=len(plan.execution_groups),
            instance_ids=[step.instance_id for step in plan.pending_steps()],
        )
        return {"outcome": None}

    def _fan_out_current_group(self, state: PlanGraphState) -> list[Send] | str:
        """Create one Send() per pending step of the current group."""
        plan = state["plan"]
        pending = plan.pending_steps()
        if not pending:
            return "advance_group"
        return [
            Send(
                "execute_step",
                {"plan": plan, "step": step, "group_index": plan.current_group_index},
            )
            for step in pending
        ]

    async def _execute_step(self, state: dict[str, Any]) -> dict[str, Any]:
        """Run one step. Receives the Send() payload, not the graph state."""
        plan: ExecutingPlan = state["plan"]
        step: Step = state["step"]
        outcome = await self.runner.run(plan, step, build_step_messages(plan, step))
        return {"step_results": [StepResult(group_index=state["group_index"], outcome=outcome)]}

    async def _advance_group(self, state: PlanGraphState) -> dict[str, Any]:
        """Join barrier: record results, then pause, advance, fail or finish."""
        plan = state["plan"]
        group_index = plan.current_group_index
        group_steps = plan.group_steps(group_index)
        group_ids = {step.instance_id for step in group_steps}
        results = [
            r["outcome"]
            for r in state["step_results"]
            if r["group_index"] == group_index and r["outcome"].instance_id in group_ids
        ]

        for outcome in results:
            if not outcome.success:
                continue
            plan.agent_outputs[outcome.instance_id] = outcome.output
            if outcome.artifact is not None:
                plan.artifacts[outcome.instance_id] = outcome.artifact
            if outcome.instance_id not in plan.completed_instances:
                plan.completed_instances.append(outcome.instance_id)

        failed = [o.instance_id for o in results if not o.success]
        if failed:
            plan.status = PlanStatus.FAILED
            await self.store.save_plan(plan)
            logger.warning(
                "group_failed",
                conversation_id=plan.conversation_id,
                group_index=group_index,
                failed_instances=failed,
            )
            return {"plan": plan, "outcome": "failed"}

        has_visual = any(is_visual_agent(step.agent_id) for step in group_steps)
        plan.current_group_index = group_index + 1

        await self._emit(
            EventType.STEP_COMPLETE, plan, **step_complete_data(plan, summarize_steps(group_steps))
        )

        outcome: GroupOutcome
        if has_visual:
            plan.status = PlanStatus.PAUSED
            outcome = "paused"
        elif plan.is_finished:
            outcome = "completed"
        else:
            outcome = "continue"

        if outcome != "completed":
            await self.store.save_plan(plan)

        logger.info(
            "group_complete",
            conversation_id=plan.conversation_id,
            group_index=group_index,
            outcome=outcome,
        )
        return {"plan": plan, "outcome": outcome}

    def _route_after_group(self, state: PlanGraphState) -> str:
        return "dispatch" if state.get("outcome") == "continue" else "end"

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def start(
        self,
        conversation_id: str,
        steps: list[Step],
        user_id: str,
        model_override: str | None = None,
        image: ImageAttachment | None = None,
    ) -> ExecutingPlan:
        """Create a plan for approved steps and run its first group.

        Returns:
            The plan as it stands after the first pause, failure or completion.
        """
        plan = ExecutingPlan(
            conversation_id=conversation_id,
            user_id=user_id,
            steps=steps,
            execution_groups=build_execution_groups(steps),
            model_override=model_override,
            image=image,
        )
        logger.info(
            "plan_started",
            conversation_id=conversation_id,
            total_steps=len(steps),
            groups=plan.execution_groups,
        )
        await self._emit(
            EventType.COORDINATION_START,
            plan,
            total_steps=len(steps),
            groups=plan.execution_groups,
        )
        await self.store.save_plan(plan)
        return await self.run_current_group(plan)

    async def run_current_group(self, plan: ExecutingPlan) -> ExecutingPlan:
        """Run the group under the cursor, and following groups while they auto-advance.

        A paused plan whose cursor is past the last group is finished
        instead.
        """
        if plan.is_finished:
            await self.finish(plan)
            return plan

        # Each group takes three supersteps (dispatch, execute, advance).
        remaining_groups = len(plan.execution_groups) - plan.current_group_index
        try:
            final_state = await self._compiled_graph.ainvoke(
                {"plan": plan, "step_results": [], "outcome": None},
                config={"recursion_limit": 3 * remaining_groups + 10},
            )
        except Exception:
            await self._mark_failed(plan)
            raise
        plan = final_state["plan"]
        if final_state.get("outcome") == "completed":
            await self.finish(plan)
        return plan

    async def _mark_failed(self, plan: ExecutingPlan) -> None:
        """Store the last persisted progress as FAILED so the group can be retried."""
        stored = await self.store.get_plan(plan.conversation_id) or plan
        stored.status = PlanStatus.FAILED
        await self.store.save_plan(stored)
        logger.error(
            "plan_group_crashed",
            conversation_id=plan.conversation_id,
            group_index=stored.current_group_index,
            exc_info=True,
        )

    async def finish(self, plan: ExecutingPlan, reason: str = "completed") -> None:
        """Remove a plan and announce the end of coordination.

        The conversation is closed on the bus afterwards, which ends open
        event streams.
        """
        await self.store.delete_plan(plan.conversation_id)
        await self._emit(
            EventType.COORDINATION_END,
            plan,
            reason=reason,
            completed_steps=len(plan.completed_instances),
            total_steps=len(plan.steps),
        )
        await self.event_bus.close_conversation(plan.conversation_id)
        logger.info(
            "plan_finished",
            conversation_id=plan.conversation_id,
            reason=reason,
            completed_steps=len(plan.completed_instances),
        )
