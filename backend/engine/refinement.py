"""Re-execution of a completed step with user feedback.

Refinement never moves the plan cursor: it replaces one step's output (and
project artifact) and re-announces the same next step so the user can keep
reviewing before continuing.
"""

import structlog

from engine.context import build_refinement_messages
from engine.orchestrator import step_complete_data
from engine.runner import StepOutcome, StepRunner
from events.types import EngineEvent, EventType
from models.schemas import ExecutingPlan, Step

logger = structlog.get_logger()


class RefinementController:
    """Runs refinement turns for completed steps."""

    def __init__(self, runner: StepRunner) -> None:
        self.runner = runner

    async def refine_step(
        self,
        plan: ExecutingPlan,
        step: Step,
        feedback: str,
        user_id: str | None = None,
    ) -> StepOutcome:
        """Re-run ``step`` against its previous output and ``feedback``.

        Project agents receive their current project and return only
        changed files, which are merged into it. Other agents return a
        complete replacement.

        Args:
            plan: The plan holding the step. Updated and persisted on success.
            step: A completed step of the plan.
            feedback: What the user wants changed.
            user_id: User billed; defaults to the plan owner.

        Returns:
            The step outcome. On failure the plan is left untouched.
        """
        logger.info(
            "refine_step_start",
            conversation_id=plan.conversation_id,
            instance_id=step.instance_id,
            feedback_chars=len(feedback),
        )
        outcome = await self.runner.run(
            plan,
            step,
            build_refinement_messages(plan, step, feedback),
            user_id=user_id,
            base_artifact=plan.artifacts.get(step.instance_id),
            refined=True,
        )
        if not outcome.success:
            return outcome

        plan.agent_outputs[step.instance_id] = outcome.output
        if outcome.artifact is not None:
            plan.artifacts[step.instance_id] = outcome.artifact
        await self.runner.store.save_plan(plan)

        await self.runner.event_bus.publish(
            EngineEvent(
                type=EventType.STEP_COMPLETE,
                conversation_id=plan.conversation_id,
                agent_id=step.agent_id,
                instance_id=step.instance_id,
                data={
                    **step_complete_data(plan, f"Refined {step.instance_id}"),
                    "refined": True,
                },
            )
        )
        logger.info(
            "refine_step_complete",
            conversation_id=plan.conversation_id,
            instance_id=step.instance_id,
        )
        return outcome
