"""Prompt context assembly for plan steps.

A step sees the outputs of its direct dependencies as delimited context
blocks. When a design agent feeds a code agent, a condensed design summary
(tailwind config, fonts, image URLs, section structure) is placed first so
the code agent reproduces the design faithfully.
"""

from agents.prompts import get_refinement_prompt
from agents.registry import feeds_design_context, get_agent, is_project_agent
from artifacts.html import extract_design_context, extract_html_block
from artifacts.merger import format_artifact_as_context
from llm.types import ImageInput, Message
from models.schemas import ExecutingPlan, Step


def _agent_label(agent_id: str) -> str:
    agent = get_agent(agent_id)
    return f"{agent.name} ({agent.role})" if agent else agent_id


def build_dependency_context(plan: ExecutingPlan, step: Step) -> str:
    """Concatenate the outputs of ``step``'s direct dependencies.

    Dependencies without output (unknown ids, failed steps) contribute
    nothing.
    """
    design_blocks: list[str] = []
    blocks: list[str] = []

    for dep_id in step.depends_on:
        output = plan.agent_outputs.get(dep_id)
        dep_step = plan.get_step(dep_id)
        if not output or dep_step is None:
            continue

        if feeds_design_context(dep_step.agent_id, step.agent_id):
            page = extract_html_block(output) or output
            design = extract_design_context(page)
            if design:
                design_blocks.append(
                    f"--- Design context from {_agent_label(dep_step.agent_id)} ---\n"
                    f"{design}\n"
                    f"--- End of design context ---"
                )

        blocks.append(
            f"--- Context from {_agent_label(dep_step.agent_id)} [{dep_id}] ---\n"
            f"{output}\n"
            f"--- End of context from {dep_id} ---"
        )

    return "\n\n".join(design_blocks + blocks)


def _task_turn(plan: ExecutingPlan, step: Step) -> Message:
    context = build_dependency_context(plan, step)
    content = f"{context}\n\nYour task:\n{step.task}" if context else step.task
    images = [ImageInput(data=plan.image.data, media_type=plan.image.media_type)] if plan.image else []
    return Message(role="user", content=content, images=images)


def build_step_messages(plan: ExecutingPlan, step: Step) -> list[Message]:
    """Messages for the first execution of a step."""
    return [_task_turn(plan, step)]


def build_refinement_messages(plan: ExecutingPlan, step: Step, feedback: str) -> list[Message]:
    """Three-turn conversation for re-running a completed step.

    The original task (with dependency context), the step's previous output
    as the assistant turn, then the feedback. Project agents additionally
    receive their current project formatted as context and are asked for
    changed files only.
    """
    previous = plan.agent_outputs.get(step.instance_id, "")
    artifact_context = None
    if is_project_agent(step.agent_id):
        artifact = plan.artifacts.get(step.instance_id)
        if artifact is not None:
            artifact_context = format_artifact_as_context(artifact)

    return [
        _task_turn(plan, step),
        Message(role="assistant", content=previous),
        Message(role="user", content=get_refinement_prompt(feedback, artifact_context)),
    ]
