"""Dependency scheduling of plan steps into execution groups.

Steps run group by group: every step in a group runs concurrently, and a
group only starts after the previous one has fully completed. Visual agents
share a single preview surface, so at most one of them runs per group.
"""

from collections.abc import Iterable

import structlog

from agents.registry import is_visual_agent
from models.schemas import Step

logger = structlog.get_logger()

ExecutionGroup = list[str]


def compute_groups(steps: list[Step]) -> list[ExecutionGroup]:
    """Layer steps via topological sort.

    Each group holds every not-yet-placed step whose dependencies are all in
    earlier groups. Dependencies naming unknown instance ids are ignored.
    Steps caught in a dependency cycle are never placed; they are logged
    and left out rather than raising.

    Args:
        steps: The plan's steps, each with a unique instance_id.

    Returns:
        Ordered execution groups of instance ids. Within a group, steps
        keep their plan order.
    """
    known = {step.instance_id for step in steps}
    deps: dict[str, set[str]] = {}
    for step in steps:
        valid = {d for d in step.depends_on if d in known and d != step.instance_id}
        dropped = [d for d in step.depends_on if d not in known]
        if dropped:
            logger.debug(
                "scheduler_unknown_dependencies_ignored",
                instance_id=step.instance_id,
                dropped=dropped,
            )
        deps[step.instance_id] = valid

    placed: set[str] = set()
    groups: list[ExecutionGroup] = []
    remaining = [step.instance_id for step in steps]

    while remaining:
        ready = [iid for iid in remaining if deps[iid] <= placed]
        if not ready:
            logger.warning("scheduler_cycle_detected", unplaced=remaining)
            break
        groups.append(ready)
        placed.update(ready)
        remaining = [iid for iid in remaining if iid not in placed]

    return groups


def enforce_visual_exclusivity(
    groups: list[ExecutionGroup], steps: Iterable[Step]
) -> list[ExecutionGroup]:
    """Split groups so at most one visual-agent step runs per group.

    A group with more than one visual step becomes ``[non-visual steps...,
    first visual step]`` followed by one singleton group per remaining
    visual step, in order. The pass only inserts group boundaries between
    steps that were already mutually independent, so dependency order holds.

    Args:
        groups: Output of compute_groups.
        steps: The plan's steps, used to look up agent ids.

    Returns:
        The rebalanced groups.
    """
    agent_by_instance = {step.instance_id: step.agent_id for step in steps}
    result: list[ExecutionGroup] = []

    for group in groups:
        visual = [iid for iid in group if is_visual_agent(agent_by_instance.get(iid, ""))]
        if len(visual) <= 1:
            result.append(list(group))
            continue

        non_visual = [iid for iid in group if iid not in visual]
        result.append([*non_visual, visual[0]])
        result.extend([iid] for iid in visual[1:])
        logger.debug("scheduler_group_split", visual_steps=visual)

    return result


def build_execution_groups(steps: list[Step]) -> list[ExecutionGroup]:
    """Compute dependency groups and apply visual exclusivity."""
    return enforce_visual_exclusivity(compute_groups(steps), steps)
