"""Plan execution engine.

Key Components:
    - build_execution_groups: Dependency layering with visual exclusivity
    - StepRunner: Runs one step against a provider and persists its deliverable
    - Orchestrator: Group-at-a-time execution as a LangGraph StateGraph
    - RefinementController: Re-runs a completed step with user feedback
"""

from engine.orchestrator import Orchestrator, step_complete_data
from engine.refinement import RefinementController
from engine.runner import StepOutcome, StepRunner
from engine.scheduler import build_execution_groups, compute_groups, enforce_visual_exclusivity

__all__ = [
    "Orchestrator",
    "RefinementController",
    "StepOutcome",
    "StepRunner",
    "build_execution_groups",
    "compute_groups",
    "enforce_visual_exclusivity",
    "step_complete_data",
]
