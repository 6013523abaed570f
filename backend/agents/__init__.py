"""Agent registry, prompts and tools.

This module exports the components that describe the specialized agents:
- Agent configurations and their visual/project/design classifications
- System prompts and refinement prompt construction
- Tool definitions and the executor used during tool-call loops
"""

from agents.prompts import get_refinement_prompt
from agents.registry import (
    AGENTS,
    CODE_AGENT_IDS,
    DESIGN_AGENT_IDS,
    PROJECT_AGENT_IDS,
    REFINE_AGENT_IDS,
    VISUAL_AGENT_IDS,
    AgentConfig,
    feeds_design_context,
    get_agent,
    is_project_agent,
    is_refine_agent,
    is_visual_agent,
)
from agents.tools import TOOL_DEFINITIONS, ToolArgumentError, ToolContext, ToolExecutor

__all__ = [
    # Registry
    "AGENTS",
    "AgentConfig",
    "CODE_AGENT_IDS",
    "DESIGN_AGENT_IDS",
    "PROJECT_AGENT_IDS",
    "REFINE_AGENT_IDS",
    "VISUAL_AGENT_IDS",
    "feeds_design_context",
    "get_agent",
    "is_project_agent",
    "is_refine_agent",
    "is_visual_agent",
    # Prompts
    "get_refinement_prompt",
    # Tools
    "TOOL_DEFINITIONS",
    "ToolArgumentError",
    "ToolContext",
    "ToolExecutor",
]
