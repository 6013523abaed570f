"""Registry of the specialized agents and their classifications.

Classifications drive scheduling and deliverable handling:
- visual agents produce a rendered surface and never share a group
- project agents produce a multi-file artifact
- design agents feed condensed design context to code agents
"""

from dataclasses import dataclass, field

from agents.prompts import (
    ADS_PROMPT,
    BRAND_PROMPT,
    DEV_PROMPT,
    SEO_PROMPT,
    SOCIAL_PROMPT,
    VIDEO_PROMPT,
    WEB_PROMPT,
)
from config import settings
from llm.types import LLMConfig
from models.schemas import DeliverableType

VISUAL_AGENT_IDS: frozenset[str] = frozenset({"brand", "web", "social", "video", "dev"})
REFINE_AGENT_IDS: frozenset[str] = VISUAL_AGENT_IDS
PROJECT_AGENT_IDS: frozenset[str] = frozenset({"dev"})
DESIGN_AGENT_IDS: frozenset[str] = frozenset({"brand", "web", "social"})
CODE_AGENT_IDS: frozenset[str] = frozenset({"dev"})


def _default_model(max_tokens: int = 16384, temperature: float = 0.7) -> LLMConfig:
    return LLMConfig(
        provider=settings.default_provider,
        model=settings.default_model,
        max_tokens=min(max_tokens, settings.llm_max_output_tokens),
        temperature=temperature,
    )


@dataclass
class AgentConfig:
    """A named LLM configuration for one specialization.

    Attributes:
        id: Stable agent key used in plan steps
        name: Display name
        role: Human-readable role
        bot_type: Frontend avatar/category key
        system_prompt: System prompt sent with every request
        model_config: Default provider/model for the agent
        tools: Names of tools the agent may call
        deliverable_type: Kind of deliverable the agent produces
    """

    id: str
    name: str
    role: str
    bot_type: str
    system_prompt: str
    model_config: LLMConfig
    tools: list[str] = field(default_factory=list)
    deliverable_type: DeliverableType = DeliverableType.REPORT


AGENTS: dict[str, AgentConfig] = {
    "seo": AgentConfig(
        id="seo",
        name="Lupa",
        role="SEO specialist",
        bot_type="seo",
        system_prompt=SEO_PROMPT,
        model_config=_default_model(temperature=0.3),
        tools=["seo_keyword_research", "seo_competitor_analysis", "seo_backlink_audit"],
        deliverable_type=DeliverableType.REPORT,
    ),
    "brand": AgentConfig(
        id="brand",
        name="Nova",
        role="Branding and visual identity specialist",
        bot_type="brand",
        system_prompt=BRAND_PROMPT,
        model_config=_default_model(),
        deliverable_type=DeliverableType.DESIGN,
    ),
    "web": AgentConfig(
        id="web",
        name="Pixel",
        role="Web designer",
        bot_type="web",
        system_prompt=WEB_PROMPT,
        model_config=_default_model(),
        deliverable_type=DeliverableType.DESIGN,
    ),
    "social": AgentConfig(
        id="social",
        name="Spark",
        role="Social media designer",
        bot_type="social",
        system_prompt=SOCIAL_PROMPT,
        model_config=_default_model(),
        deliverable_type=DeliverableType.DESIGN,
    ),
    "ads": AgentConfig(
        id="ads",
        name="Metric",
        role="Paid advertising strategist",
        bot_type="ads",
        system_prompt=ADS_PROMPT,
        model_config=_default_model(temperature=0.6),
        tools=["ads_copy_generation", "ads_campaign_planning"],
        deliverable_type=DeliverableType.COPY,
    ),
    "video": AgentConfig(
        id="video",
        name="Reel",
        role="Video producer",
        bot_type="video",
        system_prompt=VIDEO_PROMPT,
        model_config=_default_model(max_tokens=8192),
        deliverable_type=DeliverableType.VIDEO,
    ),
    "dev": AgentConfig(
        id="dev",
        name="Logic",
        role="Senior frontend developer",
        bot_type="dev",
        system_prompt=DEV_PROMPT,
        model_config=_default_model(max_tokens=32768, temperature=0.3),
        deliverable_type=DeliverableType.PROJECT,
    ),
}


def get_agent(agent_id: str) -> AgentConfig | None:
    """Look up an agent by id."""
    return AGENTS.get(agent_id)


def is_visual_agent(agent_id: str) -> bool:
    return agent_id in VISUAL_AGENT_IDS


def is_project_agent(agent_id: str) -> bool:
    return agent_id in PROJECT_AGENT_IDS


def is_refine_agent(agent_id: str) -> bool:
    return agent_id in REFINE_AGENT_IDS


def feeds_design_context(source_agent_id: str, target_agent_id: str) -> bool:
    """True when a design agent's output is consumed by a code agent."""
    return source_agent_id in DESIGN_AGENT_IDS and target_agent_id in CODE_AGENT_IDS
