"""Tool definitions and dispatch for agent tool calls.

This module defines the tools agents may call during ``stream_with_tools``
and the ToolExecutor that validates arguments and routes each call to its
implementation. Tool results are always strings; failures are returned to
the model as error strings so it can adapt instead of aborting the step.

The built-in tools return simulated, deterministic data shaped like the
responses of real SEO and advertising APIs.
"""

import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from llm.types import ToolCall, ToolDefinition

logger = structlog.get_logger()


@dataclass
class ToolContext:
    """Who is calling a tool.

    Attributes:
        conversation_id: Conversation the plan belongs to
        agent_id: Agent making the call
        agent_name: Display name of the agent
        user_id: User billed for the plan
    """

    conversation_id: str
    agent_id: str
    agent_name: str
    user_id: str


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[str]]


class ToolArgumentError(ValueError):
    """Raised when a tool call has invalid or missing arguments."""


def _slug(text: str) -> str:
    return "".join(text.split()).lower()


async def seo_keyword_research(args: dict[str, Any], context: ToolContext) -> str:
    topic = args["topic"]
    return json.dumps(
        {
            "topic": topic,
            "language": args.get("language", "en"),
            "keywords": [
                {"keyword": f"professional {topic}", "volume": 1200, "difficulty": 38},
                {"keyword": f"best {topic}", "volume": 880, "difficulty": 42},
                {"keyword": f"{topic} near me", "volume": 720, "difficulty": 25},
                {"keyword": f"{topic} prices", "volume": 540, "difficulty": 30},
                {"keyword": f"{topic} online", "volume": 320, "difficulty": 22},
            ],
            "suggestions": [
                f'Create a landing page optimized for "professional {topic}"',
                "Blog content targeting long-tail queries",
                "Schema markup for local business",
            ],
        }
    )


async def seo_competitor_analysis(args: dict[str, Any], context: ToolContext) -> str:
    niche = _slug(args["niche"])
    return json.dumps(
        {
            "niche": args["niche"],
            "competitors": [
                {"domain": f"{niche}-pro.com", "domain_authority": 58, "keyword_gap": 34},
                {"domain": f"best-{niche}.com", "domain_authority": 45, "keyword_gap": 28},
                {"domain": f"{niche}-hub.com", "domain_authority": 38, "keyword_gap": 41},
            ],
            "opportunities": [
                "Long-form comparison content",
                "Guest posting on DA 40+ sites",
                "Featured snippet optimization",
            ],
        }
    )


async def seo_backlink_audit(args: dict[str, Any], context: ToolContext) -> str:
    return json.dumps(
        {
            "domain": args["domain"],
            "total_backlinks": 234,
            "unique_domains": 67,
            "average_domain_authority": 28,
            "dofollow_ratio": 0.72,
            "toxic_links": 3,
            "recommendations": [
                "Disavow the 3 toxic links detected",
                "Pursue guest posts on DA 40+ sites",
                "Monitor new backlinks weekly",
            ],
        }
    )


async def ads_copy_generation(args: dict[str, Any], context: ToolContext) -> str:
    product = args["product"]
    platform = args.get("platform", "meta")
    audience = args.get("target_audience", "general audience")
    return json.dumps(
        {
            "product": product,
            "platform": platform,
            "target_audience": audience,
            "variants": [
                {
                    "headline": f"Discover {product}",
                    "body": f"Built for {audience}. See why customers switch.",
                    "cta": "Learn more",
                },
                {
                    "headline": f"{product}: results in days",
                    "body": "Limited-time offer for new customers.",
                    "cta": "Get started",
                },
                {
                    "headline": f"Why {audience} choose {product}",
                    "body": "Real reviews, real results.",
                    "cta": "See reviews",
                },
            ],
            "note": f"Drafted by {context.agent_name}; refine tone and length per placement.",
        }
    )


async def ads_campaign_planning(args: dict[str, Any], context: ToolContext) -> str:
    objective = args["objective"]
    budget = args.get("budget") or 500
    platforms = args.get("platforms", "meta, google")
    return json.dumps(
        {
            "objective": objective,
            "monthly_budget_usd": budget,
            "platforms": platforms,
            "budget_split": {"prospecting": 0.6, "retargeting": 0.3, "testing": 0.1},
            "target_kpis": {"ctr": 0.015, "cpc_usd": 0.8, "cpa_usd": 25},
            "timeline_weeks": 4,
        }
    )


_STRING = {"type": "string"}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "seo_keyword_research",
        "description": (
            "Research keywords for a niche or topic. Returns keywords with "
            "estimated monthly volume and difficulty."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "topic": {**_STRING, "description": "Topic or niche to research"},
                "language": {**_STRING, "description": "Keyword language, default 'en'"},
            },
            "required": ["topic"],
        },
        "handler": seo_keyword_research,
    },
    {
        "name": "seo_competitor_analysis",
        "description": (
            "Analyze competitors in a niche, comparing domain authority and keyword gaps."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "niche": {**_STRING, "description": "Niche or industry to analyze"},
            },
            "required": ["niche"],
        },
        "handler": seo_competitor_analysis,
    },
    {
        "name": "seo_backlink_audit",
        "description": "Audit a domain's backlink profile, flagging toxic links and opportunities.",
        "parameters": {
            "type": "object",
            "properties": {
                "domain": {**_STRING, "description": "Domain to audit"},
            },
            "required": ["domain"],
        },
        "handler": seo_backlink_audit,
    },
    {
        "name": "ads_copy_generation",
        "description": "Generate ad copy variants for A/B testing.",
        "parameters": {
            "type": "object",
            "properties": {
                "product": {**_STRING, "description": "Product or service to promote"},
                "platform": {**_STRING, "description": "meta, google or tiktok"},
                "target_audience": {**_STRING, "description": "Target audience description"},
            },
            "required": ["product"],
        },
        "handler": ads_copy_generation,
    },
    {
        "name": "ads_campaign_planning",
        "description": "Plan an ad campaign with budget split, targeting and target metrics.",
        "parameters": {
            "type": "object",
            "properties": {
                "objective": {**_STRING, "description": "leads, sales or awareness"},
                "budget": {"type": "number", "description": "Monthly budget in USD"},
                "platforms": {**_STRING, "description": "Platforms to use"},
            },
            "required": ["objective"],
        },
        "handler": ads_campaign_planning,
    },
]

_TOOL_DEFINITION_MAP: dict[str, dict[str, Any]] = {tool["name"]: tool for tool in TOOL_DEFINITIONS}

# Keep tool payloads bounded so a single call cannot flood model context.
MAX_TOOL_RESULT_CHARS = 20_000


class ToolExecutor:
    """Validates and executes agent tool calls.

    Attributes:
        tools: Tool definitions keyed by name
    """

    def __init__(self, tools: list[dict[str, Any]] | None = None) -> None:
        self.tools = {tool["name"]: tool for tool in tools} if tools else _TOOL_DEFINITION_MAP

    def get_tool_definitions(self, names: list[str]) -> list[ToolDefinition]:
        """Return provider-neutral definitions for the named tools.

        Unknown names are skipped.
        """
        return [
            ToolDefinition(
                name=self.tools[name]["name"],
                description=self.tools[name]["description"],
                input_schema=self.tools[name]["parameters"],
            )
            for name in names
            if name in self.tools
        ]

    def _truncate_text(self, text: str, *, max_chars: int = MAX_TOOL_RESULT_CHARS) -> str:
        """Trim large text payloads while preserving a clear truncation marker."""
        if len(text) <= max_chars:
            return text
        omitted = len(text) - max_chars
        return f"{text[:max_chars]}\n... [truncated {omitted} characters]"

    def _normalize_tool_args(self, tool: dict[str, Any], args: Any) -> dict[str, Any]:
        """Validate and normalize tool arguments against schema metadata."""
        if not isinstance(args, dict):
            raise ToolArgumentError(f"Invalid arguments for {tool['name']}: expected an object")

        properties = tool["parameters"].get("properties", {})
        required = tool["parameters"].get("required", [])

        normalized: dict[str, Any] = {}
        for key, value in args.items():
            spec = properties.get(key)
            if spec is None:
                # Ignore unknown fields to keep calls resilient to model drift.
                continue
            if spec.get("type") == "string":
                if not isinstance(value, str):
                    raise ToolArgumentError(f"Invalid type for '{key}': expected string")
                value = value.strip()
            elif spec.get("type") == "number" and not isinstance(value, int | float):
                try:
                    value = float(value)
                except (TypeError, ValueError) as exc:
                    raise ToolArgumentError(f"Invalid type for '{key}': expected number") from exc
            normalized[key] = value

        missing = [req for req in required if normalized.get(req) in (None, "")]
        if missing:
            raise ToolArgumentError(f"Missing required arguments: {', '.join(sorted(missing))}")
        return normalized

    async def execute(self, call: ToolCall, context: ToolContext) -> str:
        """Execute one tool call.

        Args:
            call: The tool call requested by the model.
            context: Conversation and agent making the call.

        Returns:
            The tool result, or an error string. Never raises for tool errors.
        """
        start_time = time.time()
        tool = self.tools.get(call.name)
        if tool is None:
            logger.warning("tool_not_found", tool_name=call.name, agent_id=context.agent_id)
            return f"Error: tool '{call.name}' not found"

        try:
            args = self._normalize_tool_args(tool, call.input)
            result = await tool["handler"](args, context)
            success = True
        except Exception as exc:
            logger.error(
                "tool_execution_failed",
                tool_name=call.name,
                conversation_id=context.conversation_id,
                error=str(exc),
            )
            result = f"Error executing tool '{call.name}': {exc}"
            success = False

        logger.debug(
            "tool_executed",
            tool_name=call.name,
            agent_id=context.agent_id,
            success=success,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return self._truncate_text(result)
