"""Tests for agents/tools.py -- tool definitions and ToolExecutor.

Covers tool dispatch, argument validation, error strings returned to the
model, result truncation and the per-agent tool lists.
"""

import json
from typing import Any

from agents.registry import AGENTS
from agents.tools import MAX_TOOL_RESULT_CHARS, TOOL_DEFINITIONS, ToolContext, ToolExecutor
from llm.types import ToolCall

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _context(agent_id: str = "seo") -> ToolContext:
    return ToolContext(
        conversation_id="conv_tools",
        agent_id=agent_id,
        agent_name="Lupa" if agent_id == "seo" else "Metric",
        user_id="user_1",
    )


def _call(name: str, **args: Any) -> ToolCall:
    return ToolCall(id=f"call_{name}", name=name, input=args)


# =========================================================================
# Tool Definitions
# =========================================================================


class TestToolDefinitions:
    """Ensure tool definitions are well-formed."""

    def test_tool_names(self) -> None:
        names = {t["name"] for t in TOOL_DEFINITIONS}
        assert names == {
            "seo_keyword_research",
            "seo_competitor_analysis",
            "seo_backlink_audit",
            "ads_copy_generation",
            "ads_campaign_planning",
        }

    def test_all_have_schema_and_handler(self) -> None:
        for tool in TOOL_DEFINITIONS:
            assert tool["description"]
            assert tool["parameters"]["type"] == "object"
            assert set(tool["parameters"]["required"]) <= set(tool["parameters"]["properties"])
            assert callable(tool["handler"])

    def test_agent_tool_lists_resolve(self) -> None:
        executor = ToolExecutor()
        for agent in AGENTS.values():
            definitions = executor.get_tool_definitions(agent.tools)
            assert [d.name for d in definitions] == agent.tools

    def test_unknown_names_are_skipped(self) -> None:
        definitions = ToolExecutor().get_tool_definitions(["seo_backlink_audit", "nope"])
        assert [d.name for d in definitions] == ["seo_backlink_audit"]
        assert definitions[0].input_schema["required"] == ["domain"]


# =========================================================================
# Execution
# =========================================================================


class TestToolExecution:
    async def test_keyword_research(self) -> None:
        result = await ToolExecutor().execute(
            _call("seo_keyword_research", topic="  bakery "), _context()
        )
        payload = json.loads(result)
        assert payload["topic"] == "bakery"
        assert payload["language"] == "en"
        assert payload["keywords"][0]["keyword"] == "professional bakery"

    async def test_results_are_deterministic(self) -> None:
        executor = ToolExecutor()
        call = _call("seo_competitor_analysis", niche="Coffee Shops")
        first = await executor.execute(call, _context())
        second = await executor.execute(call, _context())
        assert first == second
        assert json.loads(first)["competitors"][0]["domain"] == "coffeeshops-pro.com"

    async def test_copy_generation_mentions_agent(self) -> None:
        result = await ToolExecutor().execute(
            _call("ads_copy_generation", product="Lattes", platform="tiktok"), _context("ads")
        )
        payload = json.loads(result)
        assert payload["platform"] == "tiktok"
        assert payload["target_audience"] == "general audience"
        assert "Metric" in payload["note"]

    async def test_number_arguments_are_coerced(self) -> None:
        result = await ToolExecutor().execute(
            _call("ads_campaign_planning", objective="leads", budget="1200"), _context("ads")
        )
        assert json.loads(result)["monthly_budget_usd"] == 1200.0

    async def test_budget_defaults(self) -> None:
        result = await ToolExecutor().execute(
            _call("ads_campaign_planning", objective="sales"), _context("ads")
        )
        assert json.loads(result)["monthly_budget_usd"] == 500

    async def test_unknown_arguments_are_ignored(self) -> None:
        result = await ToolExecutor().execute(
            _call("seo_backlink_audit", domain="example.com", depth=3), _context()
        )
        assert json.loads(result)["domain"] == "example.com"


# =========================================================================
# Errors returned to the model
# =========================================================================


class TestToolErrors:
    async def test_unknown_tool(self) -> None:
        result = await ToolExecutor().execute(_call("delete_everything"), _context())
        assert result == "Error: tool 'delete_everything' not found"

    async def test_missing_required_argument(self) -> None:
        result = await ToolExecutor().execute(_call("seo_keyword_research"), _context())
        assert result.startswith("Error executing tool 'seo_keyword_research':")
        assert "Missing required arguments: topic" in result

    async def test_blank_required_argument_counts_as_missing(self) -> None:
        result = await ToolExecutor().execute(_call("seo_backlink_audit", domain="   "), _context())
        assert "Missing required arguments: domain" in result

    async def test_wrong_type(self) -> None:
        result = await ToolExecutor().execute(_call("seo_backlink_audit", domain=42), _context())
        assert "Invalid type for 'domain': expected string" in result

    async def test_bad_number(self) -> None:
        result = await ToolExecutor().execute(
            _call("ads_campaign_planning", objective="leads", budget="lots"), _context("ads")
        )
        assert "expected number" in result

    async def test_handler_exception_becomes_error_string(self) -> None:
        async def explode(args: dict[str, Any], context: ToolContext) -> str:
            raise RuntimeError("upstream down")

        executor = ToolExecutor(
            tools=[
                {
                    "name": "flaky",
                    "description": "Always fails",
                    "parameters": {"type": "object", "properties": {}, "required": []},
                    "handler": explode,
                }
            ]
        )
        result = await executor.execute(_call("flaky"), _context())
        assert result == "Error executing tool 'flaky': upstream down"


# =========================================================================
# Truncation
# =========================================================================


class TestTruncation:
    async def test_large_results_are_truncated(self) -> None:
        async def huge(args: dict[str, Any], context: ToolContext) -> str:
            return "x" * (MAX_TOOL_RESULT_CHARS + 50)

        executor = ToolExecutor(
            tools=[
                {
                    "name": "huge",
                    "description": "Returns a lot",
                    "parameters": {"type": "object", "properties": {}},
                    "handler": huge,
                }
            ]
        )
        result = await executor.execute(_call("huge"), _context())
        assert result.endswith("\n... [truncated 50 characters]")
        assert len(result) < MAX_TOOL_RESULT_CHARS + 50
