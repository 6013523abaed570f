"""Shared provider interface and the agentic tool-call loop.

Every vendor binding implements the same two coroutines, ``stream`` and
``stream_with_tools``. The loop logic lives here once; bindings only provide
the vendor-specific hooks for converting messages, streaming one response
and appending a tool round to their native conversation format.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

import structlog

from config import settings
from llm.errors import LLMProviderError, ToolRoundLimitError
from llm.types import (
    LLMConfig,
    LLMUsage,
    Message,
    RoundResult,
    StreamCallbacks,
    ToolCall,
    ToolDefinition,
)

logger = structlog.get_logger()


def normalize_tool_args(raw_args: Any) -> dict[str, Any]:
    """Normalize raw tool-call arguments into a dictionary.

    Models occasionally emit malformed tool arguments (JSON arrays, primitives,
    or partially valid strings). This helper guarantees downstream tool
    execution always receives a dict-like payload.
    """
    if isinstance(raw_args, dict):
        return raw_args

    if isinstance(raw_args, str):
        if not raw_args.strip():
            return {}
        try:
            parsed = json.loads(raw_args)
        except json.JSONDecodeError:
            return {"raw": raw_args}
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    if raw_args is None:
        return {}

    return {"value": raw_args}


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token) for vendors without usage."""
    return max(1, len(text) // 4) if text else 0


class LLMProvider(ABC):
    """Uniform streaming interface over one vendor and model.

    Attributes:
        name: Vendor name, set by each binding
        config: The model configuration this instance serves
        max_tool_rounds: Upper bound on tool rounds in stream_with_tools
    """

    name: str = ""

    def __init__(self, config: LLMConfig, max_tool_rounds: int | None = None) -> None:
        self.config = config
        self.max_tool_rounds = max_tool_rounds or settings.max_tool_rounds

    # ------------------------------------------------------------------
    # Vendor hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _convert_messages(self, messages: list[Message]) -> list[Any]:
        """Translate neutral messages into the vendor's conversation list."""

    @abstractmethod
    async def _stream_round(
        self,
        system_prompt: str,
        conversation: list[Any],
        tools: list[ToolDefinition] | None,
        callbacks: StreamCallbacks,
    ) -> RoundResult:
        """Stream one response, forwarding text and reasoning to callbacks."""

    @abstractmethod
    def _append_tool_round(
        self,
        conversation: list[Any],
        result: RoundResult,
        tool_results: list[str],
    ) -> None:
        """Append the assistant turn and the tool-results turn in place."""

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def stream(
        self,
        system_prompt: str,
        messages: list[Message],
        callbacks: StreamCallbacks,
    ) -> None:
        """Stream a single response without tools.

        Exactly one of ``callbacks.on_complete`` or ``callbacks.on_error`` is
        invoked. There is no retry inside the provider.
        """
        try:
            conversation = self._convert_messages(messages)
            result = await self._stream_round(system_prompt, conversation, None, callbacks)
        except Exception as exc:
            await callbacks.on_error(self._wrap_error(exc))
            return
        await callbacks.on_complete(result.text, result.usage)

    async def stream_with_tools(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[ToolDefinition],
        callbacks: StreamCallbacks,
    ) -> None:
        """Run the agentic tool-call loop.

        Each round streams a response. When it requests tools, every call is
        executed concurrently through ``callbacks.on_tool_call`` and the
        conversation grows by one assistant turn and one results turn. A
        response without tool calls completes the loop with the text of all
        rounds and the summed usage. Exceeding ``max_tool_rounds`` reports a
        ToolRoundLimitError through ``on_error``.
        """
        if not tools:
            await self.stream(system_prompt, messages, callbacks)
            return

        try:
            conversation = self._convert_messages(messages)
        except Exception as exc:
            await callbacks.on_error(self._wrap_error(exc))
            return
        total_usage = LLMUsage()
        text_parts: list[str] = []

        for round_index in range(self.max_tool_rounds):
            try:
                result = await self._stream_round(system_prompt, conversation, tools, callbacks)
            except Exception as exc:
                await callbacks.on_error(self._wrap_error(exc))
                return

            total_usage = total_usage + result.usage
            if result.text:
                text_parts.append(result.text)

            if not result.tool_calls:
                await callbacks.on_complete("".join(text_parts), total_usage)
                return

            logger.info(
                "llm_tool_round",
                provider=self.name,
                model=self.config.model,
                round=round_index + 1,
                tools=[call.name for call in result.tool_calls],
            )
            tool_results = await asyncio.gather(
                *(self._execute_tool(call, callbacks) for call in result.tool_calls)
            )
            self._append_tool_round(conversation, result, list(tool_results))

        logger.warning(
            "llm_tool_round_limit_exceeded",
            provider=self.name,
            model=self.config.model,
            max_rounds=self.max_tool_rounds,
        )
        await callbacks.on_error(ToolRoundLimitError(self.max_tool_rounds, provider=self.name))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _execute_tool(self, call: ToolCall, callbacks: StreamCallbacks) -> str:
        """Run one tool call; failures become an error string for the model."""
        if callbacks.on_tool_call is None:
            return f"Error: no executor available for tool '{call.name}'"
        try:
            return await callbacks.on_tool_call(call)
        except Exception as exc:
            logger.warning("llm_tool_call_failed", tool=call.name, error=str(exc))
            return f"Error executing tool '{call.name}': {exc}"

    def _wrap_error(self, exc: Exception) -> LLMProviderError:
        if isinstance(exc, LLMProviderError):
            return exc
        status_code = getattr(exc, "status_code", None) or getattr(exc, "code", None)
        logger.warning(
            "llm_stream_failed",
            provider=self.name,
            model=self.config.model,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        error = LLMProviderError(
            str(exc) or type(exc).__name__,
            provider=self.name,
            status_code=status_code if isinstance(status_code, int) else None,
        )
        error.__cause__ = exc
        return error
