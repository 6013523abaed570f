"""Scripted provider for tests and offline runs (``USE_MOCK_LLM=true``)."""

from dataclasses import dataclass, field
from typing import Any

import structlog

from llm.base import LLMProvider, estimate_tokens
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

DEFAULT_MOCK_TEXT = "## Mock result\n\nThis response was produced without calling an LLM."


@dataclass
class MockResponse:
    """One scripted provider response.

    Attributes:
        text: Text streamed to on_token
        tool_calls: Tool calls requested after the text
        thinking: Reasoning streamed to on_thinking before the text
        usage: Reported usage; estimated from the text when None
        error: Raised instead of responding, to exercise on_error
        chunk_size: Characters per streamed token
    """

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    thinking: str = ""
    usage: LLMUsage | None = None
    error: Exception | None = None
    chunk_size: int = 16


class MockProvider(LLMProvider):
    """Provider returning predefined responses in order.

    Records every round for later inspection. When the script runs out,
    ``default_text`` is returned; without a default an IndexError is
    reported through ``on_error``.

    Usage:
        >>> provider = MockProvider(
        ...     LLMConfig(provider="anthropic", model="mock"),
        ...     responses=[MockResponse(text="Hello")],
        ... )
        >>> await provider.stream("system", [Message(role="user", content="Hi")], callbacks)
    """

    name = "mock"

    def __init__(
        self,
        config: LLMConfig | None = None,
        responses: list[MockResponse] | None = None,
        default_text: str | None = None,
        max_tool_rounds: int | None = None,
    ) -> None:
        super().__init__(config or LLMConfig(provider="mock", model="mock"), max_tool_rounds)
        self.responses = list(responses) if responses else []
        self.default_text = default_text
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        return [
            {"role": m.role, "content": m.content, "images": len(m.images)} for m in messages
        ]

    def _next_response(self) -> MockResponse:
        if self._response_index < len(self.responses):
            response = self.responses[self._response_index]
            self._response_index += 1
            return response
        if self.default_text is not None:
            return MockResponse(text=self.default_text)
        raise IndexError("No more mock responses available")

    async def _stream_round(
        self,
        system_prompt: str,
        conversation: list[dict[str, Any]],
        tools: list[ToolDefinition] | None,
        callbacks: StreamCallbacks,
    ) -> RoundResult:
        self.call_history.append(
            {
                "system_prompt": system_prompt,
                "messages": [dict(m) for m in conversation],
                "tools": [t.name for t in tools] if tools else [],
            }
        )
        response = self._next_response()
        if response.error is not None:
            raise response.error

        if response.thinking and callbacks.on_thinking is not None:
            await callbacks.on_thinking(response.thinking)

        size = max(1, response.chunk_size)
        for start in range(0, len(response.text), size):
            await callbacks.on_token(response.text[start : start + size])

        usage = response.usage or LLMUsage(
            input_tokens=estimate_tokens(system_prompt),
            output_tokens=estimate_tokens(response.text),
        )
        logger.debug(
            "mock_llm_round",
            response_index=self._response_index - 1,
            content_preview=response.text[:50],
            tool_calls=len(response.tool_calls),
        )
        return RoundResult(text=response.text, tool_calls=list(response.tool_calls), usage=usage)

    def _append_tool_round(
        self,
        conversation: list[dict[str, Any]],
        result: RoundResult,
        tool_results: list[str],
    ) -> None:
        conversation.append(
            {
                "role": "assistant",
                "content": result.text,
                "tool_calls": [call.name for call in result.tool_calls],
            }
        )
        conversation.append({"role": "user", "content": "", "tool_results": list(tool_results)})

    def reset(self) -> None:
        """Restart the script from the first response."""
        self._response_index = 0
        self.call_history.clear()
