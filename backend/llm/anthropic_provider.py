"""Anthropic (Claude) binding of the provider interface."""

from typing import Any

import structlog
from anthropic import AsyncAnthropic

from llm.base import LLMProvider, normalize_tool_args
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


class AnthropicProvider(LLMProvider):
    """Streams Claude responses through ``messages.stream``.

    Text deltas go to ``on_token`` and extended-thinking deltas to
    ``on_thinking``. Usage includes prompt-cache token counts.
    """

    name = "anthropic"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        max_tool_rounds: int | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        super().__init__(config, max_tool_rounds)
        self._client = client or AsyncAnthropic(api_key=api_key)

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "user" and message.images:
                content: Any = [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": image.media_type,
                            "data": image.data,
                        },
                    }
                    for image in message.images
                ]
                content.append({"type": "text", "text": message.content})
            else:
                content = message.content
            converted.append({"role": message.role, "content": content})
        return converted

    async def _stream_round(
        self,
        system_prompt: str,
        conversation: list[dict[str, Any]],
        tools: list[ToolDefinition] | None,
        callbacks: StreamCallbacks,
    ) -> RoundResult:
        request: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system_prompt,
            "messages": conversation,
        }
        if tools:
            request["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in tools
            ]

        text_parts: list[str] = []
        async with self._client.messages.stream(**request) as stream:
            async for event in stream:
                if event.type != "content_block_delta":
                    continue
                delta = event.delta
                if delta.type == "text_delta":
                    text_parts.append(delta.text)
                    await callbacks.on_token(delta.text)
                elif delta.type == "thinking_delta" and callbacks.on_thinking is not None:
                    await callbacks.on_thinking(delta.thinking)
            final = await stream.get_final_message()

        tool_calls = [
            ToolCall(id=block.id, name=block.name, input=normalize_tool_args(block.input))
            for block in final.content
            if block.type == "tool_use"
        ]
        usage = LLMUsage(
            input_tokens=final.usage.input_tokens,
            output_tokens=final.usage.output_tokens,
            cache_creation_input_tokens=getattr(final.usage, "cache_creation_input_tokens", None),
            cache_read_input_tokens=getattr(final.usage, "cache_read_input_tokens", None),
        )
        logger.debug(
            "anthropic_round_complete",
            model=self.config.model,
            stop_reason=final.stop_reason,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        return RoundResult(text="".join(text_parts), tool_calls=tool_calls, usage=usage)

    def _append_tool_round(
        self,
        conversation: list[dict[str, Any]],
        result: RoundResult,
        tool_results: list[str],
    ) -> None:
        assistant_content: list[dict[str, Any]] = []
        if result.text:
            assistant_content.append({"type": "text", "text": result.text})
        assistant_content.extend(
            {"type": "tool_use", "id": call.id, "name": call.name, "input": call.input}
            for call in result.tool_calls
        )
        conversation.append({"role": "assistant", "content": assistant_content})
        conversation.append(
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": call.id, "content": output}
                    for call, output in zip(result.tool_calls, tool_results, strict=True)
                ],
            }
        )
