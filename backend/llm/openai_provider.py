"""OpenAI (GPT) binding of the provider interface."""

import json
from typing import Any

import structlog
from openai import AsyncOpenAI

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


class OpenAIProvider(LLMProvider):
    """Streams chat completions and assembles tool calls from deltas.

    Tool-call fragments arrive spread over many chunks, keyed by index; the
    id and name come first and the JSON arguments are concatenated.
    """

    name = "openai"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        max_tool_rounds: int | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        super().__init__(config, max_tool_rounds)
        self._client = client or AsyncOpenAI(api_key=api_key)

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for message in messages:
            if message.role == "user" and message.images:
                content: Any = [
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{image.media_type};base64,{image.data}"},
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
            "messages": [{"role": "system", "content": system_prompt}, *conversation],
            "max_completion_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in tools
            ]

        text_parts: list[str] = []
        partial_calls: dict[int, dict[str, str]] = {}
        usage = LLMUsage()

        stream = await self._client.chat.completions.create(**request)
        async for chunk in stream:
            if chunk.usage is not None:
                details = getattr(chunk.usage, "prompt_tokens_details", None)
                usage = LLMUsage(
                    input_tokens=chunk.usage.prompt_tokens,
                    output_tokens=chunk.usage.completion_tokens,
                    cache_read_input_tokens=getattr(details, "cached_tokens", None),
                )
            if not chunk.choices:
                continue

            delta = chunk.choices[0].delta
            if delta.content:
                text_parts.append(delta.content)
                await callbacks.on_token(delta.content)

            for tc_delta in delta.tool_calls or []:
                slot = partial_calls.setdefault(
                    tc_delta.index, {"id": "", "name": "", "arguments": ""}
                )
                if tc_delta.id:
                    slot["id"] = tc_delta.id
                if tc_delta.function is not None:
                    if tc_delta.function.name:
                        slot["name"] = tc_delta.function.name
                    if tc_delta.function.arguments:
                        slot["arguments"] += tc_delta.function.arguments

        tool_calls = [
            ToolCall(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                input=normalize_tool_args(slot["arguments"]),
            )
            for index, slot in sorted(partial_calls.items())
        ]
        logger.debug(
            "openai_round_complete",
            model=self.config.model,
            tool_calls=len(tool_calls),
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
        conversation.append(
            {
                "role": "assistant",
                "content": result.text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.input)},
                    }
                    for call in result.tool_calls
                ],
            }
        )
        conversation.extend(
            {"role": "tool", "tool_call_id": call.id, "content": output}
            for call, output in zip(result.tool_calls, tool_results, strict=True)
        )
