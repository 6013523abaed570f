"""Google Gemini binding of the provider interface."""

import base64

import structlog
from google import genai
from google.genai import types

from llm.base import LLMProvider, estimate_tokens, normalize_tool_args
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


class GeminiProvider(LLMProvider):
    """Streams Gemini responses through ``generate_content_stream``.

    Parts flagged as thoughts go to ``on_thinking``. Token usage is
    estimated from character counts.
    """

    name = "google"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        max_tool_rounds: int | None = None,
        client: genai.Client | None = None,
    ) -> None:
        super().__init__(config, max_tool_rounds)
        self._client = client or genai.Client(api_key=api_key)

    def _convert_messages(self, messages: list[Message]) -> list[types.Content]:
        contents: list[types.Content] = []
        for message in messages:
            parts = [
                types.Part.from_bytes(data=base64.b64decode(image.data), mime_type=image.media_type)
                for image in message.images
                if message.role == "user"
            ]
            parts.append(types.Part.from_text(text=message.content))
            role = "model" if message.role == "assistant" else "user"
            contents.append(types.Content(role=role, parts=parts))
        return contents

    async def _stream_round(
        self,
        system_prompt: str,
        conversation: list[types.Content],
        tools: list[ToolDefinition] | None,
        callbacks: StreamCallbacks,
    ) -> RoundResult:
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            max_output_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )
        if tools:
            config.tools = [
                types.Tool(
                    function_declarations=[
                        types.FunctionDeclaration(
                            name=t.name,
                            description=t.description,
                            parameters_json_schema=t.input_schema,
                        )
                        for t in tools
                    ]
                )
            ]

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        stream = await self._client.aio.models.generate_content_stream(
            model=self.config.model,
            contents=conversation,
            config=config,
        )
        async for chunk in stream:
            if not chunk.candidates or chunk.candidates[0].content is None:
                continue
            for part in chunk.candidates[0].content.parts or []:
                if part.function_call is not None:
                    call = part.function_call
                    tool_calls.append(
                        ToolCall(
                            id=call.id or f"{call.name}-{len(tool_calls)}",
                            name=call.name or "",
                            input=normalize_tool_args(dict(call.args or {})),
                        )
                    )
                elif part.text:
                    if part.thought:
                        if callbacks.on_thinking is not None:
                            await callbacks.on_thinking(part.text)
                    else:
                        text_parts.append(part.text)
                        await callbacks.on_token(part.text)

        text = "".join(text_parts)
        prompt_chars = len(system_prompt) + sum(
            len(part.text or "") for content in conversation for part in content.parts or []
        )
        usage = LLMUsage(
            input_tokens=prompt_chars // 4,
            output_tokens=estimate_tokens(text),
        )
        logger.debug(
            "gemini_round_complete",
            model=self.config.model,
            tool_calls=len(tool_calls),
            estimated_output_tokens=usage.output_tokens,
        )
        return RoundResult(text=text, tool_calls=tool_calls, usage=usage)

    def _append_tool_round(
        self,
        conversation: list[types.Content],
        result: RoundResult,
        tool_results: list[str],
    ) -> None:
        model_parts: list[types.Part] = []
        if result.text:
            model_parts.append(types.Part.from_text(text=result.text))
        model_parts.extend(
            types.Part(function_call=types.FunctionCall(id=call.id, name=call.name, args=call.input))
            for call in result.tool_calls
        )
        conversation.append(types.Content(role="model", parts=model_parts))
        conversation.append(
            types.Content(
                role="user",
                parts=[
                    types.Part(
                        function_response=types.FunctionResponse(
                            id=call.id, name=call.name, response={"result": output}
                        )
                    )
                    for call, output in zip(result.tool_calls, tool_results, strict=True)
                ],
            )
        )
