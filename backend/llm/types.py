"""Vendor-neutral value types shared by every LLM provider binding.

Nothing in this module depends on a vendor SDK; bindings translate these
types into their own request formats and back.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

ProviderName = Literal["anthropic", "openai", "google"]
PROVIDER_NAMES: tuple[str, ...] = ("anthropic", "openai", "google")


@dataclass
class ImageInput:
    """An image attached to a user message.

    Attributes:
        data: Base64-encoded image bytes
        media_type: MIME type such as image/png
    """

    data: str
    media_type: str = "image/png"


@dataclass
class Message:
    """One conversation turn sent to a provider."""

    role: Literal["user", "assistant"]
    content: str
    images: list[ImageInput] = field(default_factory=list)


@dataclass
class LLMUsage:
    """Token usage of one or more provider calls.

    Attributes:
        input_tokens: Prompt tokens (exact where the vendor reports them)
        output_tokens: Generated tokens
        cache_creation_input_tokens: Tokens written to the prompt cache
        cache_read_input_tokens: Tokens served from the prompt cache
    """

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "LLMUsage") -> "LLMUsage":
        def _sum(a: int | None, b: int | None) -> int | None:
            if a is None and b is None:
                return None
            return (a or 0) + (b or 0)

        return LLMUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=_sum(
                self.cache_creation_input_tokens, other.cache_creation_input_tokens
            ),
            cache_read_input_tokens=_sum(
                self.cache_read_input_tokens, other.cache_read_input_tokens
            ),
        )


@dataclass
class ToolDefinition:
    """A tool offered to the model, described by a JSON schema."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        id: Vendor-assigned identifier used to pair the result
        name: Name of the tool to call
        input: Arguments to pass to the tool
    """

    id: str
    name: str
    input: dict[str, Any]


@dataclass
class LLMConfig:
    """Which vendor and model serve a request, and how.

    Attributes:
        provider: Vendor name
        model: Vendor model id
        max_tokens: Upper bound for generated tokens
        temperature: Sampling temperature
        api_key: Per-request key; None means the process-wide key from settings
    """

    provider: str
    model: str
    max_tokens: int = 16384
    temperature: float = 0.7
    api_key: str | None = field(default=None, repr=False)


@dataclass
class RoundResult:
    """Outcome of streaming a single provider response."""

    text: str
    tool_calls: list[ToolCall]
    usage: LLMUsage


TokenCallback = Callable[[str], Awaitable[None]]


@dataclass
class StreamCallbacks:
    """Callbacks a provider invokes while streaming.

    Exactly one of ``on_complete`` or ``on_error`` is invoked per stream
    call. ``on_tool_call`` is only used by ``stream_with_tools`` and must
    return the tool result as a string.
    """

    on_token: TokenCallback
    on_complete: Callable[[str, LLMUsage], Awaitable[None]]
    on_error: Callable[[Exception], Awaitable[None]]
    on_thinking: TokenCallback | None = None
    on_tool_call: Callable[[ToolCall], Awaitable[str]] | None = None
