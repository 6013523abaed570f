"""Exceptions raised by the LLM provider layer."""


class LLMProviderError(Exception):
    """A provider request failed.

    Attributes:
        provider: Vendor name
        status_code: HTTP status reported by the vendor, if any
    """

    def __init__(self, message: str, provider: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderConfigurationError(LLMProviderError):
    """A provider cannot be constructed, usually for lack of credentials."""


class ToolRoundLimitError(LLMProviderError):
    """The model kept requesting tools past the configured round limit."""

    def __init__(self, max_rounds: int, provider: str = "") -> None:
        super().__init__(
            f"Tool-call loop exceeded {max_rounds} rounds without a final answer",
            provider=provider,
        )
        self.max_rounds = max_rounds
