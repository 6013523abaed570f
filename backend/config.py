"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Pluribots
plan execution engine. All settings can be overridden via environment
variables or a .env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        anthropic_api_key: API key for Anthropic (Claude) models.
        openai_api_key: API key for OpenAI (GPT) models.
        google_api_key: API key for Google Gemini models.
        default_provider: Provider used by agents without an explicit config.
        default_model: Model used by agents without an explicit config.
        use_mock_llm: If True, every provider lookup returns the mock provider.
        max_tool_rounds: Maximum tool-call rounds per streamed agent response.
        llm_max_output_tokens: Upper bound for generated tokens per request.
        provider_health_ttl_seconds: How long provider health results are cached.
        health_check_timeout_seconds: Timeout for a single provider health probe.
        database_path: SQLite file for plans, deliverables and credits.
        cdn_base_url: Absolute base used to rewrite relative /uploads/ sources.
        initial_credit_balance: Credits granted to a user seen for the first time.
        credits_per_1k_tokens: Flat credit cost per thousand billed tokens.
        sse_heartbeat_seconds: Interval between SSE keep-alive comments.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # LLM Configuration
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    google_api_key: str = ""
    default_provider: str = "anthropic"
    default_model: str = "claude-sonnet-4-5-20250929"
    use_mock_llm: bool = False

    # Agent Limits
    max_tool_rounds: int = 10
    llm_max_output_tokens: int = 32768

    # Provider Health
    provider_health_ttl_seconds: int = 300
    health_check_timeout_seconds: int = 20

    # Database Configuration
    database_path: str = "./data/pluribots.db"

    # Deliverables
    cdn_base_url: str = "http://localhost:8000"

    # Credits
    initial_credit_balance: int = 1000
    credits_per_1k_tokens: float = 1.0

    # Streaming
    sse_heartbeat_seconds: float = 30.0

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Single value: 'http://localhost:3000'
        - Already a list: ["http://localhost:3000"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    @field_validator("max_tool_rounds")
    @classmethod
    def validate_max_tool_rounds(cls, v: int) -> int:
        """Tool loops need at least one round to produce any output."""
        if v < 1:
            raise ValueError("max_tool_rounds must be >= 1")
        return v

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def api_key_for(self, provider: str) -> str:
        """Return the process-wide API key configured for a provider.

        Args:
            provider: One of "anthropic", "openai", "google".

        Returns:
            The configured key, or an empty string when unset.
        """
        keys = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "google": self.google_api_key,
        }
        return keys.get(provider, "")


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
