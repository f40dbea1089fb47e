"""Application Configuration

Type-safe configuration using Pydantic Settings for environment variable handling.
Every key has a development default, so the library and the test suite run
without an .env file.

Patterns Demonstrated:
- Type-safe environment variable parsing with validation
- Sensible defaults for development
- No magic strings in the codebase
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_CATALOG_PATH = Path(__file__).parent / "domain" / "model_metadata.json"


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # =============================================================================
    # APPLICATION
    # =============================================================================

    app_name: str = Field(default="chatrelay", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    app_description: str = Field(
        default="Requirement-based LLM routing with undoable conversation history",
        alias="APP_DESCRIPTION",
    )
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # =============================================================================
    # API CONFIGURATION
    # =============================================================================

    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Settings
    cors_origins: str = Field(default="", alias="CORS_ORIGINS")
    cors_credentials: bool = Field(default=False, alias="CORS_CREDENTIALS")
    cors_methods: str = Field(default="*", alias="CORS_METHODS")
    cors_headers: str = Field(default="*", alias="CORS_HEADERS")

    # =============================================================================
    # MODEL ROUTING
    # =============================================================================

    model_catalog_path: str = Field(default=str(DEFAULT_CATALOG_PATH), alias="MODEL_CATALOG_PATH")
    default_model: str = Field(default="auto:intelligence>=4", alias="DEFAULT_MODEL")

    # Availability probes
    probe_cache_seconds: float = Field(default=30.0, gt=0, alias="PROBE_CACHE_SECONDS")
    probe_timeout_seconds: float = Field(default=1.0, gt=0, alias="PROBE_TIMEOUT_SECONDS")

    # =============================================================================
    # TURNS
    # =============================================================================

    system_prompt: str | None = Field(default=None, alias="SYSTEM_PROMPT")
    max_steps: int = Field(default=15, ge=1, alias="MAX_STEPS")
    parallel_tools: bool = Field(default=False, alias="PARALLEL_TOOLS")
    max_context_messages: int | None = Field(default=None, ge=1, alias="MAX_CONTEXT_MESSAGES")

    # Compaction
    auto_compact: bool = Field(default=False, alias="AUTO_COMPACT")
    compaction_threshold: float = Field(default=0.9, gt=0, le=1, alias="COMPACTION_THRESHOLD")

    model_config = {"env_file": ".env", "case_sensitive": False, "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.model_validate({})


settings = get_settings()
