"""Configuration settings for the application."""

from pathlib import Path

from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)

_HOME = Path.home() / ".parley"


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = str(_HOME)
    SETTINGS_FILE: str = str(_HOME / "settings.json")
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    PROVIDER: str = "openai"  # Options: openai, anthropic
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    MODEL: str = "gpt-4o"
    MAX_TOKENS: int = 128_000
    PLANNER_MODEL: str = "gpt-4o"
    PLANNER_MAX_TOKENS: int = 128_000
    ASSISTANT_ID: str | None = None  # Hosted (thread/run) protocol only
    API_TIMEOUT: float = 45.0

    # Orchestration
    TOOL_WORKERS: int = 4
    TOOL_TIMEOUT: float | None = 300.0
    POLL_INTERVAL: float = 0.5
    POLL_TIMEOUT: float | None = 600.0


settings = Settings()
