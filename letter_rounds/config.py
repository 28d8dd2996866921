"""Configuration management with pydantic-settings and validation."""

from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote document store (shared between devices)
    database_url: str = "sqlite:///./letter_rounds.db"

    # Local durable cache (this process/device only)
    cache_url: str = "sqlite:///./letter_rounds_cache.db"

    # Anthropic Configuration (optional, the static catalogue is used without it)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    ideas_per_request: int = 5
    idea_max_tokens: int = 2048

    # Debounced free-text writes
    debounce_seconds: float = 0.8

    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("database_url", mode="before")
    @classmethod
    def fix_database_url(cls, v):
        """Railway uses postgres:// but SQLAlchemy requires postgresql://."""
        if isinstance(v, str) and v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator("ideas_per_request")
    @classmethod
    def check_ideas_per_request(cls, v):
        if v < 1:
            raise ValueError("ideas_per_request must be at least 1")
        return v

    @field_validator("debounce_seconds")
    @classmethod
    def check_debounce(cls, v):
        if v < 0:
            raise ValueError("debounce_seconds must not be negative")
        return v

    @property
    def ai_enabled(self) -> bool:
        """True when a real suggestion generator can be used."""
        return bool(self.anthropic_api_key.strip())


def get_settings() -> Settings:
    """Load and validate settings from environment.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()
