"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database (any SQLAlchemy async URL; sqlite+aiosqlite for local use, asyncpg in prod)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./notes.db",
        validation_alias="DATABASE_URL",
    )
    database_echo: bool = Field(default=False, validation_alias="DATABASE_ECHO")

    # Editor autosave - local edits are committed once no edit arrives for this long
    debounce_seconds: float = Field(default=1.0, validation_alias="DEBOUNCE_SECONDS")

    # Redis - relays change notifications between processes
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=False, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")
    change_channel: str = Field(default="notes:changes", validation_alias="CHANGE_CHANNEL")

    # Share links are built as {share_base_url}/share/{note_id}?mode=view|edit
    share_base_url: str = Field(
        default="http://localhost:5173",
        validation_alias="SHARE_BASE_URL",
    )

    # Field length limits
    max_title_length: int = Field(default=500, validation_alias="MAX_TITLE_LENGTH")
    max_content_length: int = Field(default=512_000, validation_alias="MAX_CONTENT_LENGTH")

    default_note_title: str = Field(default="Untitled Note", validation_alias="DEFAULT_NOTE_TITLE")

    @field_validator("debounce_seconds")
    @classmethod
    def check_debounce_positive(cls, v: float) -> float:
        """Reject a zero or negative debounce window."""
        if v <= 0:
            raise ValueError("DEBOUNCE_SECONDS must be greater than zero")
        return v

    @field_validator("share_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the share base URL so paths can be appended directly."""
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
