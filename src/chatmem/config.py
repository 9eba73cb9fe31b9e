from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, SecretStr


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    COMPLETION_API_KEY: SecretStr | None = Field(
        None,
        description="API key for the completion service (local Ollama accepts any value)"
    )
    COMPLETION_BASE_URL: str = Field(
        "http://localhost:11434/v1",
        description="OpenAI-compatible endpoint used for memory summaries"
    )
    COMPLETION_TIMEOUT_SECONDS: float = Field(120.0, description="Per-request timeout for the completion service")
    COMPLETION_MAX_RETRIES: int = Field(2, description="Retries the client performs on transient errors")

    MEMORY_SUMMARY_TEMPERATURE: float = Field(0.3, description="Sampling temperature for summaries")
    MEMORY_SUMMARY_TOP_P: float = Field(0.8, description="Nucleus sampling for summaries")
    MEMORY_RETENTION_SLACK_FACTOR: int = Field(
        2,
        ge=1,
        description="Multiplier applied to max_memory_entries when trimming after a summary (1 = strict cap)"
    )
    MEMORY_CONTEXT_LIMIT: int = Field(3, ge=1, description="Memories rendered into the prompt context block")
    MEMORY_FALLBACK_USER_ID: str | None = Field(
        None,
        description="Deprecated: user whose memory settings act as the global fallback"
    )

# Singleton instance
settings = Settings()
