"""Application settings loaded from environment variables."""
from functools import lru_cache
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Claude API (semantic match fallback)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    claude_model: str = Field(default="claude-sonnet-4-20250514", description="Claude model for semantic term matching")
    semantic_max_output_tokens: int = Field(default=500, description="Max output tokens for a semantic match call")
    semantic_temperature: float = Field(default=0.0, description="Sampling temperature for semantic match calls")
    semantic_timeout_seconds: float = Field(default=30.0, description="Timeout for a single semantic match call")
    semantic_fallback_enabled: bool = Field(default=True, description="Allow the semantic fallback tier when an API key is set")

    # Semantic response cache
    semantic_cache_max_size: int = Field(default=500, description="Maximum cached semantic match responses")
    semantic_cache_ttl_minutes: int = Field(default=120, description="Time-to-live for cached semantic responses")

    # Triage thresholds
    threshold_exclude: float = Field(default=0.8, description="Confidence at or above which an exclusion is trusted")
    threshold_review: float = Field(default=0.5, description="Flagged criteria below this confidence send a trial to review")
    threshold_ignore: float = Field(default=0.3, description="Downstream filter: results below this are discarded")

    # Data files (relative to project root)
    lookup_tables_path: str = Field(
        default="",
        description="Override for the bundled lookup tables JSON (drug classes, synonyms, ordinals, tiers)"
    )
    criteria_corpus_path: str = Field(
        default="data/criteria_corpus.json",
        description="Criterion corpus grouped by CLUSTER_<CODE> keys"
    )

    # Database (pending admin reviews)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/eligibility.db",
        description="Database connection URL"
    )
    review_store: str = Field(
        default="sql",
        description="Where review payloads go: 'sql' (database_url) or 'memory'"
    )

    # Application
    app_env: str = Field(default="development", description="Application environment")
    log_level: str = Field(default="INFO", description="Logging level")
    cors_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
