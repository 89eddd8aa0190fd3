"""
Lifeline Configuration Module

This module manages application settings and environment variables using
pydantic-settings for type-safe configuration management.

Environment variables are loaded from .env file or system environment.
Secrets (provider keys, the audit hashing salt) use SecretStr so they are
never echoed by logs or by the /config endpoint.

Every scoring heuristic that is not a fixed part of the decision contract
(thresholds, TTLs, buffer sizes) lives here so operators can tune it
without touching code.
"""

from functools import lru_cache
from typing import Literal
import logging
import sys

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic Settings automatically reads from:
    1. Environment variables
    2. .env file in working directory
    3. Default values defined here
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # ------------------------------------------------------------------
    # Moderation engine
    # ------------------------------------------------------------------

    latency_budget_ms: float = Field(
        default=50.0, gt=0, description="Target moderation latency in milliseconds"
    )

    cache_ttl_seconds: float = Field(
        default=300.0, gt=0, description="TTL for cached moderation and language results"
    )

    cache_max_entries: int = Field(
        default=10_000, gt=0, description="Entries kept before an eager expiry sweep"
    )

    cache_key_chars: int = Field(
        default=200,
        gt=0,
        description="Content prefix length in the result cache key (full content is also hashed)",
    )

    language_cache_key_chars: int = Field(
        default=100, gt=0, description="Content prefix length used in the language cache key"
    )

    block_risk_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Risk above which non-crisis content is blocked",
    )

    flag_risk_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Risk above which non-crisis content is flagged",
    )

    protective_factor_step: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Severity reduction per matched protective-factor phrase",
    )

    protective_factor_floor: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Lowest severity protective factors can reduce a danger signal to",
    )

    # ------------------------------------------------------------------
    # Scoring models
    # ------------------------------------------------------------------

    llm_scoring_enabled: bool = Field(
        default=False, description="Register the LLM-backed scorer in the ensemble"
    )

    llm_provider: Literal["groq", "openai"] = Field(
        default="groq", description="Provider used by the LLM-backed scorer"
    )

    llm_model: str = Field(
        default="llama-3.1-8b-instant", description="Provider model name for the LLM scorer"
    )

    llm_weight: float = Field(
        default=0.2, gt=0, description="Ensemble weight of the LLM scorer"
    )

    llm_timeout_ms: int = Field(
        default=2000, gt=0, description="Time budget for one LLM scoring call"
    )

    groq_api_key: SecretStr | None = Field(
        default=None, description="Groq API key for the LLM scorer (optional)"
    )

    openai_api_key: SecretStr | None = Field(
        default=None, description="OpenAI API key for the LLM scorer (optional)"
    )

    semantic_scoring_enabled: bool = Field(
        default=False, description="Register the local embedding scorer in the ensemble"
    )

    embedding_model: str = Field(
        default="BAAI/bge-small-en-v1.5",
        description="FastEmbed model for local semantic scoring (ONNX Runtime)",
    )

    embedding_cache_dir: str | None = Field(
        default=None,
        description="Directory to cache embedding model (default: fastembed cache)",
    )

    embedding_threads: int | None = Field(
        default=None, description="CPU threads for embedding (default: auto-detect)"
    )

    similarity_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum similarity for a semantic crisis tier match",
    )

    # ------------------------------------------------------------------
    # Human oversight
    # ------------------------------------------------------------------

    low_confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Confidence below which a decision is sent for human review",
    )

    seed_default_experts: bool = Field(
        default=True, description="Load the default expert roster at startup"
    )

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    audit_buffer_size: int = Field(
        default=100, gt=0, description="Buffered entries before a flush is forced"
    )

    audit_buffer_max_entries: int = Field(
        default=1000,
        gt=0,
        description="Hard cap on pending entries while the store is failing; oldest are dropped",
    )

    audit_flush_interval_seconds: float = Field(
        default=5.0, gt=0, description="Periodic audit buffer flush interval"
    )

    audit_write_budget_ms: float = Field(
        default=10.0, gt=0, description="Target audit write latency in milliseconds"
    )

    analytics_cache_ttl_seconds: float = Field(
        default=300.0, gt=0, description="TTL for cached audit analytics"
    )

    audit_log_dir: str | None = Field(
        default=None,
        description="Directory for newline-delimited JSON audit files (default: in-memory)",
    )

    audit_hash_salt: SecretStr = Field(
        default=SecretStr("lifeline-audit-salt"),
        description="Salt mixed into hashed identifiers",
    )

    retention_policy: str = Field(
        default="7_years", description="Retention policy stamped on every audit entry"
    )

    audit_regulations: list[str] = Field(
        default_factory=lambda: ["GDPR", "HIPAA", "CCPA"],
        description="Regulations every audit entry is recorded under",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )

    region: str = Field(default="us-east-1", description="Deployment region")

    node_id: str = Field(default="node-001", description="Node identifier")

    maintenance_interval_seconds: float = Field(
        default=300.0, gt=0, description="Cache sweep interval"
    )

    metrics_log_interval_seconds: float = Field(
        default=60.0, gt=0, description="Interval of the periodic metrics log line"
    )

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Application log level"
    )

    host: str = Field(default="0.0.0.0", description="Server bind host")

    port: int = Field(default=8000, description="Server bind port")

    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator("audit_regulations")
    @classmethod
    def validate_regulations(cls, v: list[str]) -> list[str]:
        """Normalise regulation tags to upper case and require at least one."""
        tags = [tag.strip().upper() for tag in v if tag.strip()]
        if not tags:
            raise ValueError("audit_regulations must name at least one regulation")
        return tags

    @field_validator("flag_risk_threshold")
    @classmethod
    def validate_flag_threshold(cls, v: float, info) -> float:
        """The flag threshold cannot sit above the block threshold."""
        block = info.data.get("block_risk_threshold")
        if block is not None and v > block:
            raise ValueError("flag_risk_threshold must not exceed block_risk_threshold")
        return v

    @field_validator("audit_buffer_max_entries")
    @classmethod
    def validate_buffer_cap(cls, v: int, info) -> int:
        """The pending-entry cap cannot sit below the flush batch size."""
        batch = info.data.get("audit_buffer_size")
        if batch is not None and v < batch:
            raise ValueError("audit_buffer_max_entries must be at least audit_buffer_size")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.

    Using lru_cache ensures settings are loaded once and reused,
    avoiding repeated file reads and environment parsing.

    Returns:
        Settings: The application settings singleton.
    """
    return Settings()


def configure_logging(settings: Settings) -> None:
    """
    Configure application logging based on settings.

    Sets up structured logging with timestamps and reduces noise
    from third-party HTTP libraries.

    Args:
        settings: The application settings instance.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("groq").setLevel(logging.WARNING)
