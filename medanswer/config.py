from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    log_level: str = "INFO"

    # Retrieval
    retrieval_top_k: int = 10
    retrieval_cache_ttl_seconds: float = 300.0
    retrieval_cache_max_entries: int = 100
    snippet_length: int = 200

    # Scoring
    recency_decay_rate: float = Field(
        default=0.01,
        description="Exponential decay rate per day used for recency and time decay",
    )

    # Post-retrieval passes
    enable_reranking: bool = False
    enable_time_decay: bool = False
    enable_diversification: bool = False
    rerank_top_k: int = 20

    diversity_penalty_base: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Multiplier applied per additional chunk from the same artifact",
    )
    diversity_top_k: int = 5
    diversity_min_sources: int = 2

    # Count verification
    count_critical_threshold: int = 2
    count_warning_threshold: int = 1

    # Generation
    extraction_temperature: float = 0.0
    summarization_temperature: float = 0.3
    extraction_max_tokens: int = 2000
    summarization_max_tokens: int = 500
    enable_extraction_validation: bool = True
    generation_max_retries: int = 3
    generation_retry_base_delay_seconds: float = 1.0

    # Pipeline
    pipeline_timeout_ms: int = 6000
    suppress_invalid_citations: bool = Field(
        default=False,
        description="Drop extractions that fail citation validation from the response",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MEDANSWER_",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_thresholds(self):
        if self.count_warning_threshold > self.count_critical_threshold:
            raise ValueError(
                "count_warning_threshold must not exceed count_critical_threshold"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
