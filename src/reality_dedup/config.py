"""Application configuration using pydantic-settings."""

from typing import Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reality_dedup.models import MatchingConfig
from reality_dedup.utils.text import DEFAULT_BOILERPLATE_KEYWORDS


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="REALITY_DEDUP_",
        extra="ignore",
    )

    # Database
    database_path: str = Field(default="data/listings.db")

    # Anthropic API (optional, needed for the AI tie-breaker)
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Anthropic API key for resolving ambiguous matches",
    )
    enable_ai_tiebreak: bool = Field(
        default=True,
        description="Escalate ambiguous pairs to Claude when an API key is configured",
    )
    ai_model: str = Field(default="claude-sonnet-4-5-20250929")
    ai_timeout_seconds: float = Field(default=20.0, ge=1, le=120)
    ai_max_concurrency: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum in-flight tie-breaker requests; excess requests queue",
    )
    ai_max_retries: int = Field(default=1, ge=0, le=5)

    # Fingerprinting
    area_bucket_m2: int = Field(default=5, ge=1, le=50)
    price_band_pct: float = Field(default=0.05, gt=0, lt=1)

    # Candidate search
    candidate_area_tolerance: float = Field(default=0.10, gt=0, lt=1)
    candidate_price_tolerance: float = Field(default=0.15, gt=0, lt=1)
    candidate_room_tolerance: int = Field(default=1, ge=0)
    candidate_limit: int = Field(default=100, ge=1, le=1000)

    # Match decision thresholds (score points out of 100)
    confirm_threshold: float = Field(default=70, ge=0, le=100)
    reject_threshold: float = Field(default=40, ge=0, le=100)

    # Normalizer
    boilerplate_keywords: str = Field(
        default=",".join(DEFAULT_BOILERPLATE_KEYWORDS),
        description="Comma-separated marketing phrases stripped from titles and descriptions",
    )

    # Batch run
    worker_concurrency: int = Field(default=8, ge=1, le=64)
    storage_retry_attempts: int = Field(default=3, ge=1, le=10)
    storage_retry_delay_seconds: float = Field(default=0.5, ge=0)

    @model_validator(mode="after")
    def check_thresholds(self) -> Self:
        """Ensure reject_threshold < confirm_threshold."""
        if self.reject_threshold >= self.confirm_threshold:
            raise ValueError("reject_threshold must be < confirm_threshold")
        return self

    @property
    def ai_tiebreak_enabled(self) -> bool:
        """Whether ambiguous pairs can be escalated to the AI tie-breaker."""
        return self.enable_ai_tiebreak and bool(self.anthropic_api_key.get_secret_value())

    def get_boilerplate_keywords(self) -> tuple[str, ...]:
        """Parse boilerplate_keywords string into a tuple of phrases."""
        return tuple(k.strip() for k in self.boilerplate_keywords.split(",") if k.strip())

    def get_matching_config(self) -> MatchingConfig:
        """Build MatchingConfig from settings."""
        return MatchingConfig(
            area_bucket_m2=self.area_bucket_m2,
            price_band_pct=self.price_band_pct,
            candidate_area_tolerance=self.candidate_area_tolerance,
            candidate_price_tolerance=self.candidate_price_tolerance,
            candidate_room_tolerance=self.candidate_room_tolerance,
            candidate_limit=self.candidate_limit,
            confirm_threshold=self.confirm_threshold,
            reject_threshold=self.reject_threshold,
            boilerplate_keywords=self.get_boilerplate_keywords(),
        )
