"""
Configuration for the orchestrator with Pydantic Settings and validation.

Key features:
- Per-stage retry policy as typed, overridable configuration
- Environment variable parsing with nested sections (NEXUS_RETRY__MAX_DELAY_MS=...)
- Validation of thresholds and stage names at load time
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StageRetryPolicy(BaseModel):
    """Retry policy for one stage."""

    max_retries: int = Field(3, ge=0)
    base_delay_ms: int = Field(2000, ge=0)


def _default_stage_policies() -> dict[str, StageRetryPolicy]:
    table = {
        "news-sourcing": (3, 2000),
        "research": (3, 2000),
        "script-gen": (3, 2000),
        "pronunciation": (2, 1000),
        "tts": (5, 3000),
        "visual-gen": (3, 2000),
        "render": (3, 5000),
        "thumbnail": (3, 2000),
        "youtube": (5, 3000),
        "twitter": (2, 1000),
        "notifications": (3, 1000),
    }
    return {
        stage: StageRetryPolicy(max_retries=retries, base_delay_ms=delay)
        for stage, (retries, delay) in table.items()
    }


class RetryConfig(BaseModel):
    """Configuration for stage retries."""

    max_retries: int = Field(3, ge=0)
    base_delay_ms: int = Field(2000, ge=0)
    max_delay_ms: int = Field(30000, ge=0)
    stages: dict[str, StageRetryPolicy] = Field(default_factory=_default_stage_policies)

    def policy_for(self, stage: str) -> StageRetryPolicy:
        """Retry policy for ``stage``, falling back to the defaults."""
        return self.stages.get(
            stage, StageRetryPolicy(max_retries=self.max_retries, base_delay_ms=self.base_delay_ms)
        )


class StageConfig(BaseModel):
    """Default configuration handed to every stage."""

    timeout_ms: int = Field(300000, gt=0)
    retries: int = Field(3, ge=0)


class PipelineConfig(BaseModel):
    """Configuration for pipeline execution."""

    # Stages where a CRITICAL exhaustion or provider failure skips the run instead of failing it.
    critical_stages: list[str] = Field(
        default_factory=lambda: [
            "news-sourcing",
            "research",
            "script-gen",
            "tts",
            "visual-gen",
            "render",
            "thumbnail",
            "youtube",
            "twitter",
        ]
    )
    publish_stage: str = Field("youtube")
    max_pipeline_duration_ms: int = Field(4 * 60 * 60 * 1000, gt=0)
    state_init_attempts: int = Field(3, gt=0)
    state_init_backoff_seconds: float = Field(1.0, ge=0)


class QueueConfig(BaseModel):
    """Configuration for the failed-topic queue."""

    max_retries: int = Field(2, ge=0)


class CostConfig(BaseModel):
    """Configuration for budget tracking and cost alerts."""

    warning_threshold: float = Field(0.75, ge=0)
    critical_threshold: float = Field(1.0, ge=0)
    alert_cooldown_seconds: float = Field(3600.0, ge=0)
    initial_credit: float = Field(300.0, ge=0)

    @model_validator(mode="after")
    def check_thresholds(self) -> "CostConfig":
        if self.critical_threshold < self.warning_threshold:
            raise ValueError("critical_threshold must not be below warning_threshold")
        return self


class IncidentConfig(BaseModel):
    """Configuration for incident queries."""

    cache_ttl_seconds: float = Field(300.0, ge=0)


class StorageConfig(BaseModel):
    """Configuration for the document store backend."""

    backend: str = Field("memory")
    root: Path = Field(Path("./data/documents"))

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = {"memory", "local"}
        if v not in allowed:
            raise ValueError(f"backend must be one of {allowed}")
        return v


class ObservabilityConfig(BaseModel):
    """Configuration for observability and monitoring."""

    log_level: str = Field("INFO")
    enable_metrics: bool = Field(True)
    enable_tracing: bool = Field(False)
    service_name: str = Field("nexus-orchestrator")
    service_version: str = Field("1.0.0")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v}")
        return level


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="NEXUS_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)
    stage: StageConfig = Field(default_factory=StageConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    cost: CostConfig = Field(default_factory=CostConfig)
    incidents: IncidentConfig = Field(default_factory=IncidentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    environment: str = Field(
        "development", description="Environment: development, staging, production"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
