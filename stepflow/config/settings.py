"""Engine Settings - Central Configuration"""
from functools import lru_cache
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Engine settings loaded from environment variables (prefix STEPFLOW_)"""

    model_config = SettingsConfigDict(
        env_prefix="STEPFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Retry policy for automation steps
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    retry_jitter: float = Field(default=0.2, ge=0, le=1)

    # Operation invocation
    step_timeout_seconds: float = Field(default=30.0, gt=0)

    # Optimistic concurrency
    conflict_max_retries: int = Field(default=5, ge=0)

    # Logging
    log_level: str = "INFO"
    logs_path: Optional[str] = None  # File logging is off unless a path is set

    # MongoDB (durable state store)
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "stepflow"
    mongo_instances_collection: str = "workflow_instances"

    @property
    def file_logging_enabled(self) -> bool:
        """Check if rotating file logs should be written"""
        return bool(self.logs_path)


@lru_cache()
def get_settings() -> EngineSettings:
    """Get cached settings instance"""
    return EngineSettings()
