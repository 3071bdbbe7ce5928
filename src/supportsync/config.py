"""Session configuration, read from the environment (``SUPPORTSYNC_*``)."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from supportsync.duration import parse_duration


class SyncSettings(BaseSettings):
    """Settings for one dashboard session."""

    model_config = SettingsConfigDict(
        env_prefix="SUPPORTSYNC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: str = "http://localhost:8080"
    timeout: float = Field(default=30.0, gt=0)  # seconds

    read_max_attempts: int = Field(default=3, ge=1)
    mutation_max_attempts: int = Field(default=2, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)  # seconds, doubled per attempt
    retry_max_delay: float = Field(default=10.0, ge=0)

    gc_interval: str | int = "1m"

    log_level: str = "info"
    json_logs: bool = False

    @field_validator("gc_interval")
    @classmethod
    def _check_interval(cls, value: str | int) -> str | int:
        parse_duration(value)
        return value

    @property
    def gc_interval_ms(self) -> int:
        return parse_duration(self.gc_interval)


__all__ = ["SyncSettings"]
