from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveFloat, PositiveInt

from configs import AppConfig


class ApiClientSettings(BaseModel):
    """Retry behaviour and hooks of one client."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_retries: PositiveInt = Field(default=10, description="Attempts per call, the first one included")
    initial_delay_ms: NonNegativeInt = Field(default=1000)
    exponential_base: float = Field(default=2.0, ge=1.0)
    use_jitter: bool = Field(default=True)
    min_sleep_duration_for_final_retry_seconds: NonNegativeInt = Field(default=500)
    max_execution_time_for_final_retry_seconds: NonNegativeInt = Field(default=60)
    cancel_poll_interval: PositiveFloat = Field(default=0.1, le=1.0)
    bearer_token: str | None = Field(default=None, repr=False)
    before_send: Callable[[Any], None] | None = Field(
        default=None,
        description="Called with the request before every logical call",
    )

    @classmethod
    def from_config(cls, config: AppConfig, **overrides: Any) -> "ApiClientSettings":
        values: dict[str, Any] = {
            "max_retries": config.API_CLIENT_MAX_RETRIES,
            "initial_delay_ms": config.API_CLIENT_INITIAL_DELAY_MS,
            "exponential_base": config.API_CLIENT_EXPONENTIAL_BASE,
            "use_jitter": config.API_CLIENT_USE_JITTER,
            "min_sleep_duration_for_final_retry_seconds": config.API_CLIENT_MIN_SLEEP_FOR_FINAL_RETRY_SECONDS,
            "max_execution_time_for_final_retry_seconds": config.API_CLIENT_MAX_EXECUTION_TIME_FOR_FINAL_RETRY_SECONDS,
            "cancel_poll_interval": config.HTTP_CANCEL_WATCHER_POLL_INTERVAL,
        }
        values.update(overrides)
        return cls(**values)
