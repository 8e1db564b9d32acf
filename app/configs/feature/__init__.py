from pydantic import Field, NonNegativeInt, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings


class ApiClientRetryConfig(BaseSettings):
    """
    Retry and backoff defaults for API clients
    """

    API_CLIENT_MAX_RETRIES: PositiveInt = Field(
        description="Maximum number of attempts for a retried call, the first attempt included",
        default=10,
    )

    API_CLIENT_INITIAL_DELAY_MS: NonNegativeInt = Field(
        description="Delay in milliseconds the exponential backoff starts from",
        default=1000,
    )

    API_CLIENT_EXPONENTIAL_BASE: float = Field(
        ge=1.0,
        description="Multiplier applied to the backoff delay after every failed attempt",
        default=2.0,
    )

    API_CLIENT_USE_JITTER: bool = Field(
        description="Whether to multiply each backoff delay by a random factor in [1, 2)",
        default=True,
    )

    API_CLIENT_MIN_SLEEP_FOR_FINAL_RETRY_SECONDS: NonNegativeInt = Field(
        description="Remaining budget in seconds below which an oversized sleep is shortened"
        " so one last attempt still fits",
        default=500,
    )

    API_CLIENT_MAX_EXECUTION_TIME_FOR_FINAL_RETRY_SECONDS: NonNegativeInt = Field(
        description="Time in seconds reserved for the final attempt when a sleep is shortened",
        default=60,
    )


class HttpConfig(BaseSettings):
    """
    HTTP transport configurations for API clients
    """

    HTTP_REQUEST_MAX_CONNECT_TIMEOUT: int = Field(
        ge=1,
        description="Maximum connection timeout in seconds for HTTP requests",
        default=10,
    )

    HTTP_REQUEST_MAX_READ_TIMEOUT: int = Field(
        ge=1,
        description="Maximum read timeout in seconds for HTTP requests",
        default=600,
    )

    HTTP_REQUEST_MAX_WRITE_TIMEOUT: int = Field(
        ge=1,
        description="Maximum write timeout in seconds for HTTP requests",
        default=600,
    )

    HTTP_CANCEL_WATCHER_POLL_INTERVAL: PositiveFloat = Field(
        le=1.0,
        description="Interval in seconds at which in-flight calls poll their cancellation signal",
        default=0.1,
    )


class StreamingConfig(BaseSettings):
    """
    Defaults for streaming responses
    """

    STREAMING_READ_TIMEOUT: PositiveFloat = Field(
        description="Maximum time in seconds to wait for the next line of a stream",
        default=300,
    )


class LoggingConfig(BaseSettings):
    """
    Configuration for application logging
    """

    LOG_LEVEL: str = Field(
        description="Logging level, default to INFO. Set to ERROR for production environments.",
        default="INFO",
    )

    LOG_FILE: str | None = Field(
        description="File path for log output.",
        default=None,
    )

    LOG_FILE_MAX_SIZE: PositiveInt = Field(
        description="Maximum file size for file rotation retention, the unit is megabytes (MB)",
        default=20,
    )

    LOG_FILE_BACKUP_COUNT: PositiveInt = Field(
        description="Maximum file backup count file rotation retention",
        default=5,
    )

    LOG_FORMAT: str = Field(
        description="Format string for log messages",
        default=(
            "%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] "
            "[%(filename)s:%(lineno)d] %(trace_id)s - %(message)s"
        ),
    )

    LOG_DATEFORMAT: str | None = Field(
        description="Date format string for log timestamps",
        default=None,
    )

    LOG_TZ: str | None = Field(
        description="Timezone for log timestamps (e.g., 'America/New_York')",
        default="UTC",
    )


class FeatureConfig(
    ApiClientRetryConfig,
    HttpConfig,
    StreamingConfig,
    LoggingConfig,
):
    pass
