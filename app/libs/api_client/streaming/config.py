from dataclasses import dataclass

from configs import AppConfig

from .formats import StreamingFormat
from .handler import StreamingResponseHandler
from .processors import StreamProcessor


@dataclass(frozen=True, kw_only=True)
class StreamingConfig:
    """Per-request streaming options.

    With ``enable_reconnect`` a failed stream is retried at most
    ``max_reconnect_attempts`` times, the backoff starting at ``reconnect_delay``
    seconds (the client's initial delay when unset). With ``collect_data`` the
    raw lines are kept, up to ``max_collected_data_size`` bytes, and handed to
    capture callbacks.
    """

    stream_timeout: float = 300.0
    enable_reconnect: bool = True
    max_reconnect_attempts: int = 3
    reconnect_delay: float | None = None
    collect_data: bool = False
    max_collected_data_size: int = 10 * 1024 * 1024
    last_event_id: str | None = None

    def __post_init__(self):
        if self.stream_timeout < 0:
            raise ValueError("stream_timeout must not be negative")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must not be negative")
        if self.reconnect_delay is not None and self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        if self.max_collected_data_size <= 0:
            raise ValueError("max_collected_data_size must be positive")

    @classmethod
    def from_config(cls, config: AppConfig) -> "StreamingConfig":
        return cls(stream_timeout=config.STREAMING_READ_TIMEOUT)


@dataclass(frozen=True, kw_only=True)
class StreamingInfo:
    """Whether and how a request's response is streamed.

    ``processor`` overrides the processor the factory would pick for ``format``
    and is required for ``StreamingFormat.CUSTOM``.
    """

    enabled: bool = False
    format: StreamingFormat | None = None
    handler: StreamingResponseHandler | None = None
    config: StreamingConfig | None = None
    processor: StreamProcessor | None = None
    data_type: type = str

    def __post_init__(self):
        if self.enabled and (self.format is None or self.handler is None):
            raise ValueError("Streaming requires a format and a handler")

    @classmethod
    def disabled(cls) -> "StreamingInfo":
        return cls()

    @classmethod
    def of(
        cls,
        format: StreamingFormat,
        handler: StreamingResponseHandler,
        config: StreamingConfig | None = None,
        **kwargs,
    ) -> "StreamingInfo":
        return cls(enabled=True, format=format, handler=handler, config=config, **kwargs)

    def config_or_default(self, default: StreamingConfig | None = None) -> StreamingConfig:
        return self.config or default or StreamingConfig()
