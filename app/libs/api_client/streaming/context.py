import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


class StreamingExecutionContext:
    """Accumulates the data and metadata of the current streaming attempt.

    Safe to share between the task reading the stream and anything inspecting
    it concurrently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._chunks: list[Any] = []
        self._metadata: dict[str, Any] = {}
        self._collected: list[str] = []
        self._collected_size = 0
        self.collection_truncated = False
        self.response_body: str | None = None
        self.response_bytes: bytes | None = None

    def collect_line(self, line: str, max_size: int) -> bool:
        """Keep a raw stream line unless the collected text would exceed ``max_size`` bytes.

        Once a line is refused nothing more is collected.
        """
        size = len(line.encode("utf-8")) + 1
        with self._lock:
            if self.collection_truncated or self._collected_size + size > max_size:
                self.collection_truncated = True
                return False
            self._collected.append(line)
            self._collected_size += size
            return True

    @property
    def collected_text(self) -> str:
        with self._lock:
            return "\n".join(self._collected)

    def add_chunk(self, chunk: Any) -> None:
        with self._lock:
            self._chunks.append(chunk)

    def add_metadata(self, key: str, value: Any) -> None:
        with self._lock:
            if value is None:
                self._metadata.pop(key, None)
            else:
                self._metadata[key] = value

    @property
    def chunks(self) -> list[Any]:
        with self._lock:
            return list(self._chunks)

    @property
    def metadata(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._metadata)

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()
            self._metadata.clear()
            self._collected.clear()
            self._collected_size = 0
            self.collection_truncated = False
            self.response_body = None
            self.response_bytes = None


@dataclass(frozen=True)
class StreamingResult:
    completed: bool
    canceled: bool = False
    error: Exception | None = None
    lines_processed: int = 0

    @property
    def success(self) -> bool:
        return self.completed and not self.canceled and self.error is None


@dataclass(frozen=True, kw_only=True)
class StreamingContext:
    """Outcome of a streaming call, attached to the response."""

    completed: bool
    canceled: bool
    error: Exception | None
    lines_processed: int
    chunks: tuple[Any, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    start_time_ms: int = 0
    end_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.completed and not self.canceled and self.error is None

    @property
    def duration_ms(self) -> int:
        return self.end_time_ms - self.start_time_ms

    def metadata_value(self, key: str, expected_type: type | None = None) -> Any:
        value = self.metadata.get(key)
        if expected_type is not None and value is not None and not isinstance(value, expected_type):
            return None
        return value

    @classmethod
    def from_streaming_result(
        cls,
        result: StreamingResult,
        execution_context: StreamingExecutionContext,
        start_time_ms: int,
        end_time_ms: int | None = None,
    ) -> "StreamingContext":
        return cls(
            completed=result.completed,
            canceled=result.canceled,
            error=result.error,
            lines_processed=result.lines_processed,
            chunks=tuple(execution_context.chunks),
            metadata=MappingProxyType(execution_context.metadata),
            start_time_ms=start_time_ms,
            end_time_ms=end_time_ms if end_time_ms is not None else int(time.time() * 1000),
        )
