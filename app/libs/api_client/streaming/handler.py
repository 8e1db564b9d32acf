import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from .context import StreamingExecutionContext

logger = logging.getLogger(__name__)


class StreamingResponseHandler(ABC):
    """Receives the events of a streaming response.

    ``on_data`` gets every extracted item, ``on_complete`` fires once when the
    stream signalled completion and ``on_error`` reports failures that end the
    stream. ``should_cancel`` is polled while the stream is open.
    """

    @abstractmethod
    def on_data(self, data: Any) -> None: ...

    def on_chunk(self, data: Any) -> None:
        self.on_data(data)

    @abstractmethod
    def on_complete(self) -> None: ...

    @abstractmethod
    def on_error(self, error: Exception) -> None: ...

    def on_metadata(self, metadata: dict[str, Any]) -> None:
        pass

    def on_stream_start(self) -> None:
        pass

    def should_cancel(self) -> bool:
        return False


class CallbackStreamHandler(StreamingResponseHandler):
    def __init__(
        self,
        on_data: Callable[[Any], None],
        on_complete: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_metadata: Callable[[dict[str, Any]], None] | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ):
        self._on_data = on_data
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_metadata = on_metadata
        self._should_cancel = should_cancel

    def on_data(self, data: Any) -> None:
        self._on_data(data)

    def on_complete(self) -> None:
        if self._on_complete:
            self._on_complete()

    def on_error(self, error: Exception) -> None:
        if self._on_error:
            self._on_error(error)
        else:
            logger.error(f"Streaming error: {error}")

    def on_metadata(self, metadata: dict[str, Any]) -> None:
        if self._on_metadata:
            self._on_metadata(metadata)

    def should_cancel(self) -> bool:
        return bool(self._should_cancel and self._should_cancel())


class CollectingStreamHandler(StreamingResponseHandler):
    """Keeps everything it receives. Handy for short streams and tests."""

    def __init__(self):
        self.items: list[Any] = []
        self.metadata: list[dict[str, Any]] = []
        self.errors: list[Exception] = []
        self.completed = 0
        self.started = 0

    def on_data(self, data: Any) -> None:
        self.items.append(data)

    def on_complete(self) -> None:
        self.completed += 1

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)

    def on_metadata(self, metadata: dict[str, Any]) -> None:
        self.metadata.append(dict(metadata))

    def on_stream_start(self) -> None:
        self.started += 1


class ForwardingStreamHandler(StreamingResponseHandler):
    """Delivers processor events to the caller's handler and the execution context.

    Completion is only recorded; the engine calls ``on_complete`` on the caller's
    handler once the line loop has stopped.
    """

    def __init__(self, delegate: StreamingResponseHandler, context: StreamingExecutionContext):
        self._delegate = delegate
        self._context = context
        self.completion_signalled = False

    def on_data(self, data: Any) -> None:
        self._delegate.on_data(data)
        self._context.add_chunk(data)

    def on_chunk(self, data: Any) -> None:
        self._delegate.on_chunk(data)
        self._context.add_chunk(data)

    def on_complete(self) -> None:
        self.completion_signalled = True

    def on_error(self, error: Exception) -> None:
        self._delegate.on_error(error)

    def on_metadata(self, metadata: dict[str, Any]) -> None:
        self._delegate.on_metadata(metadata)
        for key, value in metadata.items():
            self._context.add_metadata(key, value)

    def on_stream_start(self) -> None:
        self._delegate.on_stream_start()

    def should_cancel(self) -> bool:
        return self._delegate.should_cancel()
