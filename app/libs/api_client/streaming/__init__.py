"""Streaming responses: formats, processors and the per-call context."""

from .config import StreamingConfig, StreamingInfo
from .context import StreamingContext, StreamingExecutionContext, StreamingResult
from .factory import (
    create_custom_json_lines_processor,
    create_custom_sse_processor,
    create_processor,
)
from .formats import StreamingFormat
from .handler import (
    CallbackStreamHandler,
    CollectingStreamHandler,
    ForwardingStreamHandler,
    StreamingResponseHandler,
)
from .processors import (
    JsonLinesStreamProcessor,
    RawTextStreamProcessor,
    SSEStreamProcessor,
    StreamProcessor,
)

__all__ = [
    "StreamingConfig",
    "StreamingInfo",
    "StreamingContext",
    "StreamingExecutionContext",
    "StreamingResult",
    "StreamingFormat",
    "StreamingResponseHandler",
    "CallbackStreamHandler",
    "CollectingStreamHandler",
    "ForwardingStreamHandler",
    "StreamProcessor",
    "SSEStreamProcessor",
    "JsonLinesStreamProcessor",
    "RawTextStreamProcessor",
    "create_processor",
    "create_custom_sse_processor",
    "create_custom_json_lines_processor",
]
