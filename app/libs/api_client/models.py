import json
import threading
import traceback
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import httpx

from .cancellation import CancellationToken
from .streaming.config import StreamingInfo
from .streaming.context import StreamingContext

CaptureCallback = Callable[["ApiCallCaptureInput"], None]


@dataclass(frozen=True, kw_only=True)
class ApiRequest:
    """One logical call. Retries reuse the same instance.

    Subclass and override ``create_response`` to turn a successful body into a
    domain-specific response; raise ``ApiResponseUnusableError`` from it when
    the body parses but cannot be used.
    """

    relative_url: str
    method: str = "GET"
    body: str | bytes = ""
    content_type: str = "application/json"
    headers: Mapping[str, str] = field(default_factory=httpx.Headers)
    max_execution_time_seconds: int = 0
    is_canceled_supplier: Callable[[], bool] | None = None
    cancellation_token: CancellationToken | None = None
    capture_on_success: CaptureCallback | None = None
    capture_on_error: CaptureCallback | None = None
    streaming: StreamingInfo = field(default_factory=StreamingInfo.disabled)
    binary_response: bool = False
    _canceled: threading.Event = field(default_factory=threading.Event, init=False, repr=False, compare=False)

    def __post_init__(self):
        # header names are case-insensitive
        object.__setattr__(self, "headers", httpx.Headers(self.headers))

    def cancel(self) -> None:
        self._canceled.set()

    def is_canceled(self) -> bool:
        if self._canceled.is_set():
            return True
        if self.cancellation_token is not None and self.cancellation_token.is_cancelled():
            return True
        return self.is_canceled_supplier is not None and bool(self.is_canceled_supplier())

    @property
    def is_streaming_enabled(self) -> bool:
        return self.streaming.enabled

    def body_bytes(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        return self.body.encode("utf-8")

    def with_headers(self, **headers: str) -> "ApiRequest":
        merged = httpx.Headers(self.headers)
        merged.update(headers)
        return replace(self, headers=merged)

    def with_streaming(self, streaming: StreamingInfo) -> "ApiRequest":
        return replace(self, streaming=streaming)

    def create_response(self, body: str | bytes) -> "ApiResponse":
        return ApiResponse(request=self, body=body)

    def create_streaming_response(self, context: StreamingContext) -> "ApiResponse":
        return ApiResponse(request=self, body="", streaming_context=context)


@dataclass(frozen=True, kw_only=True)
class ApiResponse:
    request: ApiRequest = field(repr=False)
    body: str | bytes
    streaming_context: StreamingContext | None = None

    @property
    def is_streaming(self) -> bool:
        return self.streaming_context is not None

    def text(self) -> str:
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8")
        return self.body

    def json(self) -> Any:
        return json.loads(self.text())


class RequestExecutionContext:
    """Raw response of the latest attempt, kept for capture callbacks."""

    def __init__(self):
        self.response_body: str | None = None
        self.response_bytes: bytes | None = None

    def record(self, body: str | bytes) -> None:
        if isinstance(body, bytes):
            self.response_bytes = body
            self.response_body = None
        else:
            self.response_body = body
            self.response_bytes = None


@dataclass(frozen=True, kw_only=True)
class ApiCallCaptureInput:
    start_time: datetime
    end_time: datetime
    success: bool
    exception_class: str | None = None
    exception_message: str | None = None
    exception_stacktrace: str | None = None
    input_data: str | None = None
    output_data: str | None = None

    @classmethod
    def build(
        cls,
        request: ApiRequest,
        context: RequestExecutionContext,
        start_time: datetime,
        error: BaseException | None = None,
    ) -> "ApiCallCaptureInput":
        if isinstance(request.body, bytes):
            input_data = f"binary body (size={len(request.body)})"
        else:
            input_data = request.body
        if context.response_bytes is not None:
            output_data = f"binary response (size={len(context.response_bytes)})"
        else:
            output_data = context.response_body
        return cls(
            start_time=start_time,
            end_time=datetime.now(),
            success=error is None,
            exception_class=type(error).__qualname__ if error else None,
            exception_message=str(error) if error else None,
            exception_stacktrace="".join(traceback.format_exception(error)) if error else None,
            input_data=input_data,
            output_data=output_data,
        )
