import asyncio
from collections.abc import Callable
from concurrent.futures import Future as ConcurrentFuture
from typing import Any, Generic, TypeVar

import httpx

from .cancellation import CancellationToken
from .client import ApiClient
from .errors import ApiConfigurationError
from .models import ApiRequest, ApiResponse, CaptureCallback
from .streaming.config import StreamingConfig, StreamingInfo
from .streaming.formats import StreamingFormat
from .streaming.handler import StreamingResponseHandler

RequestT = TypeVar("RequestT", bound=ApiRequest)


class ApiRequestBuilder(Generic[RequestT]):
    """Fluent construction of a request, optionally bound to the client that runs it.

    >>> response = await (
    ...     ApiRequestBuilder(ChatRequest, client)
    ...     .body(payload)
    ...     .max_execution_time(30)
    ...     .stream(handler, StreamingFormat.SERVER_SENT_EVENTS)
    ...     .execute_with_retry()
    ... )
    """

    def __init__(self, request_class: type[RequestT] = ApiRequest, client: ApiClient | None = None, **fields: Any):
        self._request_class = request_class
        self._client = client
        self._fields: dict[str, Any] = dict(fields)
        self._headers = httpx.Headers()

    def _set(self, name: str, value: Any) -> "ApiRequestBuilder[RequestT]":
        self._fields[name] = value
        return self

    def method(self, method: str) -> "ApiRequestBuilder[RequestT]":
        return self._set("method", method)

    def relative_url(self, relative_url: str) -> "ApiRequestBuilder[RequestT]":
        return self._set("relative_url", relative_url)

    def body(self, body: str | bytes) -> "ApiRequestBuilder[RequestT]":
        return self._set("body", body)

    def content_type(self, content_type: str) -> "ApiRequestBuilder[RequestT]":
        return self._set("content_type", content_type)

    def header(self, name: str, value: str) -> "ApiRequestBuilder[RequestT]":
        self._headers[name] = value
        return self

    def max_execution_time(self, seconds: int) -> "ApiRequestBuilder[RequestT]":
        return self._set("max_execution_time_seconds", seconds)

    def cancel_supplier(self, supplier: Callable[[], bool]) -> "ApiRequestBuilder[RequestT]":
        return self._set("is_canceled_supplier", supplier)

    def cancel_token(self, token: CancellationToken) -> "ApiRequestBuilder[RequestT]":
        return self._set("cancellation_token", token)

    def cancel_future(self, future: asyncio.Future | ConcurrentFuture) -> "ApiRequestBuilder[RequestT]":
        return self._set("is_canceled_supplier", future.cancelled)

    def capture_on_success(self, callback: CaptureCallback) -> "ApiRequestBuilder[RequestT]":
        return self._set("capture_on_success", callback)

    def capture_on_error(self, callback: CaptureCallback) -> "ApiRequestBuilder[RequestT]":
        return self._set("capture_on_error", callback)

    def binary_response(self, binary: bool = True) -> "ApiRequestBuilder[RequestT]":
        return self._set("binary_response", binary)

    def stream(
        self,
        handler: StreamingResponseHandler,
        format: StreamingFormat = StreamingFormat.SERVER_SENT_EVENTS,
    ) -> "ApiRequestBuilder[RequestT]":
        return self._set("streaming", StreamingInfo.of(format, handler))

    def stream_with_config(
        self,
        handler: StreamingResponseHandler,
        config: StreamingConfig,
        format: StreamingFormat = StreamingFormat.SERVER_SENT_EVENTS,
    ) -> "ApiRequestBuilder[RequestT]":
        return self._set("streaming", StreamingInfo.of(format, handler, config))

    def build(self) -> RequestT:
        fields = dict(self._fields)
        if self._headers:
            headers = httpx.Headers(fields.get("headers"))
            headers.update(self._headers)
            fields["headers"] = headers
        return self._request_class(**fields)

    def _require_client(self) -> ApiClient:
        if self._client is None:
            raise ApiConfigurationError("No client bound to this builder")
        return self._client

    async def execute(self) -> ApiResponse:
        return await self._require_client().execute(self.build())

    async def execute_with_retry(self) -> ApiResponse:
        return await self._require_client().execute_with_retry(self.build())

    def execute_async(self) -> asyncio.Task[ApiResponse]:
        return self._require_client().execute_async(self.build())

    def execute_async_with_retry(self) -> asyncio.Task[ApiResponse]:
        return self._require_client().execute_async_with_retry(self.build())
