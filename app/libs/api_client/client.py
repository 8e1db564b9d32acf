import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any, TypeVar

import httpx

from configs import app_config
from extensions.ext_logging import trace_id_generator, trace_id_var

from .backoff import adjust_sleep_for_final_retry, apply_sleep, next_sleep
from .errors import (
    RETRYABLE_STREAMING_ERRORS,
    WELL_KNOWN_STATUS_KINDS,
    ApiCancellationError,
    ApiClientError,
    ApiConfigurationError,
    ApiRetriesExhaustedError,
    ApiStatusError,
    ApiTimeoutError,
    ErrorKind,
    StatusCodeRegistration,
    StreamingConnectionError,
    StreamingError,
    StreamingPartialResponseError,
    StreamingTimeoutError,
    StreamProcessingError,
)
from .http_config import HttpConfiguration
from .models import ApiCallCaptureInput, ApiRequest, ApiResponse, CaptureCallback, RequestExecutionContext
from .settings import ApiClientSettings
from .streaming.config import StreamingConfig, StreamingInfo
from .streaming.context import StreamingContext, StreamingExecutionContext, StreamingResult
from .streaming.factory import create_processor
from .streaming.handler import ForwardingStreamHandler, StreamingResponseHandler
from .streaming.processors import StreamProcessor
from .watcher import CancellationWatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
METHODS_WITH_BODY = ("POST", "PUT", "PATCH")


def _default_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        None,
        connect=app_config.HTTP_REQUEST_MAX_CONNECT_TIMEOUT,
        read=app_config.HTTP_REQUEST_MAX_READ_TIMEOUT,
        write=app_config.HTTP_REQUEST_MAX_WRITE_TIMEOUT,
    )


class ApiClient:
    """Base class for REST API clients.

    Subclasses set the base URL and register the status codes of their API,
    then run requests through ``execute`` or ``execute_with_retry``. Only HTTP
    200 counts as success; every other status becomes an error.
    """

    def __init__(
        self,
        settings: ApiClientSettings | None = None,
        http_config: HttpConfiguration | None = None,
        base_url: str | None = None,
        timeout: httpx.Timeout | float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        streaming_config: StreamingConfig | None = None,
    ):
        self.settings = settings or ApiClientSettings.from_config(app_config)
        self.http_config = http_config or HttpConfiguration()
        if self.settings.bearer_token and not any(
            name.lower() == "authorization" for name in self.http_config.global_headers
        ):
            self.http_config = self.http_config.with_header(
                "Authorization", f"Bearer {self.settings.bearer_token}"
            )
        self._base_url = base_url
        if timeout is None:
            self._timeout = _default_timeout()
        else:
            self._timeout = timeout if isinstance(timeout, httpx.Timeout) else httpx.Timeout(timeout)
        self._transport = transport
        self._status_codes: dict[int, StatusCodeRegistration] = {}
        self._warned_no_registrations = False
        self._client: httpx.AsyncClient | None = None
        self.streaming_config = streaming_config or StreamingConfig.from_config(app_config)

    # configuration

    @property
    def base_url(self) -> str:
        if not self._base_url:
            raise ApiConfigurationError("Base URL is not set, call set_base_url() first")
        return self._base_url

    def set_base_url(self, base_url: str) -> None:
        self._base_url = base_url

    def register_status_code(
        self,
        status_code: int,
        kind: ErrorKind | None = None,
        message: str | None = None,
        retry: bool = False,
    ) -> None:
        kind = kind or WELL_KNOWN_STATUS_KINDS.get(status_code, ErrorKind.OTHER)
        self._status_codes[status_code] = StatusCodeRegistration(
            kind=kind,
            message=message or f"HTTP {status_code}",
            retry=retry,
        )

    def status_code_registration(self, status_code: int) -> StatusCodeRegistration | None:
        return self._status_codes.get(status_code)

    # lifecycle

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApiClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        await self.close()

    # public entry points

    async def send_request(self, request: ApiRequest) -> ApiResponse:
        """Single attempt of a non-streaming request."""
        return await self._call(request, lambda ctx: self._run_request(request, ctx))

    async def send_request_with_retry(self, request: ApiRequest) -> ApiResponse:
        return await self._call(
            request,
            lambda ctx: self._execute_with_retry(lambda: self._run_request(request, ctx), request),
        )

    async def execute(self, request: ApiRequest) -> ApiResponse:
        """Run ``request`` once.

        For streaming requests the outcome of the stream, errors included, is
        in ``response.streaming_context``.
        """
        if request.is_streaming_enabled:
            return await self._call(request, lambda ctx: self._execute_streaming(request, ctx, retry=False))
        return await self.send_request(request)

    async def execute_with_retry(self, request: ApiRequest) -> ApiResponse:
        if request.is_streaming_enabled:
            return await self._call(request, lambda ctx: self._execute_streaming(request, ctx, retry=True))
        return await self.send_request_with_retry(request)

    def execute_async(self, request: ApiRequest) -> asyncio.Task[ApiResponse]:
        return asyncio.create_task(self.execute(request))

    def execute_async_with_retry(self, request: ApiRequest) -> asyncio.Task[ApiResponse]:
        return asyncio.create_task(self.execute_with_retry(request))

    async def _call(
        self,
        request: ApiRequest,
        operation: Callable[[RequestExecutionContext], Awaitable[T]],
    ) -> T:
        if self.settings.before_send is not None:
            self.settings.before_send(request)
        token = trace_id_var.set(trace_id_generator()) if trace_id_var.get() is None else None
        execution_context = RequestExecutionContext()
        start_time = datetime.now()
        try:
            result = await operation(execution_context)
        except Exception as e:
            captured = e.__cause__ if isinstance(e, ApiTimeoutError) and e.__cause__ is not None else e
            self._capture(request.capture_on_error, request, execution_context, start_time, captured)
            raise
        else:
            self._capture(request.capture_on_success, request, execution_context, start_time)
            return result
        finally:
            if token is not None:
                trace_id_var.reset(token)

    def _capture(
        self,
        callback: CaptureCallback | None,
        request: ApiRequest,
        execution_context: RequestExecutionContext,
        start_time: datetime,
        error: BaseException | None = None,
    ) -> None:
        if callback is None:
            return
        try:
            callback(ApiCallCaptureInput.build(request, execution_context, start_time, error))
        except Exception as e:
            logger.warning(f"Capture callback failed: {e}")

    # request building and dispatch

    def _warn_if_no_registrations(self) -> None:
        if not self._status_codes and not self._warned_no_registrations:
            self._warned_no_registrations = True
            logger.warning(
                f"{type(self).__name__} has no registered status codes, "
                "every non-200 response becomes a generic ApiClientError"
            )

    def _build_http_request(
        self,
        client: httpx.AsyncClient,
        request: ApiRequest,
        leading_headers: Mapping[str, str],
        timeout: httpx.Timeout | None = None,
    ) -> httpx.Request:
        url = self.base_url + request.relative_url
        method = request.method.upper()
        if method not in SUPPORTED_METHODS:
            raise ApiClientError(f"Unsupported HTTP method: {request.method}")

        headers = httpx.Headers(leading_headers)
        headers.update(self.http_config.global_headers)
        http_request = client.build_request(
            method,
            url,
            headers=headers,
            content=request.body_bytes() if method in METHODS_WITH_BODY else None,
            timeout=timeout or self._timeout,
        )
        for modifier in self.http_config.request_modifiers:
            modifier(http_request)
        http_request.headers.update(request.headers)
        return http_request

    async def _send_watched(
        self,
        client: httpx.AsyncClient,
        http_request: httpx.Request,
        is_canceled: Callable[[], bool],
        timeout_seconds: int,
        stream: bool = False,
    ) -> httpx.Response:
        """Send ``http_request`` while a watcher polls ``is_canceled``."""
        send_task = asyncio.create_task(client.send(http_request, stream=stream))
        watcher = CancellationWatcher(send_task, is_canceled, self.settings.cancel_poll_interval)
        try:
            async with watcher:
                if timeout_seconds > 0:
                    return await asyncio.wait_for(send_task, timeout=timeout_seconds)
                return await send_task
        except asyncio.CancelledError:
            send_task.cancel()
            current = asyncio.current_task()
            if watcher.triggered and not (current is not None and current.cancelling()):
                raise ApiCancellationError("Request was canceled") from None
            raise
        except TimeoutError as e:
            error_class = StreamingTimeoutError if stream else ApiTimeoutError
            raise error_class(
                f"Maximum execution timeout of {timeout_seconds} seconds has been reached!"
            ) from e
        except httpx.TimeoutException as e:
            error_class = StreamingTimeoutError if stream else ApiTimeoutError
            raise error_class(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            if stream:
                raise StreamingConnectionError(f"Streaming connection failed: {e}") from e
            raise ApiClientError(f"Request failed: {e}") from e

    def _status_error(self, status_code: int, body: str, message: str | None = None) -> ApiClientError:
        registration = self._status_codes.get(status_code)
        if registration is not None:
            return registration.create_error(status_code, body, message)
        return ApiClientError(
            message or f"Unexpected HTTP status {status_code} - {body}",
            status_code=status_code,
            body=body,
        )

    async def _run_request(self, request: ApiRequest, execution_context: RequestExecutionContext) -> ApiResponse:
        self._warn_if_no_registrations()
        client = await self._ensure_client()
        http_request = self._build_http_request(client, request, {"Content-Type": request.content_type})

        logger.info(f"-> {http_request.method} {http_request.url}")
        start_time = time.monotonic()
        http_response = await self._send_watched(
            client, http_request, request.is_canceled, request.max_execution_time_seconds
        )
        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"<- {http_response.status_code} ({latency_ms}ms)")

        body: str | bytes = http_response.content if request.binary_response else http_response.text
        execution_context.record(body)
        if http_response.status_code != 200:
            raise self._status_error(http_response.status_code, http_response.text)
        return request.create_response(body)

    # retry

    def _now_ms(self) -> int:
        return int(time.monotonic() * 1000)

    def _is_retryable(self, error: Exception) -> bool:
        return isinstance(error, ApiStatusError) and error.retryable

    def _deadline_error(
        self,
        max_duration_seconds: int,
        reason: str | None,
        streaming: bool,
        message: str | None = None,
    ) -> ApiTimeoutError:
        if message:
            message = f"{message}, maximum execution time of {max_duration_seconds}s!"
        else:
            message = f"Maximum execution time of {max_duration_seconds}s reached!"
        if reason:
            message = f"{message} {reason}"
        return StreamingTimeoutError(message) if streaming else ApiTimeoutError(message)

    async def _execute_with_timeout(self, operation: Callable[[], Awaitable[T]], remaining_ms: float) -> T:
        """Run ``operation``, raising ``TimeoutError`` once ``remaining_ms`` have passed."""
        if remaining_ms <= 0:
            return await operation()
        return await asyncio.wait_for(operation(), timeout=remaining_ms / 1000)

    async def _execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        request: ApiRequest,
        streaming: bool = False,
        is_retryable: Callable[[Exception], bool] | None = None,
        initial_delay_ms: float | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds, fails for good or the budget runs out.

        Only retry-eligible errors lead to another attempt. Cancellation is
        checked before every attempt and before every backoff sleep.
        """
        settings = self.settings
        is_retryable = is_retryable or self._is_retryable
        start_ms = self._now_ms()
        max_duration_seconds = request.max_execution_time_seconds
        max_duration_ms = max_duration_seconds * 1000
        delay_ms: float = settings.initial_delay_ms if initial_delay_ms is None else initial_delay_ms
        latest_reason: str | None = None
        latest_error: Exception | None = None

        for attempt in range(1, settings.max_retries + 1):
            if request.is_canceled():
                raise ApiCancellationError(f"Request was cancelled before retry attempt {attempt}")

            remaining_ms = max_duration_ms - (self._now_ms() - start_ms)
            if max_duration_ms > 0 and remaining_ms <= 0:
                raise self._deadline_error(max_duration_seconds, latest_reason, streaming) from latest_error

            try:
                return await self._execute_with_timeout(operation, remaining_ms if max_duration_ms > 0 else 0)
            except TimeoutError as e:
                if streaming:
                    message = "Streaming request timed out during execution"
                else:
                    message = "Request timed out during execution"
                raise self._deadline_error(max_duration_seconds, latest_reason, streaming, message) from e
            except ApiClientError as e:
                if not is_retryable(e):
                    raise
                latest_reason = f"Retriable error: {e}"
                latest_error = e
                logger.warning(f"Attempt {attempt}/{settings.max_retries} failed: {e}")

            if attempt == settings.max_retries:
                raise ApiRetriesExhaustedError(
                    f"Maximum retries of {settings.max_retries} exhausted! {latest_reason}",
                    max_retries=settings.max_retries,
                    reason=latest_reason,
                ) from latest_error

            remaining_ms = max_duration_ms - (self._now_ms() - start_ms)
            if max_duration_ms > 0 and remaining_ms <= 0:
                raise self._deadline_error(max_duration_seconds, latest_reason, streaming) from latest_error

            if request.is_canceled():
                raise ApiCancellationError("Request was cancelled before retry sleep")

            delay_ms = next_sleep(delay_ms, settings.exponential_base, settings.use_jitter)
            sleep_ms = adjust_sleep_for_final_retry(
                max_duration_seconds,
                delay_ms,
                remaining_ms,
                settings.min_sleep_duration_for_final_retry_seconds,
                settings.max_execution_time_for_final_retry_seconds,
            )
            logger.info(f"Retrying in {sleep_ms:.0f}ms (attempt {attempt + 1}/{settings.max_retries})")
            try:
                await apply_sleep(sleep_ms, max_duration_ms, remaining_ms)
            except ApiTimeoutError as e:
                raise self._deadline_error(max_duration_seconds, latest_reason, streaming, str(e)) from latest_error

        raise ApiClientError("Exponential backoff logic exhausted unexpectedly")

    # streaming

    def _resolve_processor(self, info: StreamingInfo) -> StreamProcessor:
        if info.processor is not None:
            return info.processor
        try:
            return create_processor(info.format, info.data_type)
        except ValueError as e:
            raise StreamingError(str(e)) from e

    def _reconnect_policy(self, config: StreamingConfig) -> Callable[[Exception], bool]:
        """Retry predicate for one streaming call.

        Stream failures are retried while reconnecting is enabled and
        ``max_reconnect_attempts`` is not used up. Status errors follow the
        registrations.
        """
        reconnects = 0

        def is_retryable(error: Exception) -> bool:
            nonlocal reconnects
            if not isinstance(error, StreamingError):
                return self._is_retryable(error)
            if not config.enable_reconnect or not isinstance(error, RETRYABLE_STREAMING_ERRORS):
                return False
            if reconnects >= config.max_reconnect_attempts:
                logger.warning(f"Giving up on stream after {reconnects} reconnects")
                return False
            reconnects += 1
            return True

        return is_retryable

    async def _execute_streaming(
        self,
        request: ApiRequest,
        execution_context: RequestExecutionContext,
        retry: bool,
    ) -> ApiResponse:
        info = request.streaming
        processor = self._resolve_processor(info)
        config = info.config_or_default(self.streaming_config)
        context = StreamingExecutionContext()
        start_ms = int(time.time() * 1000)

        async def attempt() -> StreamingResult:
            # a retried stream starts over, earlier chunks are discarded
            context.clear()
            processor.reset()
            result = await self._run_streaming_attempt(request, info, config, processor, context)
            if context.response_body is not None:
                execution_context.record(context.response_body)
            if retry and result.error is not None:
                if isinstance(result.error, ApiClientError):
                    raise result.error
                raise StreamingError(f"Non-retriable streaming error: {result.error}") from result.error
            return result

        if retry:
            reconnect_delay_ms = None if config.reconnect_delay is None else config.reconnect_delay * 1000
            result = await self._execute_with_retry(
                attempt,
                request,
                streaming=True,
                is_retryable=self._reconnect_policy(config),
                initial_delay_ms=reconnect_delay_ms,
            )
        else:
            result = await attempt()
        streaming_context = StreamingContext.from_streaming_result(result, context, start_ms)
        return request.create_streaming_response(streaming_context)

    async def _run_streaming_attempt(
        self,
        request: ApiRequest,
        info: StreamingInfo,
        config: StreamingConfig,
        processor: StreamProcessor,
        context: StreamingExecutionContext,
    ) -> StreamingResult:
        if request.is_canceled():
            raise ApiCancellationError("Streaming request was canceled before start")
        self._warn_if_no_registrations()

        handler = info.handler
        client = await self._ensure_client()
        leading_headers = {"Content-Type": request.content_type}
        leading_headers.update(self.http_config.streaming_request_headers(info.format))
        stream_timeout = httpx.Timeout(
            None,
            connect=self._timeout.connect,
            read=config.stream_timeout or None,
            write=self._timeout.write,
            pool=self._timeout.pool,
        )
        http_request = self._build_http_request(client, request, leading_headers, timeout=stream_timeout)
        if config.last_event_id:
            http_request.headers["Last-Event-ID"] = config.last_event_id

        logger.info(f"-> {http_request.method} {http_request.url} (stream, {info.format})")
        http_response = await self._send_watched(
            client,
            http_request,
            lambda: request.is_canceled() or handler.should_cancel(),
            request.max_execution_time_seconds,
            stream=True,
        )
        try:
            status_code = http_response.status_code
            if status_code != 200:
                body = (await http_response.aread()).decode("utf-8", errors="replace")
                context.response_body = body
                message = f"Streaming request failed with status {status_code}: {body}"
                if status_code in self._status_codes:
                    raise self._status_error(status_code, body, message)
                raise StreamingConnectionError(message, status_code=status_code, body=body)
            return await self._process_stream(request, http_response, handler, processor, config, context)
        finally:
            await http_response.aclose()

    async def _process_stream(
        self,
        request: ApiRequest,
        http_response: httpx.Response,
        handler: StreamingResponseHandler,
        processor: StreamProcessor,
        config: StreamingConfig,
        context: StreamingExecutionContext,
    ) -> StreamingResult:
        forwarding = ForwardingStreamHandler(handler, context)
        completed = False
        canceled = False
        error: Exception | None = None
        lines_processed = 0

        handler.on_stream_start()
        try:
            async for line in http_response.aiter_lines():
                if request.is_canceled() or handler.should_cancel():
                    handler.on_error(StreamingError("Stream was canceled"))
                    canceled = True
                    break
                if config.collect_data and not context.collection_truncated:
                    if not context.collect_line(line, config.max_collected_data_size):
                        logger.warning(
                            f"Collected stream data exceeds {config.max_collected_data_size} bytes, "
                            "further lines are not collected"
                        )
                try:
                    processor.process_line(line, forwarding)
                    lines_processed += 1
                    if forwarding.completion_signalled or processor.is_completion_line(line):
                        completed = True
                        break
                except StreamProcessingError as e:
                    logger.warning(f"Error processing streaming line: {e}")
                except Exception as e:
                    logger.error(f"Unexpected error processing streaming line: {e}")
                    handler.on_error(e)
                    error = e
                    break
        except httpx.TimeoutException as e:
            error = StreamingTimeoutError(f"Timed out reading streaming response: {e}")
            error.__cause__ = e
            handler.on_error(error)
        except httpx.HTTPError as e:
            error = StreamingConnectionError(f"Error reading streaming response: {e}")
            error.__cause__ = e
            handler.on_error(error)

        if config.collect_data:
            context.response_body = context.collected_text

        if completed:
            handler.on_complete()
        elif not canceled and error is None:
            error = StreamingPartialResponseError("Stream ended without completion signal", lines_processed)
            handler.on_error(error)

        logger.info(
            f"<- stream finished (completed={completed}, canceled={canceled}, lines={lines_processed})"
        )
        return StreamingResult(
            completed=completed,
            canceled=canceled,
            error=error,
            lines_processed=lines_processed,
        )
