import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from configs import AppConfig
from libs.api_client.cancellation import CancellationToken
from libs.api_client.errors import (
    ApiRetriesExhaustedError,
    ApiStatusError,
    ErrorKind,
    StreamingConnectionError,
    StreamingError,
    StreamingPartialResponseError,
    StreamingTimeoutError,
    StreamProcessorStateError,
)
from libs.api_client.models import ApiRequest
from libs.api_client.streaming.config import StreamingConfig, StreamingInfo
from libs.api_client.streaming.formats import StreamingFormat
from libs.api_client.streaming.handler import (
    CallbackStreamHandler,
    CollectingStreamHandler,
    StreamingResponseHandler,
)
from libs.api_client.streaming.processors import StreamProcessor


def openai_chunk(text: str) -> str:
    return 'data: {"choices":[{"delta":{"content":"%s"}}]}\n\n' % text


SSE_BODY = openai_chunk("Hel") + openai_chunk("lo") + "data: [DONE]\n\n"
JSONL_TRUNCATED = '{"content":"a"}\n{"content":"b"}\n'
JSONL_COMPLETE = '{"content":"a"}\n{"content":"b"}\n{"type":"done"}\n'


def stream_request(handler, format=StreamingFormat.SERVER_SENT_EVENTS, **kwargs) -> ApiRequest:
    return ApiRequest(
        relative_url="/stream",
        method="POST",
        body='{"prompt": "hi"}',
        streaming=StreamingInfo.of(format, handler, **kwargs),
    )


class SequenceTransportHandler:
    def __init__(self, *bodies: tuple[int, str]):
        self._bodies = list(bodies)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, text = self._bodies[min(len(self.requests), len(self._bodies)) - 1]
        return httpx.Response(status, text=text)


class StalledStream(httpx.AsyncByteStream):
    """Delivers ``head`` and then times out like a server that stopped sending."""

    def __init__(self, head: str):
        self._head = head.encode("utf-8")

    async def __aiter__(self):
        yield self._head
        raise httpx.ReadTimeout("read timed out")


class StateLosingProcessor(StreamProcessor):
    """Accepts the first line and reports a broken state on the next one."""

    def __init__(self):
        self.seen: list[str] = []

    @property
    def format(self) -> StreamingFormat:
        return StreamingFormat.CUSTOM

    def process_line(self, line: str, handler: StreamingResponseHandler) -> None:
        if self.seen:
            raise StreamProcessorStateError("lost track of the current event")
        self.seen.append(line)
        handler.on_data(line)

    def is_completion_line(self, line: str) -> bool:
        return False

    def reset(self) -> None:
        self.seen.clear()


class TestStreamingExecute:
    @pytest.mark.asyncio
    async def test_sse_stream_completes(self, make_client):
        transport_handler = SequenceTransportHandler((200, SSE_BODY))
        handler = CollectingStreamHandler()

        async with make_client(transport_handler) as client:
            response = await client.execute(stream_request(handler))

        assert handler.items == ["Hel", "lo"]
        assert handler.completed == 1
        assert handler.started == 1
        assert handler.errors == []

        context = response.streaming_context
        assert context.success
        assert context.chunks == ("Hel", "lo")
        assert context.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_streaming_headers(self, make_client):
        transport_handler = SequenceTransportHandler((200, SSE_BODY))
        request = stream_request(
            CollectingStreamHandler(),
            config=StreamingConfig(last_event_id="evt-7"),
        )

        async with make_client(transport_handler) as client:
            await client.execute(request)

        sent = transport_handler.requests[0].headers
        assert sent["Accept"] == "text/event-stream"
        assert sent["Cache-Control"] == "no-cache"
        assert sent["Last-Event-ID"] == "evt-7"

    @pytest.mark.asyncio
    async def test_truncated_stream_is_partial(self, make_client):
        transport_handler = SequenceTransportHandler((200, JSONL_TRUNCATED))
        handler = CollectingStreamHandler()

        async with make_client(transport_handler) as client:
            response = await client.execute(stream_request(handler, StreamingFormat.JSON_LINES))

        context = response.streaming_context
        assert not context.success
        assert not context.completed
        assert isinstance(context.error, StreamingPartialResponseError)
        assert context.error.lines_processed == 2
        assert context.lines_processed == 2
        assert handler.completed == 0
        assert handler.errors == [context.error]

    @pytest.mark.asyncio
    async def test_json_lines_metadata_reaches_context(self, make_client):
        body = '{"type":"metadata","model":"m1"}\n{"content":"x"}\n{"type":"done"}\n'
        transport_handler = SequenceTransportHandler((200, body))
        handler = CollectingStreamHandler()

        async with make_client(transport_handler) as client:
            response = await client.execute(stream_request(handler, StreamingFormat.JSON_LINES))

        context = response.streaming_context
        assert context.success
        assert context.metadata_value("model", str) == "m1"
        assert context.metadata_value("model", int) is None
        assert handler.metadata == [{"model": "m1"}]
        assert transport_handler.requests[0].headers["Accept"] == "application/x-ndjson"

    @pytest.mark.asyncio
    async def test_handler_cancel_stops_stream(self, make_client):
        items: list[str] = []
        errors: list[Exception] = []
        completed: list[bool] = []
        handler = CallbackStreamHandler(
            on_data=items.append,
            on_complete=lambda: completed.append(True),
            on_error=errors.append,
            should_cancel=lambda: len(items) >= 1,
        )

        async with make_client(SequenceTransportHandler((200, SSE_BODY))) as client:
            response = await client.execute(stream_request(handler))

        context = response.streaming_context
        assert items == ["Hel"]
        assert context.canceled
        assert context.error is None
        assert completed == []
        assert len(errors) == 1
        assert "Stream was canceled" in str(errors[0])

    @pytest.mark.asyncio
    async def test_failing_handler_ends_stream(self, make_client):
        def explode(data):
            raise RuntimeError("handler broke")

        handler = CallbackStreamHandler(on_data=explode, on_error=lambda e: None)

        async with make_client(SequenceTransportHandler((200, SSE_BODY))) as client:
            response = await client.execute(stream_request(handler))

        assert isinstance(response.streaming_context.error, RuntimeError)
        assert response.streaming_context.lines_processed == 0

    @pytest.mark.asyncio
    async def test_unregistered_status_is_connection_error(self, make_client):
        async with make_client(SequenceTransportHandler((502, "bad gateway"))) as client:
            with pytest.raises(StreamingConnectionError) as exc_info:
                await client.execute(stream_request(CollectingStreamHandler()))

        assert str(exc_info.value) == "Streaming request failed with status 502: bad gateway"
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_custom_format_needs_processor(self, make_client):
        transport_handler = SequenceTransportHandler((200, ""))
        async with make_client(transport_handler) as client:
            with pytest.raises(StreamingError, match="Unsupported streaming format"):
                await client.execute(stream_request(CollectingStreamHandler(), StreamingFormat.CUSTOM))

        assert transport_handler.requests == []


class TestStreamingRetry:
    @pytest.mark.asyncio
    async def test_partial_stream_is_retried_without_duplicates(self, make_client):
        transport_handler = SequenceTransportHandler((200, JSONL_TRUNCATED), (200, JSONL_COMPLETE))
        handler = CollectingStreamHandler()

        async with make_client(transport_handler) as client:
            with patch("libs.api_client.client.apply_sleep", new_callable=AsyncMock) as mock_sleep:
                response = await client.execute_with_retry(stream_request(handler, StreamingFormat.JSON_LINES))

        assert len(transport_handler.requests) == 2
        assert mock_sleep.await_count == 1
        assert response.streaming_context.success
        assert response.streaming_context.chunks == ("a", "b")
        assert handler.completed == 1

    @pytest.mark.asyncio
    async def test_connection_errors_exhaust_retries(self, make_client):
        transport_handler = SequenceTransportHandler((502, "bad gateway"))

        async with make_client(transport_handler) as client:
            with patch("libs.api_client.client.apply_sleep", new_callable=AsyncMock):
                with pytest.raises(ApiRetriesExhaustedError) as exc_info:
                    await client.execute_with_retry(stream_request(CollectingStreamHandler()))

        assert len(transport_handler.requests) == 3
        assert isinstance(exc_info.value.__cause__, StreamingConnectionError)

    @pytest.mark.asyncio
    async def test_registered_status_follows_registration(self, make_client):
        transport_handler = SequenceTransportHandler((404, "nope"))

        async with make_client(transport_handler) as client:
            client.register_status_code(404, message="Not found")
            with patch("libs.api_client.client.apply_sleep", new_callable=AsyncMock) as mock_sleep:
                with pytest.raises(ApiStatusError) as exc_info:
                    await client.execute_with_retry(stream_request(CollectingStreamHandler()))

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert str(exc_info.value) == "Streaming request failed with status 404: nope"
        assert len(transport_handler.requests) == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_handler_is_not_retried(self, make_client):
        def explode(data):
            raise RuntimeError("handler broke")

        transport_handler = SequenceTransportHandler((200, SSE_BODY))
        handler = CallbackStreamHandler(on_data=explode, on_error=lambda e: None)

        async with make_client(transport_handler) as client:
            with patch("libs.api_client.client.apply_sleep", new_callable=AsyncMock) as mock_sleep:
                with pytest.raises(StreamingError) as exc_info:
                    await client.execute_with_retry(stream_request(handler))

        assert str(exc_info.value) == "Non-retriable streaming error: handler broke"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert len(transport_handler.requests) == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processor_state_error_stops_stream(self, make_client):
        transport_handler = SequenceTransportHandler((200, "one\ntwo\nthree\n"))
        handler = CollectingStreamHandler()

        async with make_client(transport_handler) as client:
            response = await client.execute(
                stream_request(handler, StreamingFormat.CUSTOM, processor=StateLosingProcessor())
            )

        context = response.streaming_context
        assert isinstance(context.error, StreamProcessorStateError)
        assert context.lines_processed == 1
        assert handler.items == ["one"]
        assert handler.errors == [context.error]

    @pytest.mark.asyncio
    async def test_processor_state_error_is_not_retried(self, make_client):
        transport_handler = SequenceTransportHandler((200, "one\ntwo\n"))

        async with make_client(transport_handler) as client:
            with patch("libs.api_client.client.apply_sleep", new_callable=AsyncMock) as mock_sleep:
                with pytest.raises(StreamProcessorStateError):
                    await client.execute_with_retry(
                        stream_request(
                            CollectingStreamHandler(), StreamingFormat.CUSTOM, processor=StateLosingProcessor()
                        )
                    )

        assert len(transport_handler.requests) == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_read_timeout_is_retried(self, make_client):
        requests: list[httpx.Request] = []

        def transport_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) == 1:
                return httpx.Response(200, stream=StalledStream(openai_chunk("Hel")))
            return httpx.Response(200, text=SSE_BODY)

        handler = CollectingStreamHandler()
        async with make_client(transport_handler) as client:
            with patch("libs.api_client.client.apply_sleep", new_callable=AsyncMock) as mock_sleep:
                response = await client.execute_with_retry(stream_request(handler))

        assert len(requests) == 2
        assert mock_sleep.await_count == 1
        assert response.streaming_context.success
        assert response.streaming_context.chunks == ("Hel", "lo")
        # the caller's handler sees every attempt
        assert handler.items == ["Hel", "Hel", "lo"]
        assert len(handler.errors) == 1
        assert isinstance(handler.errors[0], StreamingTimeoutError)

    @pytest.mark.asyncio
    async def test_budget_running_out_during_attempt_is_final(self, make_client):
        requests: list[httpx.Request] = []

        async def transport_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            await asyncio.sleep(5)
            return httpx.Response(200, text=SSE_BODY)

        request = ApiRequest(
            relative_url="/stream",
            max_execution_time_seconds=1,
            streaming=StreamingInfo.of(StreamingFormat.SERVER_SENT_EVENTS, CollectingStreamHandler()),
        )
        async with make_client(transport_handler) as client:
            with patch.object(client, "_now_ms", side_effect=[0, 500]):
                with pytest.raises(StreamingTimeoutError) as exc_info:
                    await client.execute_with_retry(request)

        assert str(exc_info.value) == (
            "Streaming request timed out during execution, maximum execution time of 1s!"
        )
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_reconnect_disabled(self, make_client):
        transport_handler = SequenceTransportHandler((200, JSONL_TRUNCATED), (200, JSONL_COMPLETE))
        request = stream_request(
            CollectingStreamHandler(),
            StreamingFormat.JSON_LINES,
            config=StreamingConfig(enable_reconnect=False),
        )

        async with make_client(transport_handler) as client:
            with pytest.raises(StreamingPartialResponseError):
                await client.execute_with_retry(request)

        assert len(transport_handler.requests) == 1

    @pytest.mark.asyncio
    async def test_reconnect_budget_limits_attempts(self, make_client):
        transport_handler = SequenceTransportHandler((502, "bad gateway"))
        request = stream_request(
            CollectingStreamHandler(),
            config=StreamingConfig(max_reconnect_attempts=1, reconnect_delay=0.25),
        )

        async with make_client(transport_handler) as client:
            with patch("libs.api_client.client.apply_sleep", new_callable=AsyncMock) as mock_sleep:
                with pytest.raises(StreamingConnectionError):
                    await client.execute_with_retry(request)

        assert len(transport_handler.requests) == 2
        # backoff starts from the reconnect delay
        assert mock_sleep.await_args.args[0] == 500


class TestStreamingCancellation:
    @pytest.mark.asyncio
    async def test_token_cancels_mid_stream(self, make_client):
        token = CancellationToken()
        items: list[str] = []
        errors: list[Exception] = []

        def on_data(data):
            items.append(data)
            token.cancel()

        handler = CallbackStreamHandler(on_data=on_data, on_error=errors.append)
        request = ApiRequest(
            relative_url="/stream",
            streaming=StreamingInfo.of(StreamingFormat.SERVER_SENT_EVENTS, handler),
            cancellation_token=token,
        )

        async with make_client(SequenceTransportHandler((200, SSE_BODY))) as client:
            response = await client.execute(request)

        context = response.streaming_context
        assert items == ["Hel"]
        assert context.canceled
        assert not context.success
        assert len(errors) == 1
        assert "Stream was canceled" in str(errors[0])

    @pytest.mark.asyncio
    async def test_request_cancel_mid_stream(self, make_client):
        handler = CollectingStreamHandler()
        request = stream_request(handler, StreamingFormat.JSON_LINES)
        collect = handler.on_data

        def on_data(data):
            collect(data)
            request.cancel()

        handler.on_data = on_data

        async with make_client(SequenceTransportHandler((200, JSONL_COMPLETE))) as client:
            response = await client.execute(request)

        assert response.streaming_context.canceled
        assert response.streaming_context.chunks == ("a",)
        assert handler.completed == 0


class TestStreamingConfiguration:
    @pytest.mark.asyncio
    async def test_read_timeout_comes_from_environment(self, make_client, monkeypatch):
        monkeypatch.setenv("STREAMING_READ_TIMEOUT", "7")
        transport_handler = SequenceTransportHandler((200, SSE_BODY))

        with patch("libs.api_client.client.app_config", AppConfig()):
            client = make_client(transport_handler)
        async with client:
            await client.execute(stream_request(CollectingStreamHandler()))

        assert client.streaming_config.stream_timeout == 7
        assert transport_handler.requests[0].extensions["timeout"]["read"] == 7

    @pytest.mark.asyncio
    async def test_request_config_overrides_client_default(self, make_client):
        transport_handler = SequenceTransportHandler((200, SSE_BODY))
        request = stream_request(CollectingStreamHandler(), config=StreamingConfig(stream_timeout=3))

        async with make_client(transport_handler, streaming_config=StreamingConfig(stream_timeout=9)) as client:
            await client.execute(request)

        assert transport_handler.requests[0].extensions["timeout"]["read"] == 3

    @pytest.mark.asyncio
    async def test_crlf_line_endings(self, make_client):
        body = SSE_BODY.replace("\n", "\r\n")
        handler = CollectingStreamHandler()

        async with make_client(SequenceTransportHandler((200, body))) as client:
            response = await client.execute(stream_request(handler))

        assert response.streaming_context.success
        assert handler.items == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_collected_data_is_bounded_and_captured(self, make_client):
        captured = []
        request = ApiRequest(
            relative_url="/stream",
            streaming=StreamingInfo.of(
                StreamingFormat.JSON_LINES,
                CollectingStreamHandler(),
                StreamingConfig(collect_data=True, max_collected_data_size=40),
            ),
            capture_on_success=captured.append,
        )

        async with make_client(SequenceTransportHandler((200, JSONL_COMPLETE))) as client:
            response = await client.execute(request)

        assert response.streaming_context.chunks == ("a", "b")
        assert captured[0].output_data == '{"content":"a"}\n{"content":"b"}'

    @pytest.mark.asyncio
    async def test_data_is_not_collected_by_default(self, make_client):
        captured = []
        request = ApiRequest(
            relative_url="/stream",
            streaming=StreamingInfo.of(StreamingFormat.JSON_LINES, CollectingStreamHandler()),
            capture_on_success=captured.append,
        )

        async with make_client(SequenceTransportHandler((200, JSONL_COMPLETE))) as client:
            await client.execute(request)

        assert captured[0].output_data is None
