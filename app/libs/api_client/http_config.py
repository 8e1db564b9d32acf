from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from .modifiers import RequestModifier
from .streaming.formats import StreamingFormat


@dataclass(frozen=True, kw_only=True)
class HttpConfiguration:
    """Headers and modifiers applied to every outgoing call of a client.

    Request headers are applied after these, so they win on conflicts.
    """

    global_headers: Mapping[str, str] = field(default_factory=dict)
    request_modifiers: tuple[RequestModifier, ...] = ()
    streaming_enabled: bool = False
    default_streaming_format: StreamingFormat = StreamingFormat.SERVER_SENT_EVENTS
    streaming_headers: Mapping[str, str] = field(default_factory=dict)

    def with_header(self, name: str, value: str) -> "HttpConfiguration":
        return replace(self, global_headers={**self.global_headers, name: value})

    def with_headers(self, **headers: str) -> "HttpConfiguration":
        return replace(self, global_headers={**self.global_headers, **headers})

    def with_modifier(self, modifier: RequestModifier) -> "HttpConfiguration":
        return replace(self, request_modifiers=(*self.request_modifiers, modifier))

    def with_streaming(
        self,
        format: StreamingFormat,
        headers: Mapping[str, str] | None = None,
    ) -> "HttpConfiguration":
        return replace(
            self,
            streaming_enabled=True,
            default_streaming_format=format,
            streaming_headers={**self.streaming_headers, **(headers or {})},
        )

    def configure_for_server_sent_events(self) -> "HttpConfiguration":
        return self.with_streaming(
            StreamingFormat.SERVER_SENT_EVENTS,
            {"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        )

    def configure_for_json_lines(self) -> "HttpConfiguration":
        return self.with_streaming(StreamingFormat.JSON_LINES, {"Accept": "application/x-ndjson"})

    def configure_for_raw_text(self) -> "HttpConfiguration":
        return self.with_streaming(StreamingFormat.RAW_TEXT, {"Accept": "text/plain"})

    def streaming_request_headers(self, format: StreamingFormat | None = None) -> dict[str, str]:
        format = format or self.default_streaming_format
        headers = {"Accept": format.content_type, "Cache-Control": "no-cache"}
        # preset headers belong to the preset's format only
        if self.streaming_enabled and format == self.default_streaming_format:
            headers.update(self.streaming_headers)
        return headers
