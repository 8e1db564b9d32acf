from enum import StrEnum


class StreamingFormat(StrEnum):
    SERVER_SENT_EVENTS = "sse"
    JSON_LINES = "jsonl"
    RAW_TEXT = "raw"
    CUSTOM = "custom"

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]


_CONTENT_TYPES = {
    StreamingFormat.SERVER_SENT_EVENTS: "text/event-stream",
    StreamingFormat.JSON_LINES: "application/x-ndjson",
    StreamingFormat.RAW_TEXT: "text/plain",
    StreamingFormat.CUSTOM: "application/octet-stream",
}
