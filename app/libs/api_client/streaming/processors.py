import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from ..errors import StreamProcessingError
from . import extractors
from .extractors import CompletionDetector, DataExtractor, MetadataDetector
from .formats import StreamingFormat
from .handler import StreamingResponseHandler

logger = logging.getLogger(__name__)

COMPLETION_SENTINELS = ("[DONE]", '"[DONE]"')


def _accepts_text(data_type: type) -> bool:
    return issubclass(str, data_type)


def _parse_record(payload: str) -> dict[str, Any]:
    record = json.loads(payload)
    if not isinstance(record, dict):
        raise ValueError(f"expected a JSON object, got {type(record).__name__}")
    return record


class StreamProcessor(ABC):
    """Turns the lines of one streaming response into handler events.

    ``process_line`` may raise ``StreamProcessingError`` for a line that should
    be skipped, or ``StreamProcessorStateError`` when the stream cannot go on.
    """

    @property
    @abstractmethod
    def format(self) -> StreamingFormat: ...

    @abstractmethod
    def process_line(self, line: str, handler: StreamingResponseHandler) -> None: ...

    @abstractmethod
    def is_completion_line(self, line: str) -> bool: ...

    def is_metadata_line(self, line: str) -> bool:
        return False

    def reset(self) -> None:
        pass


class SSEStreamProcessor(StreamProcessor):
    def __init__(self, extractor: DataExtractor = extractors.openai_style, data_type: type = str):
        self._extractor = extractor
        self._data_type = data_type
        self._event_type: str | None = None
        self._event_id: str | None = None
        self._metadata: dict[str, Any] = {}

    @property
    def format(self) -> StreamingFormat:
        return StreamingFormat.SERVER_SENT_EVENTS

    def process_line(self, line: str, handler: StreamingResponseHandler) -> None:
        line = line.strip() if line else ""
        if not line:
            # end of event
            self.reset()
            return

        if line.startswith("data:"):
            self._process_data(line, handler)
        elif line.startswith("event:"):
            self._event_type = line[len("event:") :].strip()
        elif line.startswith("id:"):
            self._event_id = line[len("id:") :].strip()
        elif line.startswith("retry:"):
            value = line[len("retry:") :].strip()
            try:
                self._metadata["retry_ms"] = int(value)
            except ValueError:
                logger.warning(f"Invalid retry value in SSE stream: {line}")
        else:
            logger.debug(f"Ignoring unknown SSE field: {line}")

    def _process_data(self, line: str, handler: StreamingResponseHandler) -> None:
        if self.is_completion_line(line):
            handler.on_complete()
            return

        payload = line[len("data:") :].strip()
        try:
            extracted = self._extractor(_parse_record(payload))
        except (ValueError, TypeError, LookupError, AttributeError) as e:
            if _accepts_text(self._data_type):
                handler.on_data(payload)
                return
            raise StreamProcessingError(f"Failed to parse SSE data line: {e}", line) from e

        if extracted is not None:
            handler.on_data(extracted)
        if self._metadata or self._event_type is not None or self._event_id is not None:
            metadata = dict(self._metadata)
            if self._event_type is not None:
                metadata["event_type"] = self._event_type
            if self._event_id is not None:
                metadata["event_id"] = self._event_id
            handler.on_metadata(metadata)

    def is_completion_line(self, line: str) -> bool:
        line = line.strip() if line else ""
        if not line.startswith("data:"):
            return False
        return line[len("data:") :].strip() in COMPLETION_SENTINELS

    def is_metadata_line(self, line: str) -> bool:
        line = line.strip() if line else ""
        return line.startswith(("event:", "id:", "retry:"))

    def reset(self) -> None:
        self._event_type = None
        self._event_id = None
        self._metadata.clear()


class JsonLinesStreamProcessor(StreamProcessor):
    """One JSON object per line. Lines are independent of each other."""

    def __init__(
        self,
        extractor: DataExtractor = extractors.smart_content,
        completion_detector: CompletionDetector = extractors.type_done,
        metadata_detector: MetadataDetector = extractors.type_metadata,
        data_type: type = str,
    ):
        self._extractor = extractor
        self._completion_detector = completion_detector
        self._metadata_detector = metadata_detector
        self._data_type = data_type

    @property
    def format(self) -> StreamingFormat:
        return StreamingFormat.JSON_LINES

    def process_line(self, line: str, handler: StreamingResponseHandler) -> None:
        line = line.strip() if line else ""
        if not line:
            return

        try:
            record = _parse_record(line)
        except ValueError as e:
            if _accepts_text(self._data_type) and not line.startswith(("{", "[")):
                handler.on_data(line)
                return
            raise StreamProcessingError(f"Failed to parse JSON line: {e}", line) from e

        if self._completion_detector(record):
            handler.on_complete()
            return

        if self._metadata_detector(record):
            metadata = {key: value for key, value in record.items() if key != "type"}
            if metadata:
                handler.on_metadata(metadata)
            return

        try:
            extracted = self._extractor(record)
        except (ValueError, TypeError, LookupError, AttributeError) as e:
            raise StreamProcessingError(f"Failed to extract data from JSON line: {e}", line) from e
        if extracted is not None:
            handler.on_data(extracted)

    def _classify(self, line: str, detector: CompletionDetector | MetadataDetector) -> bool:
        line = line.strip() if line else ""
        if not line:
            return False
        try:
            return bool(detector(_parse_record(line)))
        except ValueError:
            return False

    def is_completion_line(self, line: str) -> bool:
        return self._classify(line, self._completion_detector)

    def is_metadata_line(self, line: str) -> bool:
        return self._classify(line, self._metadata_detector)


class RawTextStreamProcessor(StreamProcessor):
    """Every non-blank line is a piece of text. ``[DONE]``, ``DONE``, ``EOF`` or a blank line end the stream."""

    COMPLETION_MARKERS = ("[DONE]", "DONE", "EOF", "")

    @property
    def format(self) -> StreamingFormat:
        return StreamingFormat.RAW_TEXT

    def process_line(self, line: str, handler: StreamingResponseHandler) -> None:
        if not line or not line.strip():
            return
        if self.is_completion_line(line):
            handler.on_complete()
        else:
            handler.on_data(line)

    def is_completion_line(self, line: str) -> bool:
        if line is None:
            return False
        return line.strip() in self.COMPLETION_MARKERS

