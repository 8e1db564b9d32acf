from . import extractors
from .extractors import CompletionDetector, DataExtractor, MetadataDetector
from .formats import StreamingFormat
from .processors import (
    JsonLinesStreamProcessor,
    RawTextStreamProcessor,
    SSEStreamProcessor,
    StreamProcessor,
)


def create_processor(format: StreamingFormat, data_type: type = str) -> StreamProcessor:
    match format:
        case StreamingFormat.SERVER_SENT_EVENTS:
            return create_sse_processor(data_type)
        case StreamingFormat.JSON_LINES:
            return create_json_lines_processor(data_type)
        case StreamingFormat.RAW_TEXT:
            return create_raw_text_processor(data_type)
        case _:
            raise ValueError(f"Unsupported streaming format: {format}")


def create_sse_processor(data_type: type = str) -> SSEStreamProcessor:
    if data_type is str:
        return SSEStreamProcessor(extractors.openai_style, data_type=str)
    # hand the parsed record over and let the caller interpret it
    return SSEStreamProcessor(extractors.raw_json, data_type=data_type)


def create_json_lines_processor(data_type: type = str) -> JsonLinesStreamProcessor:
    if data_type is str:
        return JsonLinesStreamProcessor(
            extractors.smart_content,
            extractors.type_done,
            extractors.type_metadata,
            data_type=str,
        )
    return JsonLinesStreamProcessor(
        extractors.raw_json,
        extractors.type_done,
        extractors.usage_field,
        data_type=data_type,
    )


def create_raw_text_processor(data_type: type = str) -> RawTextStreamProcessor:
    if data_type is not str:
        raise ValueError("Raw text processor only supports str data")
    return RawTextStreamProcessor()


def create_custom_sse_processor(extractor: DataExtractor, data_type: type = str) -> SSEStreamProcessor:
    return SSEStreamProcessor(extractor, data_type=data_type)


def create_custom_json_lines_processor(
    extractor: DataExtractor,
    completion_detector: CompletionDetector = extractors.type_done,
    metadata_detector: MetadataDetector = extractors.type_metadata,
    data_type: type = str,
) -> JsonLinesStreamProcessor:
    return JsonLinesStreamProcessor(extractor, completion_detector, metadata_detector, data_type=data_type)
