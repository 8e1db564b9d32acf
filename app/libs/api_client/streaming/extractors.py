"""Functions that pull values out of parsed stream records.

Extractors return ``None`` when a record carries nothing for the caller; the
processors then emit nothing for that record.
"""

import json
from collections.abc import Callable
from typing import Any

DataExtractor = Callable[[dict[str, Any]], Any]
CompletionDetector = Callable[[dict[str, Any]], bool]
MetadataDetector = Callable[[dict[str, Any]], bool]


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else json.dumps(value)


def content_field(record: dict[str, Any]) -> str | None:
    return _str_or_none(record.get("content"))


def data_field(record: dict[str, Any]) -> str | None:
    return _str_or_none(record.get("data"))


def delta_content(record: dict[str, Any]) -> str | None:
    delta = record.get("delta")
    if not isinstance(delta, dict):
        return None
    return _str_or_none(delta.get("content"))


def openai_style(record: dict[str, Any]) -> str | None:
    """``choices[0].delta.content`` of a chat completion chunk."""
    choices = record.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    return delta_content(choices[0])


def smart_content(record: dict[str, Any]) -> str | None:
    for key in ("content", "data", "text", "message"):
        value = record.get(key)
        if value is not None:
            return _str_or_none(value)
    return delta_content(record)


def raw_json(record: dict[str, Any]) -> dict[str, Any]:
    return record


def raw_json_text(record: dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False)


# completion detectors


def type_done(record: dict[str, Any]) -> bool:
    return record.get("type") == "done"


def finish_reason(record: dict[str, Any]) -> bool:
    return record.get("finish_reason") is not None


# metadata detectors


def type_metadata(record: dict[str, Any]) -> bool:
    return record.get("type") == "metadata"


def usage_field(record: dict[str, Any]) -> bool:
    return "usage" in record


def no_metadata(record: dict[str, Any]) -> bool:
    return False
