"""REST API client base: retrying execution engine and streaming responses."""

from .backoff import adjust_sleep_for_final_retry, apply_sleep, next_sleep
from .builder import ApiRequestBuilder
from .cancellation import CancellationToken, CancellationTokenSource
from .client import ApiClient
from .errors import (
    ApiCancellationError,
    ApiClientError,
    ApiConfigurationError,
    ApiResponseUnusableError,
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
    StreamProcessorStateError,
)
from .http_config import HttpConfiguration
from .models import ApiCallCaptureInput, ApiRequest, ApiResponse, RequestExecutionContext
from .modifiers import RequestModifier, bearer_auth_modifier, headers_modifier, query_params_modifier
from .settings import ApiClientSettings
from .watcher import CancellationWatcher

__all__ = [
    "ApiClient",
    "ApiClientSettings",
    "ApiRequest",
    "ApiRequestBuilder",
    "ApiResponse",
    "ApiCallCaptureInput",
    "RequestExecutionContext",
    "HttpConfiguration",
    "RequestModifier",
    "headers_modifier",
    "bearer_auth_modifier",
    "query_params_modifier",
    "CancellationToken",
    "CancellationTokenSource",
    "CancellationWatcher",
    "next_sleep",
    "adjust_sleep_for_final_retry",
    "apply_sleep",
    "ErrorKind",
    "StatusCodeRegistration",
    "ApiClientError",
    "ApiConfigurationError",
    "ApiStatusError",
    "ApiResponseUnusableError",
    "ApiTimeoutError",
    "ApiCancellationError",
    "ApiRetriesExhaustedError",
    "StreamingError",
    "StreamingConnectionError",
    "StreamingTimeoutError",
    "StreamingPartialResponseError",
    "StreamProcessorStateError",
    "StreamProcessingError",
]
