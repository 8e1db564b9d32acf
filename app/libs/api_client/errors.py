from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    REQUEST_REJECTED = "request_rejected"
    AUTHORIZATION = "authorization"
    PAYMENT_REQUIRED = "payment_required"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    UNPROCESSABLE_ENTITY = "unprocessable_entity"
    RATE_LIMIT_OR_QUOTA = "rate_limit_or_quota"
    SERVER_ERROR = "server_error"
    SERVER_UNAVAILABLE = "server_unavailable"
    SERVER_TIMEOUT = "server_timeout"
    OTHER = "other"


WELL_KNOWN_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.REQUEST_REJECTED,
    401: ErrorKind.AUTHORIZATION,
    402: ErrorKind.PAYMENT_REQUIRED,
    403: ErrorKind.PERMISSION_DENIED,
    404: ErrorKind.NOT_FOUND,
    422: ErrorKind.UNPROCESSABLE_ENTITY,
    429: ErrorKind.RATE_LIMIT_OR_QUOTA,
    500: ErrorKind.SERVER_ERROR,
    503: ErrorKind.SERVER_UNAVAILABLE,
    504: ErrorKind.SERVER_TIMEOUT,
}


@dataclass(frozen=True)
class StatusCodeRegistration:
    kind: ErrorKind
    message: str
    retry: bool = False

    def create_error(self, status_code: int, body: str, message: str | None = None) -> "ApiStatusError":
        return ApiStatusError(
            message or f"{self.message}: {body}",
            kind=self.kind,
            status_code=status_code,
            retryable=self.retry,
            body=body,
        )


class ApiClientError(Exception):
    """Base error of the library. Also raised for unregistered HTTP statuses."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class ApiConfigurationError(ApiClientError):
    """The client is not usable as configured, e.g. no base URL."""


class ApiStatusError(ApiClientError):
    """A response status that has a registration."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        status_code: int,
        retryable: bool = False,
        body: str | None = None,
    ):
        super().__init__(message, status_code=status_code, body=body)
        self.kind = kind
        self.retryable = retryable


class ApiResponseUnusableError(ApiClientError):
    """The response parsed but its content cannot be used."""


class ApiTimeoutError(ApiClientError):
    pass


class ApiCancellationError(ApiClientError):
    pass


class ApiRetriesExhaustedError(ApiClientError):
    def __init__(self, message: str, max_retries: int, reason: str | None = None):
        super().__init__(message)
        self.max_retries = max_retries
        self.reason = reason


class StreamingError(ApiClientError):
    pass


class StreamingConnectionError(StreamingError):
    pass


class StreamingTimeoutError(StreamingError, ApiTimeoutError):
    pass


class StreamingPartialResponseError(StreamingError):
    def __init__(self, message: str, lines_processed: int):
        super().__init__(f"{message} (lines processed: {lines_processed})")
        self.lines_processed = lines_processed


class StreamProcessorStateError(StreamingError):
    """The processor cannot continue with the current stream."""


class StreamProcessingError(Exception):
    """A single malformed line. The stream goes on without it."""

    def __init__(self, message: str, line: str | None = None):
        super().__init__(message)
        self.line = line


RETRYABLE_STREAMING_ERRORS = (
    StreamingConnectionError,
    StreamingTimeoutError,
    StreamingPartialResponseError,
)
