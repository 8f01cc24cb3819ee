import enum


class ErrorCategory(str, enum.Enum):
    configuration = "configuration"
    network = "network"
    size_limit = "size_limit"
    unknown = "unknown"


USER_MESSAGES = {
    ErrorCategory.configuration: (
        "Upload storage is not configured. Check the storage endpoint, bucket, "
        "credentials and public URL settings of the upload service."
    ),
    ErrorCategory.network: (
        "The upload failed because of a network or storage error. "
        "Check your connection and try the upload again."
    ),
    ErrorCategory.size_limit: (
        "The file is too large for the current upload configuration. "
        "Enable multipart uploads or pick a smaller file."
    ),
    ErrorCategory.unknown: "The upload failed unexpectedly. Try again or contact an administrator.",
}


class UploadPipelineError(Exception):
    """Base class for every failure raised by the upload pipeline."""


class ConfigError(UploadPipelineError):
    """Storage credentials or settings are missing on the backend."""


class ValidationError(UploadPipelineError):
    """The caller supplied malformed or missing fields."""


class FileTooLargeError(ValidationError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"file of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class TransportError(UploadPipelineError):
    def __init__(self, status: int | None, status_text: str = "", detail: str | None = None) -> None:
        if status is None:
            message = f"network error: {detail or status_text or 'no response'}"
        else:
            message = f"HTTP {status} {status_text}".rstrip()
            if detail:
                message = f"{message}: {detail}"
        super().__init__(message)
        self.status = status
        self.status_text = status_text
        self.detail = detail


class IntegrityError(UploadPipelineError):
    """The backend accepted a request but broke the protocol (e.g. no ETag)."""


class NotFoundError(UploadPipelineError):
    """The multipart session is unknown to the backend or has expired."""


class InitiateError(UploadPipelineError):
    def __init__(self, cause: Exception) -> None:
        super().__init__(f"failed to initiate multipart upload: {cause}")
        self.cause = cause


class UploadError(UploadPipelineError):
    def __init__(self, reason: ErrorCategory, cause: Exception) -> None:
        super().__init__(f"upload failed ({reason.value}): {cause}")
        self.reason = reason
        self.cause = cause

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.reason]


def innermost_cause(exc: Exception) -> Exception:
    while isinstance(exc, (InitiateError, UploadError)):
        exc = exc.cause
    return exc


def categorize(exc: Exception) -> ErrorCategory:
    exc = innermost_cause(exc)
    if isinstance(exc, ConfigError):
        return ErrorCategory.configuration
    if isinstance(exc, FileTooLargeError):
        return ErrorCategory.size_limit
    if isinstance(exc, TransportError):
        if exc.status == 413:
            return ErrorCategory.size_limit
        return ErrorCategory.network
    if isinstance(exc, NotFoundError):
        return ErrorCategory.network
    return ErrorCategory.unknown
