# =============================================================================
# Exceptions
# =============================================================================
# Domain errors raised by the import library. Ops translate them into
# failed import jobs; sensors log them and move on.
# =============================================================================

__all__ = [
    "ImportPipelineError",
    "InvalidStageTransitionError",
    "QuotaExceededError",
    "GeocodingError",
    "FetchError",
    "FileTooLargeError",
    "FetchTimeoutError",
    "HTTPStatusError",
    "ScheduleConfigError",
    "RowReadError",
]


class ImportPipelineError(Exception):
    """Base class for import pipeline errors."""


class InvalidStageTransitionError(ImportPipelineError):
    def __init__(self, from_stage: str, to_stage: str):
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"Invalid stage transition: {from_stage} -> {to_stage}")


class QuotaExceededError(ImportPipelineError):
    """Raised when a user's quota would be exceeded by the requested work."""

    def __init__(self, quota_type: str, current: int, limit: int, message: str, reset_time=None):
        self.quota_type = quota_type
        self.current = current
        self.limit = limit
        self.reset_time = reset_time
        super().__init__(message)


class GeocodingError(ImportPipelineError):
    def __init__(self, message: str, code: str = "GEOCODING_FAILED"):
        self.code = code
        super().__init__(message)


class FetchError(ImportPipelineError):
    """Base class for URL retrieval failures."""


class FileTooLargeError(FetchError):
    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(f"File too large: {size} bytes (max: {max_size})")


class FetchTimeoutError(FetchError):
    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Request timeout after {timeout_ms}ms")


class HTTPStatusError(FetchError):
    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {reason}".rstrip(": "))


class ScheduleConfigError(ImportPipelineError):
    """Raised when a scheduled import has an unusable schedule."""


class RowReadError(ImportPipelineError):
    """Raised when a source file cannot be read."""
