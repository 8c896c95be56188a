"""
URL fetch subsystem: authentication headers and streaming HTTP retrieval
with retry, size ceiling, timeout and content detection.
"""

from .auth import build_auth_headers
from .http import (
    CSV_MIME,
    XLS_MIME,
    XLSX_MIME,
    FetchOptions,
    FetchResult,
    build_filename,
    calculate_data_hash,
    detect_file_type,
    fetch_url,
    fetch_with_retry,
)

__all__ = [
    "build_auth_headers",
    "CSV_MIME",
    "XLS_MIME",
    "XLSX_MIME",
    "FetchOptions",
    "FetchResult",
    "build_filename",
    "calculate_data_hash",
    "detect_file_type",
    "fetch_url",
    "fetch_with_retry",
]
