# =============================================================================
# URL Fetch
# =============================================================================
# Streaming HTTP retrieval for scheduled and on-demand URL imports:
# - size ceiling enforced while streaming, before the body is buffered
# - wall-clock timeout across the whole download
# - retry with constant or exponential delay
# - conditional requests (ETag / Last-Modified)
# - content type detection and content hashing
# =============================================================================

import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Optional
from urllib.parse import urlparse

import requests

from geoimport.exceptions import FetchError, FetchTimeoutError, FileTooLargeError, HTTPStatusError

__all__ = [
    "CSV_MIME",
    "XLSX_MIME",
    "XLS_MIME",
    "FetchOptions",
    "FetchResult",
    "calculate_data_hash",
    "detect_file_type",
    "build_filename",
    "fetch_url",
    "fetch_with_retry",
]

logger = logging.getLogger(__name__)

CSV_MIME = "text/csv"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS_MIME = "application/vnd.ms-excel"
OCTET_STREAM = "application/octet-stream"

CHUNK_SIZE = 32 * 1024

_CONTENT_TYPES: dict[str, tuple[str, str]] = {
    "text/csv": (CSV_MIME, ".csv"),
    "application/csv": (CSV_MIME, ".csv"),
    XLS_MIME: (XLS_MIME, ".xls"),
    XLSX_MIME: (XLSX_MIME, ".xlsx"),
    "text/plain": ("text/plain", ".txt"),
    "application/json": ("application/json", ".json"),
}

_EXTENSIONS: dict[str, tuple[str, str]] = {
    ".csv": (CSV_MIME, ".csv"),
    ".xls": (XLS_MIME, ".xls"),
    ".xlsx": (XLSX_MIME, ".xlsx"),
    ".txt": ("text/plain", ".txt"),
    ".json": ("application/json", ".json"),
}


@dataclass
class FetchOptions:
    """Per-request settings. Sizes are bytes, timeouts seconds."""

    headers: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 30 * 60
    max_size_bytes: int = 100 * 1024 * 1024
    max_retries: int = 3
    retry_delay_seconds: float = 5 * 60
    exponential_backoff: bool = True
    expected_content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    test_mode: bool = False


@dataclass
class FetchResult:
    data: bytes
    mime_type: str
    file_extension: str
    content_length: int
    attempts: int = 1
    content_hash: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    not_modified: bool = False


def calculate_data_hash(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def detect_file_type(content_type: Optional[str], data: bytes, source_url: str) -> tuple[str, str]:
    """
    (mime_type, extension) from, in order: declared content type, URL path
    extension, magic bytes, a text heuristic; else generic binary.
    """
    if content_type:
        normalized = content_type.split(";")[0].strip().lower()
        if normalized in _CONTENT_TYPES:
            return _CONTENT_TYPES[normalized]

    suffix = PurePosixPath(urlparse(source_url).path).suffix.lower()
    if suffix in _EXTENSIONS:
        return _EXTENSIONS[suffix]

    header = data[:8].hex()
    if header.startswith("504b0304"):
        return XLSX_MIME, ".xlsx"
    if header.startswith("d0cf11e0"):
        return XLS_MIME, ".xls"

    sample = data[:1000].decode("utf-8", errors="ignore")
    if "," in sample or "\t" in sample or "\n" in sample:
        return CSV_MIME, ".csv"

    return OCTET_STREAM, ".bin"


def build_filename(extension: str, now: Optional[datetime] = None) -> str:
    """Object key for a fetched file: url-import-{timestamp}-{uuid}{ext}."""
    now = now or datetime.now(timezone.utc)
    return f"url-import-{int(now.timestamp() * 1000)}-{uuid.uuid4()}{extension}"


def _read_body(response: requests.Response, options: FetchOptions, started: float) -> bytes:
    chunks: list[bytes] = []
    total = 0
    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
        if not chunk:
            continue
        total += len(chunk)
        if total > options.max_size_bytes:
            raise FileTooLargeError(total, options.max_size_bytes)
        if time.monotonic() - started > options.timeout_seconds:
            raise FetchTimeoutError(int(options.timeout_seconds * 1000))
        chunks.append(chunk)
    return b"".join(chunks)


def fetch_url(
    source_url: str,
    options: FetchOptions,
    session: Optional[requests.Session] = None,
) -> FetchResult:
    """
    Single GET of ``source_url``.

    Raises:
        HTTPStatusError: On a non-2xx, non-304 response
        FileTooLargeError: When the declared or streamed size exceeds the ceiling
        FetchTimeoutError: When the request or download exceeds the timeout
        FetchError: On any other transport error
    """
    http = session or requests
    headers = dict(options.headers)
    if options.etag:
        headers["If-None-Match"] = options.etag
    if options.last_modified:
        headers["If-Modified-Since"] = options.last_modified

    started = time.monotonic()
    try:
        response = http.get(source_url, headers=headers, stream=True, timeout=options.timeout_seconds)
    except requests.Timeout as e:
        raise FetchTimeoutError(int(options.timeout_seconds * 1000)) from e
    except requests.RequestException as e:
        raise FetchError(f"Request failed: {e}") from e

    try:
        if response.status_code == 304:
            return FetchResult(
                data=b"", mime_type=OCTET_STREAM, file_extension=".bin", content_length=0,
                etag=options.etag, last_modified=options.last_modified, not_modified=True,
            )
        if not 200 <= response.status_code < 300:
            raise HTTPStatusError(response.status_code, response.reason or "")

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > options.max_size_bytes:
            raise FileTooLargeError(int(declared), options.max_size_bytes)

        try:
            data = _read_body(response, options, started)
        except requests.Timeout as e:
            raise FetchTimeoutError(int(options.timeout_seconds * 1000)) from e
        except requests.RequestException as e:
            raise FetchError(f"Failed reading response body: {e}") from e

        content_type = options.expected_content_type or response.headers.get("content-type")
        mime_type, extension = detect_file_type(content_type, data, source_url)
        return FetchResult(
            data=data,
            mime_type=mime_type,
            file_extension=extension,
            content_length=len(data),
            content_hash=calculate_data_hash(data),
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
        )
    finally:
        response.close()


def fetch_with_retry(
    source_url: str,
    options: FetchOptions,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FetchResult:
    """
    fetch_url with up to ``max_retries + 1`` attempts.

    The delay between attempts starts at ``retry_delay_seconds`` and doubles
    after each failure when ``exponential_backoff`` is set. Waits are skipped
    in test mode. Oversized files are not retried.

    Raises:
        FetchError: The last error once all attempts are exhausted
    """
    attempts = options.max_retries + 1
    delay = options.retry_delay_seconds
    multiplier = 2 if options.exponential_backoff else 1
    last_error: Optional[FetchError] = None

    for attempt in range(1, attempts + 1):
        try:
            logger.info(f"Fetching {source_url} (attempt {attempt}/{attempts})")
            result = fetch_url(source_url, options, session)
            result.attempts = attempt
            return result
        except FileTooLargeError:
            raise
        except FetchError as e:
            last_error = e
            logger.warning(f"Fetch attempt {attempt} for {source_url} failed: {e}")
            if attempt < attempts:
                if not options.test_mode:
                    sleep(delay)
                delay *= multiplier

    raise last_error or FetchError("Fetch failed")
