# =============================================================================
# Import File Model
# =============================================================================
# An accepted source file (uploaded or fetched) and how its sheets map onto
# datasets.
# =============================================================================

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

__all__ = [
    "ImportFileStatus",
    "SheetMapping",
    "DatasetMapping",
    "UrlFetchMetadata",
    "ImportFile",
]


class ImportFileStatus(str, Enum):
    PENDING = "pending"
    PARSING = "parsing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SheetMapping(BaseModel):
    sheet_identifier: str = Field(..., description="Sheet name or index (as string)")
    dataset_id: str = Field(..., description="Target dataset")
    skip_if_missing: bool = Field(False, description="Ignore the mapping when the sheet is absent")


class DatasetMapping(BaseModel):
    mode: str = Field("auto", description="'auto', 'single' or 'multiple'")
    single_dataset_id: Optional[str] = None
    sheet_mappings: list[SheetMapping] = Field(default_factory=list)


class UrlFetchMetadata(BaseModel):
    source_url: str
    content_hash: str = Field(..., description="sha256:<hex> of the fetched bytes")
    content_type: str
    file_size: int
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 1
    scheduled_import_id: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    is_duplicate: bool = False


class ImportFile(BaseModel):
    """
    Import file document.

    Attributes:
        import_file_id: Stable identifier
        filename: Object key of the stored file
        original_name: Name shown to humans
        mime_type: Detected MIME type
        file_size: Size in bytes
        catalog_id: Catalog the file is imported into
        user_id: Uploading / owning user
        status: Lifecycle status
        dataset_mapping: How sheets map to datasets
        url_fetch: Provenance when the file came from a URL
    """

    import_file_id: str = Field(..., description="Import file identifier")
    filename: str = Field(..., description="Stored object key")
    original_name: Optional[str] = Field(None, description="Human-facing name")
    mime_type: str = Field(..., description="MIME type")
    file_size: int = Field(0, ge=0, description="Size in bytes")
    catalog_id: Optional[str] = None
    user_id: Optional[str] = None
    status: ImportFileStatus = ImportFileStatus.PENDING
    dataset_mapping: Optional[DatasetMapping] = None
    url_fetch: Optional[UrlFetchMetadata] = None
    datasets_count: int = 0
    jobs: list[str] = Field(default_factory=list, description="Import job ids created for this file")
    error_log: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
