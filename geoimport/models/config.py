# =============================================================================
# Configuration Models Module
# =============================================================================
# Provides Pydantic Settings models for the pipeline's services:
# - MinIOSettings: S3-compatible object storage configuration
# - MongoSettings: MongoDB document store configuration
# - PipelineSettings: batch sizes, leases, retry policy and geocoder settings
# =============================================================================

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "MinIOSettings",
    "MongoSettings",
    "PipelineSettings",
]


# =============================================================================
# MinIO Settings (File Store)
# =============================================================================

class MinIOSettings(BaseSettings):
    """
    Configuration for MinIO (S3-compatible object storage).

    Maps environment variables:
    - MINIO_ENDPOINT → endpoint
    - MINIO_ROOT_USER → access_key
    - MINIO_ROOT_PASSWORD → secret_key
    - MINIO_USE_SSL → use_ssl
    - MINIO_IMPORT_BUCKET → import_bucket
    """

    endpoint: str = Field(..., validation_alias="MINIO_ENDPOINT", description="MinIO server endpoint (host:port)")
    access_key: str = Field(..., validation_alias="MINIO_ROOT_USER", description="Access key (maps from MINIO_ROOT_USER)")
    secret_key: str = Field(..., validation_alias="MINIO_ROOT_PASSWORD", description="Secret key (maps from MINIO_ROOT_PASSWORD)")
    use_ssl: bool = Field(False, validation_alias="MINIO_USE_SSL", description="Whether to use SSL/TLS")
    import_bucket: str = Field("import-files", validation_alias="MINIO_IMPORT_BUCKET", description="Bucket holding import files")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore unrelated env vars from shared .env files
    )


# =============================================================================
# MongoDB Settings (Document Store)
# =============================================================================

class MongoSettings(BaseSettings):
    """
    Configuration for MongoDB.

    Maps environment variables:
    - MONGO_HOST → host
    - MONGO_PORT → port
    - MONGO_INITDB_ROOT_USERNAME → username
    - MONGO_INITDB_ROOT_PASSWORD → password
    - MONGO_DATABASE → database
    - MONGO_AUTH_SOURCE → auth_source
    """

    host: str = Field("mongodb", validation_alias="MONGO_HOST", description="MongoDB host")
    port: int = Field(27017, validation_alias="MONGO_PORT", description="MongoDB port")
    username: str = Field(..., validation_alias="MONGO_INITDB_ROOT_USERNAME", description="MongoDB username")
    password: str = Field(..., validation_alias="MONGO_INITDB_ROOT_PASSWORD", description="MongoDB password")
    database: str = Field("geo_events", validation_alias="MONGO_DATABASE", description="Database name")
    auth_source: str = Field("admin", validation_alias="MONGO_AUTH_SOURCE", description="Authentication source")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def connection_string(self) -> str:
        """
        Build MongoDB connection URI.

        Format: mongodb://[username]:[password]@[host]:[port]/[database]?authSource=[auth_source]
        """
        return (
            f"mongodb://{self.username}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}?authSource={self.auth_source}"
        )


# =============================================================================
# Pipeline Settings
# =============================================================================

class PipelineSettings(BaseSettings):
    """
    Tunables for the import pipeline.

    Batch sizes bound how many rows a single stage execution reads. Lease
    seconds bound how long a crashed execution can block its import job.
    """

    duplicate_analysis_batch_size: int = Field(5000, validation_alias="IMPORT_DUPLICATE_BATCH_SIZE", gt=0)
    schema_detection_batch_size: int = Field(1000, validation_alias="IMPORT_SCHEMA_BATCH_SIZE", gt=0)
    event_creation_batch_size: int = Field(1000, validation_alias="IMPORT_EVENT_BATCH_SIZE", gt=0)
    geocoding_max_workers: int = Field(4, validation_alias="IMPORT_GEOCODING_WORKERS", gt=0)
    lease_seconds: int = Field(900, validation_alias="IMPORT_LEASE_SECONDS", gt=0)
    max_retries: int = Field(3, validation_alias="IMPORT_MAX_RETRIES", ge=0)
    retry_base_delay_seconds: float = Field(30, validation_alias="IMPORT_RETRY_BASE_DELAY", gt=0)
    retry_max_delay_seconds: float = Field(300, validation_alias="IMPORT_RETRY_MAX_DELAY", gt=0)
    retry_backoff_multiplier: float = Field(2, validation_alias="IMPORT_RETRY_MULTIPLIER", ge=1)
    stuck_schedule_threshold_minutes: int = Field(120, validation_alias="IMPORT_STUCK_THRESHOLD_MINUTES", gt=0)
    geocoder_user_agent: str = Field("geo-event-import", validation_alias="GEOCODER_USER_AGENT")
    geocoder_min_delay_seconds: float = Field(1.0, validation_alias="GEOCODER_MIN_DELAY_SECONDS", ge=0)
    test_mode: bool = Field(False, validation_alias="IMPORT_TEST_MODE", description="Skip retry waits")

    model_config = SettingsConfigDict(
        populate_by_name=True,
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
