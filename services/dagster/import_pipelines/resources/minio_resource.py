# =============================================================================
# MinIO Resource - S3-Compatible Object Storage Operations
# =============================================================================
# Binary file store for import files. URL fetches store their payload here;
# pipeline stages download it to a local temp file to read row batches.
# =============================================================================

import io
from pathlib import Path
from typing import Any, Dict

from dagster import ConfigurableResource
from minio import Minio
from minio.error import S3Error
from pydantic import Field


class MinIOResource(ConfigurableResource):
    """
    Dagster resource for MinIO (S3-compatible object storage) operations.

    Provides methods for:
    - Storing fetched import files (``put_file``)
    - Downloading import files for batch reads

    Configuration matches MinIOSettings from geoimport.models.config.

    Attributes:
        endpoint: MinIO server endpoint (host:port)
        access_key: Access key for authentication
        secret_key: Secret key for authentication
        use_ssl: Whether to use SSL/TLS (default: False)
        import_bucket: Bucket holding import files (default: "import-files")
    """

    endpoint: str = Field(..., description="MinIO server endpoint (host:port)")
    access_key: str = Field(..., description="Access key for authentication")
    secret_key: str = Field(..., description="Secret key for authentication")
    use_ssl: bool = Field(False, description="Whether to use SSL/TLS")
    import_bucket: str = Field("import-files", description="Bucket holding import files")

    def get_client(self) -> Minio:
        """
        Create a MinIO client instance.

        Returns:
            Configured Minio client
        """
        return Minio(
            self.endpoint,
            access_key=self.access_key,
            secret_key=self.secret_key,
            secure=self.use_ssl,
        )

    def put_file(self, file: Dict[str, Any]) -> str:
        """
        Store a file in the import bucket.

        Args:
            file: ``{data, mimetype, name, size}`` where ``data`` is bytes and
                ``name`` becomes the object key

        Returns:
            The object key

        Raises:
            RuntimeError: If the import bucket does not exist
        """
        client = self.get_client()
        data: bytes = file["data"]
        size = file.get("size", len(data))

        try:
            client.put_object(
                self.import_bucket,
                file["name"],
                io.BytesIO(data),
                length=size,
                content_type=file.get("mimetype") or "application/octet-stream",
            )
        except S3Error as exc:
            if exc.code == "NoSuchBucket":
                raise RuntimeError(
                    f"Import bucket '{self.import_bucket}' does not exist"
                ) from exc
            raise
        return file["name"]

    def download_import_file(self, filename: str, local_path: str) -> None:
        """
        Download an import file to a local path.

        Args:
            filename: Object key in the import bucket
            local_path: Local file path to write to

        Raises:
            RuntimeError: If the object does not exist
        """
        client = self.get_client()

        try:
            local_file = Path(local_path)
            local_file.parent.mkdir(parents=True, exist_ok=True)

            response = client.get_object(self.import_bucket, filename)
            try:
                with open(local_path, "wb") as f:
                    for chunk in response.stream(32 * 1024):  # 32KB chunks
                        f.write(chunk)
            finally:
                response.close()
                response.release_conn()

        except S3Error as exc:
            if exc.code == "NoSuchKey":
                raise RuntimeError(
                    f"Import file '{filename}' not found in bucket '{self.import_bucket}'"
                ) from exc
            raise
