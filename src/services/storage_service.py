"""Blob storage for encrypted record payloads on S3-compatible storage (MinIO)."""

import io
import uuid

from minio import Minio
from minio.error import S3Error

from src.core.config import Settings, get_settings
from src.core.exceptions import ExternalServiceError


class StorageError(ExternalServiceError):
    """Blob storage operation error."""

    def __init__(self, detail: str, operation: str = "storage") -> None:
        super().__init__(detail=detail, service="storage", operation=operation)


def _safe(value: str) -> str:
    return "".join(c if c.isalnum() or c in ".-_" else "_" for c in value)


class StorageService:
    """Stores ciphertext blobs. Never sees plaintext."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize storage service with settings.

        Args:
            settings: Application settings. If None, loads from environment.
        """
        self.settings = settings or get_settings()
        self._client: Minio | None = None

    @property
    def client(self) -> Minio:
        """Get or create MinIO client (lazy initialization)."""
        if self._client is None:
            self._client = Minio(
                endpoint=self.settings.minio_endpoint,
                access_key=self.settings.minio_access_key,
                secret_key=self.settings.minio_secret_key,
                secure=self.settings.minio_secure,
            )
        return self._client

    @property
    def bucket_name(self) -> str:
        """Get the configured bucket name."""
        return self.settings.minio_bucket

    async def ensure_bucket_exists(self) -> None:
        """Ensure the storage bucket exists, creating it if necessary.

        Raises:
            StorageError: If bucket creation fails
        """
        try:
            if not self.client.bucket_exists(self.bucket_name):
                self.client.make_bucket(self.bucket_name)
        except S3Error as e:
            raise StorageError(
                detail=f"Failed to ensure bucket exists: {e}",
                operation="bucket-create",
            ) from e

    async def ping(self) -> bool:
        """Check the blob store answers. Returns whether the bucket exists yet.

        Raises:
            StorageError: If the store rejects the request
        """
        try:
            return self.client.bucket_exists(self.bucket_name)
        except S3Error as e:
            raise StorageError(detail=f"Blob store error: {e}", operation="ping") from e

    def generate_key(
        self,
        patient_wallet: str,
        filename: str,
        prefix: str = "records",
    ) -> str:
        """Generate a unique object key for a patient's blob.

        Returns:
            Key in format: prefix/patient/uuid-filename
        """
        unique_id = uuid.uuid4().hex[:12]
        return f"{prefix}/{_safe(patient_wallet)}/{unique_id}-{_safe(filename)}.enc"

    async def upload_file(
        self,
        file_data: bytes | io.BytesIO,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload a blob.

        Returns:
            The key where the blob was stored

        Raises:
            StorageError: If upload fails
        """
        try:
            await self.ensure_bucket_exists()

            if isinstance(file_data, bytes):
                file_data = io.BytesIO(file_data)

            file_data.seek(0, 2)
            file_size = file_data.tell()
            file_data.seek(0)

            self.client.put_object(
                bucket_name=self.bucket_name,
                object_name=key,
                data=file_data,
                length=file_size,
                content_type=content_type,
            )

            return key

        except S3Error as e:
            raise StorageError(
                detail=f"Failed to upload file: {e}",
                operation="upload",
            ) from e

    async def download_file(self, key: str) -> bytes:
        """Fetch a blob's bytes.

        Raises:
            StorageError: If the blob is missing or the read fails
        """
        response = None
        try:
            response = self.client.get_object(self.bucket_name, key)
            return response.read()
        except S3Error as e:
            raise StorageError(
                detail=f"Failed to download file: {e}",
                operation="download",
            ) from e
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    async def delete_file(self, key: str) -> bool:
        """Delete a blob.

        Returns:
            True if the blob was deleted, False if it didn't exist

        Raises:
            StorageError: If deletion fails
        """
        try:
            try:
                self.client.stat_object(self.bucket_name, key)
            except S3Error as e:
                if e.code == "NoSuchKey":
                    return False
                raise

            self.client.remove_object(self.bucket_name, key)
            return True

        except S3Error as e:
            raise StorageError(
                detail=f"Failed to delete file: {e}",
                operation="delete",
            ) from e
