"""S3-compatible object storage for invoice files using MinIO.

Works against MinIO, Cloudflare R2 and AWS S3:
- Bucket auto-creation
- Retries for transient S3 errors on upload
- Presigned URLs for direct browser upload and secure download
- Size lookup and download of files uploaded directly by the browser
- Idempotent deletes (a missing key is not an error)

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
from datetime import timedelta
from typing import Any

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoice_ingest.shared.config import Settings

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = frozenset({"NoSuchKey", "NoSuchObject"})


class StorageResult(BaseModel):
    """Result of storage operation.

    Attributes:
        success: Whether operation succeeded
        object_name: Full object path in storage
        bucket: Bucket name
        error: Error message if operation failed
        etag: Object ETag (hash) if available
        size: Object size in bytes if available
        data: Object content, for downloads
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    error: str | None = None
    etag: str | None = None
    size: int | None = None
    data: bytes | None = None


class PresignedUrlResult(BaseModel):
    """Result of presigned URL generation.

    Attributes:
        success: Whether operation succeeded
        url: Presigned URL for object access
        expires_in_seconds: URL expiration time
        error: Error message if operation failed
    """

    success: bool
    url: str | None = None
    expires_in_seconds: int | None = None
    error: str | None = None


class StorageService:
    """Blob store adapter for uploaded invoices.

    Key generation is the caller's job (see ``invoice_ingest.storage.keys``);
    this class only moves bytes and signs URLs.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self._client: Minio | None = None
        self._bucket_exists_cache: set[str] = set()

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Returns:
            Configured Minio client instance

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
                region=self.settings.storage_region,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage credentials are configured.

        Returns:
            True if both access and secret keys are set
        """
        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if the configured bucket can be queried
        """
        if not self.is_available():
            return False

        try:
            client = self._get_client()
            client.bucket_exists(self.settings.storage_bucket)
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self, bucket: str) -> None:
        """Ensure bucket exists, create if missing.

        Args:
            bucket: Bucket name to check/create
        """
        if bucket in self._bucket_exists_cache:
            return

        client = self._get_client()
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_exists_cache.add(bucket)

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put_object(self, bucket: str, object_name: str, data: bytes, content_type: str) -> Any:
        """Upload bytes, retrying transient S3 errors."""
        client = self._get_client()
        self._ensure_bucket(bucket)
        return client.put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )

    def upload_bytes(
        self,
        data: bytes,
        object_name: str,
        content_type: str,
        bucket: str | None = None,
    ) -> StorageResult:
        """Upload bytes to storage.

        Args:
            data: Bytes to upload
            object_name: Target object name in storage
            content_type: Validated MIME type of the content
            bucket: Target bucket (defaults to settings.storage_bucket)

        Returns:
            StorageResult with upload details
        """
        bucket = bucket or self.settings.storage_bucket

        try:
            result = self._put_object(bucket, object_name, data, content_type)
            logger.info(f"Uploaded {object_name} to {bucket} ({len(data)} bytes)")

            return StorageResult(
                success=True,
                object_name=object_name,
                bucket=bucket,
                etag=result.etag,
                size=len(data),
            )

        except S3Error as e:
            logger.error(f"S3 error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error uploading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=str(e),
            )

    def get_presigned_url(
        self,
        object_name: str,
        bucket: str | None = None,
        expires_seconds: int | None = None,
    ) -> PresignedUrlResult:
        """Generate presigned URL for secure object download.

        Args:
            object_name: Object name in storage
            bucket: Bucket name (defaults to settings.storage_bucket)
            expires_seconds: URL lifetime (defaults to settings.storage_download_url_ttl_seconds)

        Returns:
            PresignedUrlResult with URL or error
        """
        bucket = bucket or self.settings.storage_bucket
        expires_seconds = expires_seconds or self.settings.storage_download_url_ttl_seconds

        try:
            client = self._get_client()
            url = client.presigned_get_object(
                bucket_name=bucket,
                object_name=object_name,
                expires=timedelta(seconds=expires_seconds),
            )

            return PresignedUrlResult(
                success=True,
                url=url,
                expires_in_seconds=expires_seconds,
            )

        except S3Error as e:
            logger.error(f"S3 error generating presigned URL for {object_name}: {e}")
            return PresignedUrlResult(
                success=False,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error generating presigned URL for {object_name}: {e}")
            return PresignedUrlResult(
                success=False,
                error=str(e),
            )

    def get_presigned_upload_url(
        self,
        object_name: str,
        bucket: str | None = None,
        expires_seconds: int | None = None,
    ) -> PresignedUrlResult:
        """Generate presigned URL the browser can PUT a file to directly.

        Args:
            object_name: Object name the upload will be stored under
            bucket: Bucket name (defaults to settings.storage_bucket)
            expires_seconds: URL lifetime (defaults to settings.storage_upload_url_ttl_seconds)

        Returns:
            PresignedUrlResult with URL or error
        """
        bucket = bucket or self.settings.storage_bucket
        expires_seconds = expires_seconds or self.settings.storage_upload_url_ttl_seconds

        try:
            client = self._get_client()
            url = client.presigned_put_object(
                bucket_name=bucket,
                object_name=object_name,
                expires=timedelta(seconds=expires_seconds),
            )

            return PresignedUrlResult(
                success=True,
                url=url,
                expires_in_seconds=expires_seconds,
            )

        except S3Error as e:
            logger.error(f"S3 error generating upload URL for {object_name}: {e}")
            return PresignedUrlResult(
                success=False,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error generating upload URL for {object_name}: {e}")
            return PresignedUrlResult(
                success=False,
                error=str(e),
            )

    def object_size(
        self,
        object_name: str,
        bucket: str | None = None,
    ) -> int | None:
        """Size of a stored object.

        Args:
            object_name: Object name to check
            bucket: Bucket name (defaults to settings.storage_bucket)

        Returns:
            Size in bytes, or None if the object does not exist or cannot be read
        """
        bucket = bucket or self.settings.storage_bucket

        try:
            client = self._get_client()
            stat = client.stat_object(bucket_name=bucket, object_name=object_name)
            return stat.size
        except S3Error as e:
            if e.code not in _MISSING_OBJECT_CODES:
                logger.warning(f"S3 error reading metadata of {object_name}: {e}")
            return None
        except Exception as e:
            logger.warning(f"Error reading metadata of {object_name}: {e}")
            return None

    def download_bytes(
        self,
        object_name: str,
        bucket: str | None = None,
    ) -> StorageResult:
        """Download an object into memory.

        Callers check the size first; the whole object is read.

        Args:
            object_name: Object name to download
            bucket: Bucket name (defaults to settings.storage_bucket)

        Returns:
            StorageResult with the content in ``data``
        """
        bucket = bucket or self.settings.storage_bucket
        response = None

        try:
            client = self._get_client()
            response = client.get_object(bucket_name=bucket, object_name=object_name)
            data = response.read()

            return StorageResult(
                success=True,
                object_name=object_name,
                bucket=bucket,
                size=len(data),
                data=data,
            )

        except S3Error as e:
            logger.error(f"S3 error downloading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error downloading {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=str(e),
            )
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def delete_object(
        self,
        object_name: str,
        bucket: str | None = None,
    ) -> StorageResult:
        """Delete object from storage.

        Deleting a key that does not exist counts as success.

        Args:
            object_name: Object name to delete
            bucket: Bucket name (defaults to settings.storage_bucket)

        Returns:
            StorageResult indicating success or failure
        """
        bucket = bucket or self.settings.storage_bucket

        try:
            client = self._get_client()
            client.remove_object(bucket_name=bucket, object_name=object_name)

            logger.info(f"Deleted {object_name} from {bucket}")

            return StorageResult(
                success=True,
                object_name=object_name,
                bucket=bucket,
            )

        except S3Error as e:
            if e.code in _MISSING_OBJECT_CODES:
                logger.info(f"{object_name} already absent from {bucket}")
                return StorageResult(success=True, object_name=object_name, bucket=bucket)
            logger.error(f"S3 error deleting {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error deleting {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=str(e),
            )
