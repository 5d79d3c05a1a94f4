"""
Storage Service
Persists rendered images - supports Google Cloud Storage, S3, and local filesystem.
"""

import logging
from pathlib import Path
from typing import Optional

import httpx

from modelsnap.core.config import settings
from modelsnap.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageService:
    """Service for file storage operations."""

    def __init__(self, local_path: Optional[str] = None):
        # Priority: explicit local path > GCS > Local > S3
        self.use_gcs = settings.USE_GCS and local_path is None
        self.use_local = local_path is not None or (settings.USE_LOCAL_STORAGE and not self.use_gcs)

        if self.use_gcs:
            from google.cloud import storage
            self.gcs_client = storage.Client(project=settings.GCP_PROJECT_ID)
            self.bucket_uploads = self.gcs_client.bucket(settings.GCS_BUCKET_UPLOADS)
            self.bucket_outputs = self.gcs_client.bucket(settings.GCS_BUCKET_OUTPUTS)
            logger.info(f"[Storage] Using Google Cloud Storage: {settings.GCS_BUCKET_UPLOADS}, {settings.GCS_BUCKET_OUTPUTS}")

        elif self.use_local:
            self.base_path = Path(local_path or settings.LOCAL_STORAGE_PATH)
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"[Storage] Using local storage: {self.base_path}")

        else:
            import boto3
            from botocore.config import Config
            self.s3 = boto3.client(
                "s3",
                endpoint_url=settings.S3_ENDPOINT or None,
                aws_access_key_id=settings.S3_ACCESS_KEY,
                aws_secret_access_key=settings.S3_SECRET_KEY,
                region_name=settings.S3_REGION,
                config=Config(signature_version="s3v4")
            )
            self.bucket = settings.S3_BUCKET
            logger.info(f"[Storage] Using S3: {self.bucket}")

    def _gcs_bucket(self, path: str):
        # Model reference photos live in the uploads bucket, renders in outputs
        if path.startswith("uploads/") or path.startswith("models/"):
            return self.bucket_uploads
        return self.bucket_outputs

    def _local_file(self, path: str) -> Path:
        """Map a storage key onto the local root; keys may not climb out of it."""
        root = self.base_path.resolve()
        file_path = (root / path).resolve()
        try:
            file_path.relative_to(root)
        except ValueError:
            logger.warning(f"[Storage] Rejected path outside storage root: {path}")
            raise StorageError(f"Invalid storage path: {path}", code="INVALID_PATH")
        return file_path

    async def upload_bytes(self, data: bytes, path: str, content_type: str = "image/jpeg") -> str:
        """Upload bytes and return a storage reference."""
        file_path = self._local_file(path) if self.use_local else None
        try:
            if self.use_gcs:
                blob = self._gcs_bucket(path).blob(path)
                blob.upload_from_string(data, content_type=content_type)
            elif self.use_local:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(file_path, "wb") as f:
                    f.write(data)
            else:
                self.s3.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        except Exception as e:
            logger.error(f"[Storage] Upload failed for {path}: {e}")
            raise StorageError(f"Upload failed for {path}: {e}")

        # All backends are served through the API proxy
        return self.get_public_url(path)

    async def get_file(self, path: str) -> bytes:
        """Get file contents."""
        file_path = self._local_file(path) if self.use_local else None
        try:
            if self.use_gcs:
                return self._gcs_bucket(path).blob(path).download_as_bytes()
            elif self.use_local:
                with open(file_path, "rb") as f:
                    return f.read()
            else:
                response = self.s3.get_object(Bucket=self.bucket, Key=path)
                return response["Body"].read()
        except Exception as e:
            logger.error(f"[Storage] Read failed for {path}: {e}")
            raise StorageError(f"Read failed for {path}: {e}")

    def get_public_url(self, path: str) -> str:
        return f"/files/{path}"

    async def download_bytes(self, url: str) -> bytes:
        """
        Download file bytes from a storage reference or URL.

        Args:
            url: /files/ proxy ref, s3://, file:// or http(s):// URL
        """
        if url.startswith("/files/"):
            return await self.get_file(url.replace("/files/", "", 1))

        if url.startswith("file://"):
            try:
                with open(url.replace("file://", "", 1), "rb") as f:
                    return f.read()
            except OSError as e:
                raise StorageError(f"Read failed for {url}: {e}")

        if url.startswith("s3://"):
            parts = url.replace("s3://", "", 1).split("/", 1)
            try:
                response = self.s3.get_object(Bucket=parts[0], Key=parts[1] if len(parts) > 1 else "")
                return response["Body"].read()
            except Exception as e:
                raise StorageError(f"Read failed for {url}: {e}")

        if url.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, timeout=60.0)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPError as e:
                raise StorageError(f"Download failed for {url}: {e}")

        # Bare relative path
        return await self.get_file(url)


_storage: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    global _storage
    if _storage is None:
        _storage = StorageService()
    return _storage
