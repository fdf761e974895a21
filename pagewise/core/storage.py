"""
Object storage for original uploads. S3 OR local filesystem. Controlled by FF_USE_S3 flag.

Keys are caller-chosen paths like "{owner_id}/{document_id}.pdf".
"""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path

from .config import get_settings
from .errors import NotFound, ValidationError
from .flags import get_flags

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    @abstractmethod
    async def upload(self, data: bytes, path: str) -> str:
        """Store bytes under path. Returns the stored key."""
        ...

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Read bytes stored under path. Raises NotFound if absent."""
        ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the object under path. A missing object is not an error."""
        ...


class S3Storage(StorageBackend):
    def __init__(self):
        self._client = None

    def _get_client(self):
        if self._client is None:
            import boto3

            settings = get_settings()
            kwargs = {"region_name": settings.aws_region}
            if settings.aws_access_key_id:
                kwargs["aws_access_key_id"] = settings.aws_access_key_id
                kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    async def upload(self, data: bytes, path: str) -> str:
        settings = get_settings()
        key = path.strip("/")
        client = self._get_client()
        # boto3 is blocking
        await asyncio.to_thread(
            client.put_object,
            Bucket=settings.s3_bucket_name,
            Key=key,
            Body=data,
            ContentType=_guess_content_type(key),
        )
        logger.info("Uploaded to S3: %s (%d bytes)", key, len(data))
        return key

    async def read(self, path: str) -> bytes:
        settings = get_settings()
        client = self._get_client()
        key = path.strip("/")
        try:
            resp = await asyncio.to_thread(
                client.get_object, Bucket=settings.s3_bucket_name, Key=key
            )
        except client.exceptions.NoSuchKey:
            raise NotFound(f"stored object not found: {key}")
        return await asyncio.to_thread(resp["Body"].read)

    async def delete(self, path: str) -> None:
        settings = get_settings()
        client = self._get_client()
        key = path.strip("/")
        await asyncio.to_thread(client.delete_object, Bucket=settings.s3_bucket_name, Key=key)
        logger.info("Deleted from S3: %s", key)


class LocalStorage(StorageBackend):
    def __init__(self, base_path: str = "./local_storage"):
        self.base_path = Path(base_path)

    def _resolve(self, path: str) -> Path:
        target = (self.base_path / path.strip("/")).resolve()
        if self.base_path.resolve() not in target.parents:
            raise ValidationError("invalid storage path", field="path")
        return target

    async def upload(self, data: bytes, path: str) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Saved locally: %s", target)
        return path.strip("/")

    async def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.exists():
            raise NotFound(f"stored object not found: {path}")
        return target.read_bytes()

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        target.unlink(missing_ok=True)
        logger.info("Deleted locally: %s", target)


def get_storage() -> StorageBackend:
    """Return the active storage backend based on feature flags."""
    flags = get_flags()
    if flags.use_s3:
        return S3Storage()
    return LocalStorage(get_settings().local_storage_path)


def _guess_content_type(filename: str) -> str:
    ct, _ = mimetypes.guess_type(filename)
    return ct or "application/octet-stream"
