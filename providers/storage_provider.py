"""
Object Storage Providers

Uploads binary assets (generated outputs, avatars) into named buckets and
issues public URLs for them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

from core.exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageProvider(ABC):
    """Abstract base class for object storage"""

    @abstractmethod
    async def upload(self, bucket: str, path: str, data: bytes) -> str:
        """Store `data` at `bucket/path` and return the stored path"""
        pass

    @abstractmethod
    async def remove(self, bucket: str, path: str) -> bool:
        """Delete `bucket/path`; returns False when nothing was stored there"""
        pass

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """Public URL of a stored object"""
        pass


class LocalStorageProvider(StorageProvider):
    """Stores objects on the local filesystem under `root/<bucket>/<path>`"""

    def __init__(self, root: Union[str, Path], base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        bucket_dir = (self.root / bucket).resolve()
        target = (bucket_dir / path).resolve()
        if not path or bucket_dir not in target.parents:
            raise StorageError(bucket, path, "Path escapes the bucket")
        return target

    async def upload(self, bucket: str, path: str, data: bytes) -> str:
        target = self._resolve(bucket, path)
        if target.exists():
            raise StorageError(bucket, path, "Object already exists")

        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            logger.error(f"Upload to {bucket}/{path} failed: {e}")
            raise StorageError(bucket, path, str(e))

        logger.info(f"Stored {len(data)} bytes at {bucket}/{path}")
        return path

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # "xb" refuses to replace an object created since the existence check
        with open(target, "xb") as handle:
            handle.write(data)

    async def remove(self, bucket: str, path: str) -> bool:
        target = self._resolve(bucket, path)
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Removing {bucket}/{path} failed: {e}")
            raise StorageError(bucket, path, str(e))

        logger.info(f"Removed {bucket}/{path}")
        return True

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/storage/{bucket}/{path}"
