"""
Object storage for uploaded files

Buckets are directories below STORAGE_ROOT; every stored object is
reachable at STORAGE_PUBLIC_URL/<bucket>/<path>.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from mutum.utils.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object cannot be stored"""


@dataclass
class UploadedFile:
    """A file received from a client"""

    filename: str
    data: bytes


def unique_object_path(prefix: str, filename: str) -> str:
    """Build a '<prefix>/<millis>_<filename>' object name"""
    safe_name = PurePosixPath(filename.replace("\\", "/")).name or "upload"
    return f"{prefix.strip('/')}/{int(time.time() * 1000)}_{safe_name}"


class ObjectStorage:
    """Filesystem-backed bucket storage returning public URLs"""

    def __init__(self, root: Optional[str] = None, public_url: Optional[str] = None):
        self.root = Path(root or settings.STORAGE_ROOT)
        self.public_base = (public_url or settings.STORAGE_PUBLIC_URL).rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise StorageError(f"Invalid object path: {path!r}")
        if not bucket or "/" in bucket or bucket in (".", ".."):
            raise StorageError(f"Invalid bucket name: {bucket!r}")
        return self.root / bucket / Path(*relative.parts)

    def upload(self, bucket: str, path: str, data: Union[bytes, bytearray]) -> str:
        """
        Store an object and return its public URL

        Args:
            bucket: Bucket name
            path: Object path inside the bucket
            data: File contents

        Returns:
            Public URL of the stored object
        """
        target = self._resolve(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(bytes(data))
        except OSError as e:
            logger.error(f"Upload to {bucket}/{path} failed: {e}")
            raise StorageError(str(e)) from e

        logger.info(f"Stored object {bucket}/{path} ({len(data)} bytes)")
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        self._resolve(bucket, path)
        return f"{self.public_base}/{bucket}/{PurePosixPath(path).as_posix()}"


_object_storage = None

def get_object_storage() -> ObjectStorage:
    """Get singleton instance of ObjectStorage"""
    global _object_storage
    if _object_storage is None:
        _object_storage = ObjectStorage()
    return _object_storage
