"""
Blob store collaborator.

The core never looks inside blobs: it only stores, forwards and deletes the
opaque key string.  ``LocalBlobStore`` keeps blobs under a directory on disk;
any object with the same three coroutine methods can be swapped in.
"""

from __future__ import annotations

import asyncio
import uuid
from functools import lru_cache
from pathlib import Path
from typing import Protocol

from complaintdesk.config import settings
from complaintdesk.errors import ValidationError


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def url(self, key: str, *, expires_in: int = 300) -> str: ...


def new_complaint_image_key() -> str:
    return f"complaints/{uuid.uuid4()}"


def new_action_image_key(worker_id: str) -> str:
    return f"actions/{worker_id}-{uuid.uuid4()}"


class LocalBlobStore:
    def __init__(self, root: str | Path, *, public_base_url: str = "") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        normalized = key.strip().lstrip("/")
        if not normalized or ".." in Path(normalized).parts:
            raise ValidationError(f"Invalid blob key: {key!r}")
        return self.root / normalized

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    async def url(self, key: str, *, expires_in: int = 300) -> str:
        self._path(key)
        return f"{self.public_base_url}/{key.strip().lstrip('/')}"


@lru_cache(1)
def get_blob_store() -> BlobStore:
    return LocalBlobStore(settings.blob_store_root, public_base_url=settings.parsed_blob_public_base_url())
