"""
Content-addressed blob storage for evidence files.

The integrity core never reads files itself; the host stores and retrieves
bytes through a BlobStore and hands them to the checker.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Protocol

from ..exceptions import BlobStoreError
from ..integrity.merkle_tree import sha256_hex

logger = logging.getLogger("custody_ledger.blobstore")

LOCAL_PREFIX = "local-"

_CONTENT_ID = re.compile(r"^local-[0-9a-f]{64}$")


class BlobStore(Protocol):
    """Typed store/retrieve contract for file content."""

    async def store(self, data: bytes, filename: str) -> str:
        """Persist bytes and return an opaque content identifier."""
        ...

    async def retrieve(self, content_id: str) -> bytes:
        ...


class LocalBlobStore:
    """
    Filesystem blob store keyed by the SHA-256 of the content.

    Layout: <root>/<first two hex chars>/<full hex digest>. Storing the same
    bytes twice yields the same content identifier.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, content_id: str) -> Path:
        if not _CONTENT_ID.match(content_id):
            raise BlobStoreError(f"Invalid content identifier: {content_id}")
        digest = content_id[len(LOCAL_PREFIX):]
        return self.root / digest[:2] / digest

    def _write(self, data: bytes) -> str:
        content_id = LOCAL_PREFIX + sha256_hex(data)
        path = self._path(content_id)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        return content_id

    def _read(self, content_id: str) -> bytes:
        path = self._path(content_id)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobStoreError(f"Content {content_id} not found in blob store") from e

    async def store(self, data: bytes, filename: str) -> str:
        try:
            content_id = await asyncio.to_thread(self._write, data)
        except OSError as e:
            logger.error(f"❌ Failed to store {filename}: {e}", exc_info=True)
            raise BlobStoreError(f"Failed to store {filename}: {e}") from e

        logger.info(f"✅ Stored {filename} ({len(data)} bytes) as {content_id}")
        return content_id

    async def retrieve(self, content_id: str) -> bytes:
        try:
            return await asyncio.to_thread(self._read, content_id)
        except OSError as e:
            logger.error(f"❌ Failed to read {content_id}: {e}", exc_info=True)
            raise BlobStoreError(f"Failed to read {content_id}: {e}") from e
