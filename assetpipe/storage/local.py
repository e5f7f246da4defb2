"""
Directory-backed object store.

Every key maps to a single file directly under the root directory. The file
name is the percent-encoded key, so ``in/a1.png`` and ``in%2Fa1.png`` never
collide and no directory structure is implied by slashes in a key. Keys whose
encoded name would exceed the filesystem name limit are stored under a
hash of the key instead; encoded names never contain a raw "#", so the two
forms cannot collide.
"""

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import quote

from assetpipe.exceptions import ObjectNotFoundError
from assetpipe.storage.base import ObjectStore

logger = logging.getLogger(__name__)

# NAME_MAX on common filesystems
MAX_NAME_BYTES = 255


class LocalObjectStore(ObjectStore):
    """
    Object store on the local filesystem.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so readers never observe a partial object.
    File I/O runs in a worker thread to keep the event loop free.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("Object key must not be empty")
        name = quote(key, safe="")
        # Leading dots are reserved for temp files and "." / ".."
        if name.startswith("."):
            name = "%2E" + name[1:]
        if len(name) > MAX_NAME_BYTES:
            name = "#" + hashlib.sha256(key.encode()).hexdigest()
        return self._root / name

    def _write(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(self._write, path, bytes(data))
        logger.debug("Stored object", extra={"key": key, "size": len(data)})

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise ObjectNotFoundError(key) from None

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(path.unlink, True)

    async def exists(self, key: str) -> bool:
        path = self._path_for(key)
        return await asyncio.to_thread(path.is_file)
