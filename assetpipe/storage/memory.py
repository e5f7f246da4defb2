"""
In-process object store, used by tests and single-process deployments.
"""

from assetpipe.exceptions import ObjectNotFoundError
from assetpipe.storage.base import ObjectStore


class InMemoryObjectStore(ObjectStore):
    """Dictionary-backed object store."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self._objects: dict[str, bytes] = dict(objects or {})

    async def put(self, key: str, data: bytes) -> None:
        self._objects[key] = bytes(data)

    async def get(self, key: str) -> bytes:
        try:
            return self._objects[key]
        except KeyError:
            raise ObjectNotFoundError(key) from None

    async def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._objects

    def keys(self) -> list[str]:
        """List stored keys (test and debugging helper)."""
        return sorted(self._objects)
