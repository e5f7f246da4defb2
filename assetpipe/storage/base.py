"""
Object store contract.
"""

from abc import ABC, abstractmethod


class ObjectStore(ABC):
    """
    Opaque key/value blob storage.

    Keys are arbitrary strings chosen by producers and workers; no
    hierarchical semantics are assumed. Implementations must be safe to call
    from many coroutines at once.
    """

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """
        Read the value stored under ``key``.

        Raises:
            ObjectNotFoundError: If the key does not exist.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is a no-op."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether ``key`` holds a value."""
