"""
Object store module.
Contains the store contract and its in-memory and filesystem backends.
"""

from assetpipe.config import Settings
from assetpipe.exceptions import ConfigurationError
from assetpipe.storage.base import ObjectStore
from assetpipe.storage.local import LocalObjectStore
from assetpipe.storage.memory import InMemoryObjectStore


def create_object_store(settings: Settings) -> ObjectStore:
    """Build the object store named by ``settings.object_store_backend``."""
    if settings.object_store_backend == "memory":
        return InMemoryObjectStore()
    if settings.object_store_backend == "local":
        return LocalObjectStore(settings.object_store_root)
    raise ConfigurationError(
        f"Unknown object store backend: {settings.object_store_backend}"
    )


__all__ = [
    "ObjectStore",
    "InMemoryObjectStore",
    "LocalObjectStore",
    "create_object_store",
]
