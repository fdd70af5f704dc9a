"""Blob store contract shared by every storage backend.

Blobs are addressed by ``(container, key)``. A container is the per-tenant
namespace; it is created lazily on first write and ``ensure_container`` is
safe to call any number of times, from any number of threads.

Every backend keeps the content type next to the bytes so ``get`` returns
exactly what ``put`` was given.
"""
from abc import ABC, abstractmethod
from typing import Optional, Tuple

Blob = Tuple[bytes, str]

class BlobStore(ABC):
    @abstractmethod
    def ensure_container(self, container: str) -> None:
        """Create the container if it is missing; no-op otherwise."""

    @abstractmethod
    def put(self, container: str, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key``, overwriting, and return its locator.

        Raises:
            StorageFailure: if the backend cannot write the blob.
        """

    @abstractmethod
    def resolve(self, container: str, key: str) -> str:
        """Return the locator of an existing blob.

        Raises:
            NotFound: if ``key`` does not exist in ``container``.
            StorageFailure: if the backend cannot be reached.
        """

    @abstractmethod
    def delete(self, container: str, key: str) -> bool:
        """Remove a blob; returns False when there was nothing to remove."""

    @abstractmethod
    def get(self, container: str, key: str) -> Optional[Blob]:
        """Return ``(data, content_type)`` or None when the blob is absent."""

    def close(self) -> None:
        pass

def served_locator(base_url: str, container: str, key: str) -> str:
    """Locator for blobs served by this application's blob endpoint."""
    return f"{base_url.rstrip('/')}/{container}/{key}"
