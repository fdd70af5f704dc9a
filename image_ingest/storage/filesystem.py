import os
from typing import Optional
import logging

from image_ingest.exceptions import InvalidStorageName, NotFound, StorageFailure
from image_ingest.settings import Settings
from image_ingest.storage.base import Blob, BlobStore, served_locator

log = logging.getLogger(__name__)

# Sidecar holding the literal content-type string of the blob next to it
META_SUFFIX = ".meta"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# -------------------------
# Filesystem Blob Store
# -------------------------
class FileSystemBlobStore(BlobStore):
    """Stores each container as a directory under ``storage_base_path``."""

    def __init__(self, settings: Settings):
        self.base_path = os.path.abspath(settings.storage_base_path)
        self.base_url = settings.blob_base_url
        os.makedirs(self.base_path, exist_ok=True)
        log.info("Using blob directory %s", self.base_path)

    def _container_path(self, container: str) -> str:
        _check_name(container)
        return os.path.join(self.base_path, container)

    def _blob_path(self, container: str, key: str) -> str:
        _check_name(key)
        return os.path.join(self._container_path(container), key)

    def ensure_container(self, container: str) -> None:
        path = self._container_path(container)
        if os.path.isdir(path):
            return
        try:
            # exist_ok: a concurrent first upload may have created it already
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            log.error("Failed to create container %s: %s", container, e)
            raise StorageFailure(f"Failed to create container '{container}': {e}") from e
        log.info("Created container directory %s at %s", container, path)

    def put(self, container: str, key: str, data: bytes, content_type: str) -> str:
        self.ensure_container(container)
        path = self._blob_path(container, key)
        try:
            with open(path, "wb") as f:
                f.write(data)
            with open(path + META_SUFFIX, "w", encoding="utf-8") as f:
                f.write(content_type)
        except OSError as e:
            log.error("Failed to write blob %s/%s: %s", container, key, e)
            raise StorageFailure(f"Failed to store '{key}' in container '{container}': {e}") from e
        log.info("Stored file %s in container %s at %s", key, container, path)
        return served_locator(self.base_url, container, key)

    def resolve(self, container: str, key: str) -> str:
        self.ensure_container(container)
        if not os.path.isfile(self._blob_path(container, key)):
            raise NotFound(container, key)
        return served_locator(self.base_url, container, key)

    def delete(self, container: str, key: str) -> bool:
        path = self._blob_path(container, key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            log.error("Failed to delete blob %s/%s: %s", container, key, e)
            raise StorageFailure(f"Failed to delete '{key}' from container '{container}': {e}") from e
        try:
            os.remove(path + META_SUFFIX)
        except FileNotFoundError:
            pass
        log.info("Deleted file %s from container %s", key, container)
        return True

    def get(self, container: str, key: str) -> Optional[Blob]:
        try:
            path = self._blob_path(container, key)
        except InvalidStorageName:
            # no blob can be stored under such a name
            return None
        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            log.error("Failed to read blob %s/%s: %s", container, key, e)
            raise StorageFailure(f"Failed to read '{key}' from container '{container}': {e}") from e

        content_type = DEFAULT_CONTENT_TYPE
        try:
            with open(path + META_SUFFIX, "r", encoding="utf-8") as f:
                content_type = f.read().strip() or DEFAULT_CONTENT_TYPE
        except FileNotFoundError:
            pass
        return data, content_type

def _check_name(name: str) -> None:
    """Container and key names must be a single plain path segment."""
    if (
        not name
        or name in (".", "..")
        or "/" in name
        or "\\" in name
        or "\x00" in name
        or name.endswith(META_SUFFIX)
    ):
        raise InvalidStorageName(name)
