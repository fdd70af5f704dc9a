import threading
from typing import Dict, Optional
import logging

from image_ingest.exceptions import NotFound
from image_ingest.settings import Settings
from image_ingest.storage.base import Blob, BlobStore, served_locator

log = logging.getLogger(__name__)

# -------------------------
# In-memory Blob Store
# -------------------------
class InMemoryBlobStore(BlobStore):
    """Process-local blob store; contents are lost on restart."""

    def __init__(self, settings: Settings):
        self.base_url = settings.blob_base_url
        self._containers: Dict[str, Dict[str, Blob]] = {}
        self._lock = threading.Lock()

    def ensure_container(self, container: str) -> None:
        with self._lock:
            if container not in self._containers:
                self._containers[container] = {}
                log.info("Created in-memory container %s", container)

    def put(self, container: str, key: str, data: bytes, content_type: str) -> str:
        self.ensure_container(container)
        with self._lock:
            self._containers[container][key] = (bytes(data), content_type)
        log.debug("Stored blob %s in container %s", key, container)
        return served_locator(self.base_url, container, key)

    def resolve(self, container: str, key: str) -> str:
        self.ensure_container(container)
        with self._lock:
            if key not in self._containers[container]:
                raise NotFound(container, key)
        return served_locator(self.base_url, container, key)

    def delete(self, container: str, key: str) -> bool:
        with self._lock:
            blobs = self._containers.get(container)
            if blobs is None or key not in blobs:
                return False
            del blobs[key]
        log.info("Deleted blob %s from container %s", key, container)
        return True

    def get(self, container: str, key: str) -> Optional[Blob]:
        with self._lock:
            return self._containers.get(container, {}).get(key)
