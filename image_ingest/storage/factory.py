from image_ingest.settings import Settings
from image_ingest.storage.base import BlobStore

def create_blob_store(settings: Settings) -> BlobStore:
    """Builds the blob backend named by ``settings.blob_backend``."""
    backend = settings.blob_backend.lower()
    if backend == "memory":
        from image_ingest.storage.memory import InMemoryBlobStore
        return InMemoryBlobStore(settings)
    if backend == "filesystem":
        from image_ingest.storage.filesystem import FileSystemBlobStore
        return FileSystemBlobStore(settings)
    if backend == "s3":
        from image_ingest.storage.s3 import S3BlobStore
        return S3BlobStore(settings)
    raise ValueError(f"Unknown blob backend: {settings.blob_backend}")
