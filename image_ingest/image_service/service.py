from typing import Callable, List, Optional, Tuple
import asyncio
import logging
import time
import uuid

from fastapi.concurrency import run_in_threadpool

from image_ingest.exceptions import (
    APIException,
    DecodeError,
    InvalidFormat,
    MetadataStoreException,
    PartialUploadFailure,
    StorageFailure,
    TooLarge,
    UploadFailed,
    UploadTimeout,
)
from image_ingest.image_service.models import ImageRecord, ImageSummary
from image_ingest.image_service.normalizer import (
    STORED_CONTENT_TYPE,
    canonical_extension,
    is_supported_format,
    normalize,
)
from image_ingest.repository import ImageRepository, TenantResolver
from image_ingest.settings import Settings
from image_ingest.storage.base import Blob, BlobStore

log = logging.getLogger(__name__)

class Deadline:
    """Remaining time budget of a single upload; ``None`` means unbounded."""

    def __init__(self, timeout: Optional[float] = None):
        self.expires_at = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def check(self, stage: str) -> None:
        if self.expires_at is not None and time.monotonic() >= self.expires_at:
            raise UploadTimeout(stage)

    async def run(self, stage: str, func: Callable, *args):
        """Runs a blocking step in a worker thread within the budget.

        On expiry the worker thread is abandoned, not interrupted.
        """
        self.check(stage)
        if self.expires_at is None:
            return await run_in_threadpool(func, *args)
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self.remaining())
        except asyncio.TimeoutError:
            raise UploadTimeout(stage)

def new_storage_keys(content_type: str) -> Tuple[str, str]:
    """Fresh (original, thumbnail) keys; never derived from the upload's name."""
    unique_id = str(uuid.uuid4())
    extension = canonical_extension(content_type)
    return f"original_{unique_id}{extension}", f"thumb_{unique_id}{extension}"

class ImageService:
    """
        Upload, list, get and soft-delete of tenant images.

        Holds references to its collaborators only; there is no per-request
        state on the instance, so one service serves every request.
    """

    def __init__(
        self,
        blobs: BlobStore,
        repository: ImageRepository,
        tenants: TenantResolver,
        settings: Settings,
    ):
        self.blobs = blobs
        self.repository = repository
        self.tenants = tenants
        self.max_upload_bytes = settings.max_upload_bytes
        self.max_thumbnail_edge = settings.max_thumbnail_edge
        self.allowed_content_types = list(settings.allowed_content_types)
        self.default_timeout = settings.upload_timeout_seconds

    async def upload(
        self,
        data: bytes,
        content_type: str,
        file_size: int,
        owner_user_id: str,
        owner_tenant_id: str,
        original_file_name: str = "",
        description: Optional[str] = None,
        tags: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ImageRecord:
        """Validates, normalizes and stores an image, then records it.

        Both blobs are written before the metadata record, so a visible
        record always points at existing blobs.
        """
        # validation happens before any I/O
        if not is_supported_format(content_type, self.allowed_content_types):
            raise InvalidFormat(content_type)
        if file_size > self.max_upload_bytes:
            raise TooLarge(file_size, self.max_upload_bytes)

        deadline = Deadline(timeout if timeout is not None else self.default_timeout)
        container = await deadline.run("tenant lookup", self.tenants.get_storage_container, owner_tenant_id)

        try:
            normalized = await deadline.run("normalization", normalize, data, self.max_thumbnail_edge)
        except DecodeError as e:
            raise UploadFailed(e.detail) from e

        original_key, thumbnail_key = new_storage_keys(content_type)

        original_url = await deadline.run(
            "original upload", self.blobs.put, container, original_key, normalized.original_bytes, STORED_CONTENT_TYPE
        )
        try:
            thumbnail_url = await deadline.run(
                "thumbnail upload", self.blobs.put, container, thumbnail_key, normalized.thumbnail_bytes, STORED_CONTENT_TYPE
            )
        except StorageFailure as e:
            log.error(
                "Thumbnail upload failed for tenant %s; orphaned blob %s/%s: %s",
                owner_tenant_id, container, original_key, e.detail,
            )
            raise PartialUploadFailure(container, original_key) from e
        except UploadTimeout:
            log.error(
                "Upload timed out after original write for tenant %s; orphaned blob %s/%s",
                owner_tenant_id, container, original_key,
            )
            raise

        record = ImageRecord(
            owner_user_id=owner_user_id,
            owner_tenant_id=owner_tenant_id,
            original_file_name=original_file_name,
            content_type=content_type,
            storage_key=original_key,
            thumbnail_storage_key=thumbnail_key,
            file_size_bytes=file_size,
            width=normalized.width,
            height=normalized.height,
            thumbnail_width=normalized.thumb_width,
            thumbnail_height=normalized.thumb_height,
            description=description,
            tags=tags,
            original_url=original_url,
            thumbnail_url=thumbnail_url,
        )

        # the record write is the commit point; it is not cut short once started
        deadline.check("metadata write")
        try:
            await run_in_threadpool(self.repository.add, record)
        except MetadataStoreException as e:
            log.error(
                "Metadata write failed for tenant %s; orphaned blobs %s/%s and %s/%s: %s",
                owner_tenant_id, container, original_key, container, thumbnail_key, e.detail,
            )
            raise StorageFailure(f"Failed to save image metadata: {e.detail}") from e

        log.info(
            "Successfully uploaded image %s for user %s in tenant %s",
            record.image_id, owner_user_id, owner_tenant_id,
        )
        return record

    async def list_images(self, owner_user_id: str, owner_tenant_id: str) -> List[ImageSummary]:
        """Live images of the owner, newest first, with thumbnail URLs filled in."""
        records = await run_in_threadpool(self.repository.list_owned, owner_user_id, owner_tenant_id)
        missing = [r for r in records if not r.thumbnail_url]
        if missing:
            await run_in_threadpool(self._backfill_all, missing, False)
        return [ImageSummary.from_record(r) for r in records]

    async def get_image(self, image_id: str, owner_user_id: str, owner_tenant_id: str) -> Optional[ImageRecord]:
        """The owner's live image, or None; missing URLs are filled in."""
        record = await run_in_threadpool(self.repository.get_owned, image_id, owner_user_id, owner_tenant_id)
        if record is None:
            return None
        if not record.original_url or not record.thumbnail_url:
            await run_in_threadpool(self._backfill_all, [record], True)
        return record

    async def soft_delete(self, image_id: str, owner_user_id: str, owner_tenant_id: str) -> bool:
        """Hides the image from reads; its blobs are left in place."""
        deleted = await run_in_threadpool(self.repository.mark_deleted, image_id, owner_user_id, owner_tenant_id)
        if deleted:
            log.info(
                "Successfully deleted image %s for user %s in tenant %s",
                image_id, owner_user_id, owner_tenant_id,
            )
        return deleted

    async def reclaim_blobs(self, image_id: str, owner_user_id: str, owner_tenant_id: str) -> bool:
        """Deletes the blobs of an already soft-deleted image.

        Never called as part of ``soft_delete``; returns False unless the
        caller owns a soft-deleted record with this id.
        """
        record = await run_in_threadpool(self.repository.get_deleted, image_id, owner_user_id, owner_tenant_id)
        if record is None:
            return False
        container = await run_in_threadpool(self.tenants.get_storage_container, owner_tenant_id)
        for key in (record.storage_key, record.thumbnail_storage_key):
            removed = await run_in_threadpool(self.blobs.delete, container, key)
            log.info("Reclaimed blob %s/%s: %s", container, key, removed)
        return True

    async def fetch_blob(self, container: str, key: str) -> Optional[Blob]:
        return await run_in_threadpool(self.blobs.get, container, key)

    def _backfill_all(self, records: List[ImageRecord], include_original: bool) -> None:
        """Resolves and persists absent URLs; failures never fail the read."""
        tenant_id = records[0].owner_tenant_id
        try:
            container = self.tenants.get_storage_container(tenant_id)
        except APIException as e:
            log.warning("URL backfill skipped for tenant %s: %s", tenant_id, e.detail)
            return
        for record in records:
            self._backfill(record, container, include_original)

    def _backfill(self, record: ImageRecord, container: str, include_original: bool) -> None:
        original_url = None
        thumbnail_url = None
        if include_original and not record.original_url:
            original_url = self._resolve_or_none(container, record.storage_key, record.image_id)
        if not record.thumbnail_url:
            thumbnail_url = self._resolve_or_none(container, record.thumbnail_storage_key, record.image_id)
        if not original_url and not thumbnail_url:
            return
        try:
            self.repository.fill_urls(
                record.image_id,
                record.owner_user_id,
                record.owner_tenant_id,
                original_url=original_url,
                thumbnail_url=thumbnail_url,
            )
        except APIException as e:
            log.warning("Could not persist backfilled URLs for image %s: %s", record.image_id, e.detail)
        record.original_url = record.original_url or original_url
        record.thumbnail_url = record.thumbnail_url or thumbnail_url

    def _resolve_or_none(self, container: str, key: str, image_id: str) -> Optional[str]:
        try:
            return self.blobs.resolve(container, key)
        except APIException as e:
            log.warning("URL backfill failed for image %s (%s/%s): %s", image_id, container, key, e.detail)
            return None
