"""
    Metadata repository and tenant directory contracts.

    Every image query takes the owning (user, tenant) pair, so a record owned
    by somebody else is simply not addressable through this interface.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Tuple
import threading
import logging

from image_ingest.exceptions import TenantNotFound
from image_ingest.image_service.models import ImageRecord, Tenant

log = logging.getLogger(__name__)

class ImageRepository(ABC):
    @abstractmethod
    def add(self, record: ImageRecord) -> None:
        """Persists a new record in a single atomic write."""

    @abstractmethod
    def get_owned(self, image_id: str, user_id: str, tenant_id: str) -> Optional[ImageRecord]:
        """Returns the non-deleted record, or None if absent, deleted or foreign."""

    @abstractmethod
    def list_owned(self, user_id: str, tenant_id: str) -> List[ImageRecord]:
        """Non-deleted records of the owner, newest first."""

    @abstractmethod
    def mark_deleted(self, image_id: str, user_id: str, tenant_id: str) -> bool:
        """Flips ``is_deleted``; False when there is no live owned record."""

    @abstractmethod
    def fill_urls(
        self,
        image_id: str,
        user_id: str,
        tenant_id: str,
        original_url: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
    ) -> None:
        """Sets each given URL only where the record has none yet."""

    @abstractmethod
    def get_deleted(self, image_id: str, user_id: str, tenant_id: str) -> Optional[ImageRecord]:
        """Returns the owned record only if it has been soft-deleted."""

    def close(self) -> None:
        pass

class TenantResolver(ABC):
    @abstractmethod
    def get_storage_container(self, tenant_id: str) -> str:
        """Container name of an active tenant.

        Raises:
            TenantNotFound: if the tenant is unknown or inactive.
        """

    def close(self) -> None:
        pass

# -------------------------
# In-memory implementations
# -------------------------
class InMemoryImageRepository(ImageRepository):
    def __init__(self):
        self._items: Dict[Tuple[str, str, str], ImageRecord] = {}
        self._lock = threading.Lock()

    def add(self, record: ImageRecord) -> None:
        key = (record.owner_tenant_id, record.owner_user_id, record.image_id)
        with self._lock:
            self._items[key] = record.model_copy(deep=True)
        log.debug("Inserted metadata %s", record.image_id)

    def _find(self, image_id: str, user_id: str, tenant_id: str) -> Optional[ImageRecord]:
        return self._items.get((tenant_id, user_id, image_id))

    def get_owned(self, image_id: str, user_id: str, tenant_id: str) -> Optional[ImageRecord]:
        with self._lock:
            record = self._find(image_id, user_id, tenant_id)
            if record is None or record.is_deleted:
                return None
            return record.model_copy(deep=True)

    def get_deleted(self, image_id: str, user_id: str, tenant_id: str) -> Optional[ImageRecord]:
        with self._lock:
            record = self._find(image_id, user_id, tenant_id)
            if record is None or not record.is_deleted:
                return None
            return record.model_copy(deep=True)

    def list_owned(self, user_id: str, tenant_id: str) -> List[ImageRecord]:
        with self._lock:
            records = [
                r.model_copy(deep=True)
                for (t, u, _), r in self._items.items()
                if t == tenant_id and u == user_id and not r.is_deleted
            ]
        return sorted(records, key=lambda r: r.uploaded_at, reverse=True)

    def mark_deleted(self, image_id: str, user_id: str, tenant_id: str) -> bool:
        with self._lock:
            record = self._find(image_id, user_id, tenant_id)
            if record is None or record.is_deleted:
                return False
            record.is_deleted = True
        log.debug("Soft-deleted metadata %s", image_id)
        return True

    def fill_urls(self, image_id, user_id, tenant_id, original_url=None, thumbnail_url=None) -> None:
        with self._lock:
            record = self._find(image_id, user_id, tenant_id)
            if record is None:
                return
            if original_url and not record.original_url:
                record.original_url = original_url
            if thumbnail_url and not record.thumbnail_url:
                record.thumbnail_url = thumbnail_url

class StaticTenantResolver(TenantResolver):
    """Tenant directory held in configuration (``STATIC_TENANTS``)."""

    def __init__(self, tenants: Mapping[str, str]):
        self._tenants = {
            tenant_id: Tenant(tenant_id=tenant_id, storage_container=container)
            for tenant_id, container in tenants.items()
        }

    def add(self, tenant: Tenant) -> None:
        self._tenants[tenant.tenant_id] = tenant

    def get_storage_container(self, tenant_id: str) -> str:
        tenant = self._tenants.get(tenant_id)
        if tenant is None or not tenant.is_active:
            raise TenantNotFound(tenant_id)
        return tenant.storage_container
