from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, Field
from uuid import uuid4

def new_image_id() -> str:
    """Generates a new unique image ID."""
    return str(uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def owner_key(user_id: str, tenant_id: str) -> str:
    """Partition value shared by every record a (user, tenant) pair owns."""
    return f"{tenant_id}#{user_id}"

class ImageRecord(BaseModel):
    image_id: str = Field(default_factory=new_image_id)
    owner_user_id: str
    owner_tenant_id: str
    original_file_name: str
    content_type: str
    storage_key: str
    thumbnail_storage_key: str
    file_size_bytes: int
    width: int
    height: int
    thumbnail_width: int
    thumbnail_height: int
    description: Optional[str] = None
    tags: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utcnow)
    is_deleted: bool = False
    original_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        """Flattens the record for a key/value store.

        Absent optional fields are dropped rather than stored as nulls so
        "fill if absent" updates can test for attribute existence.
        """
        item = self.model_dump(exclude_none=True)
        # ISO strings with fixed precision sort chronologically
        item["uploaded_at"] = self.uploaded_at.astimezone(timezone.utc).isoformat(timespec="microseconds")
        item["owner_key"] = owner_key(self.owner_user_id, self.owner_tenant_id)
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ImageRecord":
        data = {k: v for k, v in item.items() if k != "owner_key"}
        for field in ("file_size_bytes", "width", "height", "thumbnail_width", "thumbnail_height"):
            if field in data:
                data[field] = int(data[field])
        return cls(**data)

class ImageSummary(BaseModel):
    image_id: str
    original_file_name: str
    description: Optional[str] = None
    uploaded_at: datetime
    thumbnail_url: str = ""

    @classmethod
    def from_record(cls, record: ImageRecord) -> "ImageSummary":
        return cls(
            image_id=record.image_id,
            original_file_name=record.original_file_name,
            description=record.description,
            uploaded_at=record.uploaded_at,
            thumbnail_url=record.thumbnail_url or "",
        )

class ImageItem(BaseModel):
    image_id: str
    original_file_name: str
    content_type: str
    file_size_bytes: int
    width: int
    height: int
    thumbnail_width: int
    thumbnail_height: int
    description: Optional[str]
    tags: Optional[str]
    uploaded_at: datetime
    original_url: Optional[str]
    thumbnail_url: Optional[str]

    @classmethod
    def from_record(cls, record: ImageRecord) -> "ImageItem":
        return cls(**record.model_dump(include=set(cls.model_fields)))

class ListImagesResponse(BaseModel):
    images: List[ImageSummary]

class Tenant(BaseModel):
    tenant_id: str
    name: str = ""
    subdomain: str = ""
    storage_container: str
    is_active: bool = True
