from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Dict, List, Optional

DEFAULT_CONTENT_TYPES = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/webp",
]

class Settings(BaseSettings):
    app_title: str = Field("Image Ingestion Service")

    # Which implementations get wired in at startup
    blob_backend: str = Field("filesystem")  # memory | filesystem | s3
    metadata_backend: str = Field("dynamodb")  # memory | dynamodb

    # Upload limits
    max_upload_bytes: int = Field(10 * 1024 * 1024)
    max_thumbnail_edge: int = Field(200)
    allowed_content_types: List[str] = Field(default_factory=lambda: list(DEFAULT_CONTENT_TYPES))
    upload_timeout_seconds: Optional[float] = Field(None)

    # Filesystem / in-memory blob backends
    storage_base_path: str = Field("uploads")
    blob_base_url: str = Field("http://localhost:8000/api/v1/images/blob")

    # AWS
    aws_region: str = Field("us-east-1")
    aws_endpoint_url: Optional[str] = Field(None)
    aws_access_key_id: str = Field("test")
    aws_secret_access_key: str = Field("test")
    s3_public_endpoint: Optional[str] = Field(None)
    images_table: str = Field("Images")
    tenants_table: str = Field("Tenants")

    # tenant id -> container, used when no tenant table is available
    static_tenants: Dict[str, str] = Field(default_factory=dict)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
