"""
    Centralized exception handling for the FastAPI application.

    Every domain error carries the HTTP status it maps to, so the service
    layer can raise them directly and the handlers below only serialize.
"""
from typing import Optional
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
import logging

log = logging.getLogger(__name__)

class APIException(Exception):
    """Base class for API exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

class InvalidFormat(APIException):
    """The declared content type is not on the allow-list."""
    def __init__(self, content_type: str):
        self.content_type = content_type
        super().__init__(status_code=400, detail=f"Unsupported image format: {content_type}")

class TooLarge(APIException):
    """The upload exceeds the configured size limit."""
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(status_code=413, detail=f"File size {size} exceeds the {limit} byte limit")

class TenantNotFound(APIException):
    """The tenant is unknown or inactive."""
    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(status_code=404, detail=f"Tenant '{tenant_id}' not found.")

class DecodeError(APIException):
    """The bytes could not be decoded as an image."""
    def __init__(self, detail: str = "Invalid image file"):
        super().__init__(status_code=400, detail=detail)

class UploadFailed(APIException):
    """The upload was rejected after validation, e.g. undecodable bytes."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class NotFound(APIException):
    """A blob is absent from its container."""
    def __init__(self, container: str, key: str):
        self.container = container
        self.key = key
        super().__init__(status_code=404, detail=f"Blob '{key}' not found in container '{container}'.")

class ImageNotFoundException(APIException):
    """Exception for when an image is not found."""
    def __init__(self, image_id: str):
        super().__init__(status_code=404, detail=f"Image with ID '{image_id}' not found.")

class InvalidStorageName(APIException):
    """A container or key name would escape the storage root."""
    def __init__(self, name: str):
        super().__init__(status_code=400, detail=f"Invalid storage name: {name!r}")

class StorageFailure(APIException):
    """Blob backend I/O failed; safe for the caller to retry."""
    def __init__(self, detail: str):
        super().__init__(status_code=503, detail=detail)

class PartialUploadFailure(StorageFailure):
    """The original blob was written but the thumbnail write failed."""
    def __init__(self, container: str, orphaned_key: str, detail: Optional[str] = None):
        self.container = container
        self.orphaned_key = orphaned_key
        super().__init__(
            detail or f"Thumbnail upload failed; blob '{orphaned_key}' in container '{container}' is orphaned"
        )

class MetadataStoreException(APIException):
    """Metadata repository failures."""
    def __init__(self, detail: str):
        super().__init__(status_code=503, detail=detail)

class UploadTimeout(APIException):
    """The upload did not finish within its deadline."""
    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(status_code=504, detail=f"Upload timed out during {stage}")

async def api_exception_handler(request: Request, exc: APIException):
    """Handles API exceptions."""
    if exc.status_code >= 500:
        log.error(f"API Exception: {exc.detail}", exc_info=exc)
    else:
        log.info(f"API Exception: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    """Handles FastAPI HTTP exceptions."""
    log.error(f"HTTP Exception: {exc.detail}", exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def generic_exception_handler(request: Request, exc: Exception):
    """Handles all other exceptions."""
    log.error(f"Unhandled Exception: {str(exc)}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred."},
    )

def add_exception_handlers(app):
    """Adds exception handlers to the FastAPI app."""
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
