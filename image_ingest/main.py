from datetime import datetime, timezone
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

from image_ingest.image_service.service import ImageService
from image_ingest.repository import InMemoryImageRepository, StaticTenantResolver
from image_ingest.settings import Settings, settings
from image_ingest.storage.factory import create_blob_store
from image_ingest.routers.image_service import router as image_router
from image_ingest.exceptions import add_exception_handlers

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("image-ingest")

def build_image_service(settings: Settings) -> ImageService:
    """Wires the configured backends into an ImageService."""
    blobs = create_blob_store(settings)
    backend = settings.metadata_backend.lower()
    if backend == "memory":
        repository = InMemoryImageRepository()
    elif backend == "dynamodb":
        from image_ingest.storage.dynamodb import DynamoDBImageRepository
        repository = DynamoDBImageRepository(settings)
    else:
        raise ValueError(f"Unknown metadata backend: {settings.metadata_backend}")

    if settings.static_tenants or backend == "memory":
        tenants = StaticTenantResolver(settings.static_tenants)
    else:
        from image_ingest.storage.dynamodb import DynamoDBTenantResolver
        tenants = DynamoDBTenantResolver(settings, resource=repository.resource)

    log.info("Using %s blob store and %s metadata", settings.blob_backend, backend)
    return ImageService(blobs=blobs, repository=repository, tenants=tenants, settings=settings)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
        Async context manager for FastAPI application lifecycle events.
        Initializes and closes the storage backends for the application.
    """
    # Initialize resources
    service = build_image_service(settings)
    app.state.images = service
    yield
    # Cleanup resources
    service.blobs.close()
    service.repository.close()
    service.tenants.close()

# Initialize App
app = FastAPI(
    title=settings.app_title,
    lifespan=lifespan,
    description="Tenant Image Ingestion Service",
    root_path = "/api/v1"
)

# Add exception handlers
add_exception_handlers(app)

# CORS - Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add the routers
app.include_router(image_router)

# Check Health
@app.get("/")
def read_root():
    """
        Default end point

    """
    return "Image Ingestion Service is running."

@app.get("/health")
def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

if __name__ == "__main__":
    uvicorn.run("image_ingest.main:app", host="0.0.0.0", port=8000, reload=True)
