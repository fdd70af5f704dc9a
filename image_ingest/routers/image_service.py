from fastapi import APIRouter, Depends, UploadFile, File, Form, Response
from typing import Optional
import logging

from image_ingest.dependencies import Owner, get_image_service, get_owner
from image_ingest.exceptions import ImageNotFoundException, NotFound
from image_ingest.image_service.models import ImageItem, ListImagesResponse
from image_ingest.image_service.service import ImageService

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/images",
    tags=["image-ingestion-service"]
)

@router.get("/blob/{container}/{key}")
async def get_blob(
    container: str,
    key: str,
    images: ImageService = Depends(get_image_service),
):
    """Streams a stored original or thumbnail back to the client."""
    blob = await images.fetch_blob(container, key)
    if blob is None:
        raise NotFound(container, key)
    data, content_type = blob
    return Response(content=data, media_type=content_type, headers={"X-Content-Type-Options": "nosniff"})

@router.post("", response_model=ImageItem, status_code=201)
async def upload_image(
    file: UploadFile = File(...),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    owner: Owner = Depends(get_owner),
    images: ImageService = Depends(get_image_service),
):
    """Uploads an image; the original and a thumbnail are stored."""
    contents = await file.read()
    record = await images.upload(
        data=contents,
        content_type=file.content_type or "",
        file_size=len(contents),
        owner_user_id=owner.user_id,
        owner_tenant_id=owner.tenant_id,
        original_file_name=file.filename or "",
        description=description,
        tags=tags,
    )
    return ImageItem.from_record(record)

@router.get("", response_model=ListImagesResponse)
async def list_images_handler(
    owner: Owner = Depends(get_owner),
    images: ImageService = Depends(get_image_service),
):
    """Lists the caller's images, newest first."""
    summaries = await images.list_images(owner.user_id, owner.tenant_id)
    return ListImagesResponse(images=summaries)

@router.get("/{image_id}", response_model=ImageItem)
async def get_image(
    image_id: str,
    owner: Owner = Depends(get_owner),
    images: ImageService = Depends(get_image_service),
):
    """Gets image metadata."""
    record = await images.get_image(image_id, owner.user_id, owner.tenant_id)
    if record is None:
        raise ImageNotFoundException(image_id)
    return ImageItem.from_record(record)

@router.delete("/{image_id}", status_code=204)
async def delete_image(
    image_id: str,
    owner: Owner = Depends(get_owner),
    images: ImageService = Depends(get_image_service),
):
    """Soft-deletes an image; stored blobs are kept."""
    if not await images.soft_delete(image_id, owner.user_id, owner.tenant_id):
        raise ImageNotFoundException(image_id)
    return Response(status_code=204)

@router.post("/{image_id}/reclaim", status_code=204)
async def reclaim_image_blobs(
    image_id: str,
    owner: Owner = Depends(get_owner),
    images: ImageService = Depends(get_image_service),
):
    """Removes the blobs of an image that was already deleted."""
    if not await images.reclaim_blobs(image_id, owner.user_id, owner.tenant_id):
        raise ImageNotFoundException(image_id)
    return Response(status_code=204)
