from typing import NamedTuple, Optional
from fastapi import Header, HTTPException, Request
from image_ingest.image_service.service import ImageService

class Owner(NamedTuple):
    user_id: str
    tenant_id: str

def get_image_service(request: Request) -> ImageService:
    """Dependency provider for ImageService"""
    return request.app.state.images

def get_owner(
    x_user_id: Optional[str] = Header(None),
    x_tenant_id: Optional[str] = Header(None),
) -> Owner:
    """
        Identity of the caller, as established by the authentication layer
        in front of this service.
    """
    if not x_user_id or not x_tenant_id:
        raise HTTPException(status_code=401, detail="Missing user or tenant identity")
    return Owner(user_id=x_user_id, tenant_id=x_tenant_id)
