"""Storage backend connectivity check."""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user
from app.schemas.publication import StorageCheckRead
from app.services.publications import publication_uploads

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/check", response_model=StorageCheckRead)
def check_storage(current_user: dict = Depends(get_current_user)):
    return publication_uploads.check_storage()
