"""
FastAPI endpoints for files inside a bucket.

Owners, collaborators and PIN holders may upload, list and download.
Renaming and deleting are limited to owners and collaborators.
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File as FormFile, Query, Response, UploadFile, status
from pydantic import BaseModel, Field

from backend.dependencies import (
    get_access_service,
    get_bucket_pin,
    get_challenge_token,
    get_client_origin,
    get_current_owner,
    get_optional_owner,
)
from backend.endpoints.buckets import authorize_bucket
from shared.models.owner import Owner
from shared.services.access_service import AccessService
from shared.services.file_service import FileUpload


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/buckets/{bucket_id}/files", tags=["files"])


class RenameFileRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


@router.post("")
async def upload_files(
    bucket_id: uuid.UUID,
    files: List[UploadFile] = FormFile(...),
    owner: Optional[Owner] = Depends(get_optional_owner),
    pin: Optional[str] = Depends(get_bucket_pin),
    challenge_token: Optional[str] = Depends(get_challenge_token),
    origin: str = Depends(get_client_origin),
    access: AccessService = Depends(get_access_service)
):
    """
    Upload one or more files.

    The whole batch is admitted against the owner's quota up front; files
    that fail individually are reported in `failed`.
    """
    await authorize_bucket(bucket_id, access, owner, pin, origin, challenge_token)

    # Oversized parts are refused before their body is buffered
    limit = access.accountant.max_file_bytes
    uploads = []
    for upload in files:
        if upload.size is not None:
            access.accountant.check_object_size(upload.size, upload.filename)
        content = await upload.read(limit + 1)
        access.accountant.check_object_size(len(content), upload.filename)
        uploads.append(FileUpload(
            filename=upload.filename or "",
            content=content,
            content_type=upload.content_type or "application/octet-stream"
        ))

    result = await access.upload_files(
        bucket_id,
        uploads,
        uploader_id=owner.user_id if owner else None
    )
    return result.to_dict()


@router.get("")
async def list_files(
    bucket_id: uuid.UUID,
    owner: Optional[Owner] = Depends(get_optional_owner),
    pin: Optional[str] = Depends(get_bucket_pin),
    challenge_token: Optional[str] = Depends(get_challenge_token),
    origin: str = Depends(get_client_origin),
    access: AccessService = Depends(get_access_service)
):
    await authorize_bucket(bucket_id, access, owner, pin, origin, challenge_token)
    files = await access.list_files(bucket_id)
    return {"files": [f.to_dict() for f in files]}


@router.get("/{file_id}/download")
async def download_file(
    bucket_id: uuid.UUID,
    file_id: uuid.UUID,
    owner: Optional[Owner] = Depends(get_optional_owner),
    pin: Optional[str] = Depends(get_bucket_pin),
    challenge_token: Optional[str] = Depends(get_challenge_token),
    origin: str = Depends(get_client_origin),
    access: AccessService = Depends(get_access_service)
):
    """Count a download and return the file's retrievable URL."""
    await authorize_bucket(bucket_id, access, owner, pin, origin, challenge_token)
    file = await access.download_file(bucket_id, file_id)
    return {"url": file.download_url, "file": file.to_dict()}


@router.patch("/{file_id}")
async def rename_file(
    bucket_id: uuid.UUID,
    file_id: uuid.UUID,
    request: RenameFileRequest,
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    await access.authorize_member(bucket_id, owner)
    file = await access.rename_file(bucket_id, file_id, request.name)
    return {"file": file.to_dict()}


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    bucket_id: uuid.UUID,
    file_id: uuid.UUID,
    permanent: bool = Query(False, description="Remove the blob instead of soft deleting"),
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    await access.authorize_member(bucket_id, owner)
    await access.delete_file(bucket_id, file_id, permanent=permanent)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
