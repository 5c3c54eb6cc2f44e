"""
FastAPI endpoints for bucket operations.

Owners authenticate with a bearer token. Anonymous holders reach a bucket
through its PIN: either by resolving the PIN, or by sending it in the
X-Bucket-Pin header together with the bucket id. Origins that have to pass a
challenge send its token in X-Challenge-Token.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from backend.dependencies import (
    get_access_service,
    get_bucket_pin,
    get_challenge_token,
    get_client_origin,
    get_current_owner,
    get_optional_owner,
)
from shared.models.bucket import Bucket
from shared.models.owner import Owner
from shared.services.access_service import AccessService
from shared.services.errors import PermissionDeniedError


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/buckets", tags=["buckets"])


class CreateBucketRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    preview: Optional[str] = None
    color: Optional[str] = None
    collaborators: List[str] = Field(default_factory=list)


class UpdateBucketRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    preview: Optional[str] = None
    color: Optional[str] = None


class ResolvePinRequest(BaseModel):
    pin: str
    challenge_token: Optional[str] = None


class CollaboratorRequest(BaseModel):
    email: str


def serialize_bucket(bucket: Bucket, access: AccessService) -> Dict[str, Any]:
    data = bucket.to_dict()
    data["expires_at"] = access.monitor.expires_at(bucket).isoformat()
    data["days_until_expiration"] = access.days_until_expiration(bucket)
    return data


async def authorize_bucket(
    bucket_id: uuid.UUID,
    access: AccessService,
    owner: Optional[Owner],
    pin: Optional[str],
    origin: str,
    challenge_token: Optional[str] = None
) -> Bucket:
    """Member access for authenticated callers, PIN access otherwise."""
    if owner is not None:
        try:
            return await access.authorize_member(bucket_id, owner)
        except PermissionDeniedError:
            if not pin:
                raise
    if pin:
        return await access.open_with_pin(bucket_id, pin, origin, challenge_token)
    raise PermissionDeniedError("A bucket PIN or owner token is required")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_bucket(
    request: CreateBucketRequest,
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    """Create a bucket; the PIN is only returned here and by the reveal endpoint."""
    bucket, pin = await access.create_bucket(
        owner,
        name=request.name,
        description=request.description,
        preview=request.preview,
        color=request.color,
        collaborators=request.collaborators
    )
    return {"bucket": serialize_bucket(bucket, access), "pin": pin}


@router.get("")
async def list_owned_buckets(
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    buckets = await access.list_owned_buckets(owner.user_id)
    return {"buckets": [serialize_bucket(b, access) for b in buckets]}


@router.get("/shared")
async def list_shared_buckets(
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    """Buckets the caller collaborates on."""
    if not owner.email:
        return {"buckets": []}
    buckets = await access.list_shared_buckets(owner.email)
    return {"buckets": [serialize_bucket(b, access) for b in buckets]}


@router.post("/resolve")
async def resolve_bucket(
    request: ResolvePinRequest,
    origin: str = Depends(get_client_origin),
    access: AccessService = Depends(get_access_service)
):
    """Open a bucket with its PIN."""
    bucket = await access.resolve_by_pin(request.pin, origin, request.challenge_token)
    return {"bucket": serialize_bucket(bucket, access)}


@router.get("/{bucket_id}")
async def get_bucket(
    bucket_id: uuid.UUID,
    owner: Optional[Owner] = Depends(get_optional_owner),
    pin: Optional[str] = Depends(get_bucket_pin),
    challenge_token: Optional[str] = Depends(get_challenge_token),
    origin: str = Depends(get_client_origin),
    access: AccessService = Depends(get_access_service)
):
    bucket = await authorize_bucket(bucket_id, access, owner, pin, origin, challenge_token)
    return {"bucket": serialize_bucket(bucket, access)}


@router.get("/{bucket_id}/pin")
async def reveal_pin(
    bucket_id: uuid.UUID,
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    return {"pin": await access.reveal_pin(bucket_id, owner.user_id)}


@router.patch("/{bucket_id}")
async def update_bucket(
    bucket_id: uuid.UUID,
    request: UpdateBucketRequest,
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    bucket = await access.update_bucket(
        bucket_id,
        owner.user_id,
        name=request.name,
        description=request.description,
        preview=request.preview,
        color=request.color
    )
    return {"bucket": serialize_bucket(bucket, access)}


@router.post("/{bucket_id}/collaborators")
async def add_collaborator(
    bucket_id: uuid.UUID,
    request: CollaboratorRequest,
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    bucket = await access.add_collaborator(bucket_id, owner.user_id, request.email)
    return {"bucket": serialize_bucket(bucket, access)}


@router.delete("/{bucket_id}/collaborators/{email}")
async def remove_collaborator(
    bucket_id: uuid.UUID,
    email: str,
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    bucket = await access.remove_collaborator(bucket_id, owner.user_id, email)
    return {"bucket": serialize_bucket(bucket, access)}


@router.delete("/{bucket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bucket(
    bucket_id: uuid.UUID,
    permanent: bool = Query(False, description="Purge immediately instead of soft deleting"),
    owner: Owner = Depends(get_current_owner),
    access: AccessService = Depends(get_access_service)
):
    await access.delete_bucket(bucket_id, owner.user_id, permanent=permanent)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
