"""
Maintenance endpoints called by the external scheduler.
"""

import logging

from fastapi import APIRouter, Depends

from backend.dependencies import get_access_service, require_api_key
from shared.services.access_service import AccessService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/maintenance", tags=["maintenance"])


@router.post("/sweep", dependencies=[Depends(require_api_key)])
async def run_sweep(access: AccessService = Depends(get_access_service)):
    """Purge expired buckets and inactive buckets past their grace period."""
    summary = await access.run_sweep()
    return {"summary": summary.to_dict()}
