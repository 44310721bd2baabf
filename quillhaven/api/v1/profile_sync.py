from fastapi import APIRouter, Depends, Query

from quillhaven.api.deps import get_current_principal, get_profile_sync, require_roles
from quillhaven.models.principal import Principal, RoleEnum
from quillhaven.schemas.sync import (
    BidirectionalSyncResult, BulkSyncIn, BulkSyncResult, SyncRequest, SyncResult, SyncStatus,
)
from quillhaven.services.profile_sync import ProfileSyncEngine

router = APIRouter(prefix="/profile-sync", tags=["profile-sync"])


@router.get("", response_model=SyncStatus)
async def sync_status(
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    engine: ProfileSyncEngine = Depends(get_profile_sync),
):
    return await engine.sync_history(principal.id, limit=limit)


@router.post("", response_model=SyncResult | BidirectionalSyncResult)
async def sync_profile(
    body: SyncRequest,
    principal: Principal = Depends(get_current_principal),
    engine: ProfileSyncEngine = Depends(get_profile_sync),
):
    if body.direction == "from_external":
        return await engine.sync_from_external(
            principal.id, force=body.force, skip_conflicts=body.skip_conflicts
        )
    if body.direction == "to_external":
        return await engine.sync_to_external(principal.id)
    return await engine.bidirectional_sync(principal.id, force=body.force)


@router.post("/bulk", response_model=BulkSyncResult)
async def bulk_sync(
    body: BulkSyncIn,
    _admin: Principal = Depends(require_roles(RoleEnum.admin, "profile_sync")),
    engine: ProfileSyncEngine = Depends(get_profile_sync),
):
    return await engine.bulk_sync(body.principal_ids)
