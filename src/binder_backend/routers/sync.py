# pyright: reportCallInDefaultInitializer=false

from __future__ import annotations

from fastapi import APIRouter, Depends

from binder_backend.deps import get_actor_id, get_binder_service
from binder_backend.schemas_api import BinderListResponse, SyncStatusRequest, SyncStatusResponse
from binder_backend.schemas_binder import Binder
from binder_backend.schemas_common import OkResponse
from binder_backend.services.binder_service import BinderService

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/cloud", response_model=BinderListResponse)
async def list_cloud_binders(
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return BinderListResponse(items=await service.list_cloud_binders(actor_id))


@router.post("/cloud/{binder_id}/download", response_model=Binder)
async def download_cloud_binder(
    binder_id: str,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return await service.download_from_cloud(binder_id, actor_id)


@router.post("/status", response_model=SyncStatusResponse)
async def check_sync_status(
    payload: SyncStatusRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    statuses = await service.check_sync_status(payload.binder_ids, actor_id)
    return SyncStatusResponse(statuses=statuses)


@router.delete("/cloud/{binder_id}", response_model=OkResponse)
async def delete_cloud_binder(
    binder_id: str,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    await service.delete_from_cloud(binder_id, actor_id)
    return OkResponse()
