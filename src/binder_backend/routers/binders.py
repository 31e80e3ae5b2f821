# pyright: reportCallInDefaultInitializer=false

from __future__ import annotations

from fastapi import APIRouter, Depends

from binder_backend.deps import get_actor_id, get_binder_service
from binder_backend.domain import card_store
from binder_backend.domain.card_store import MoveOperation, StoreResult
from binder_backend.schemas_api import (
    BinderCreateRequest,
    BinderListResponse,
    BinderMetadataPatchRequest,
    BinderSettingsPatchRequest,
    BinderSortRequest,
    CardAddRequest,
    CardBatchAddRequest,
    CardBatchMoveRequest,
    CardClearRequest,
    CardCompactRequest,
    CardMoveRequest,
    CardPageReorderRequest,
    CardPatchRequest,
    CurrentBinderRequest,
    CurrentBinderResponse,
    FailedMoveItem,
    MoveItem,
    MutationResponse,
    PageReorderRequest,
    PagesAddRequest,
    SyncRequest,
    SyncResponse,
)
from binder_backend.schemas_binder import Binder, BinderCollectionExport
from binder_backend.schemas_common import OkResponse
from binder_backend.services.binder_service import BinderService

router = APIRouter(prefix="/binders", tags=["binders"])


def _mutation(result: StoreResult) -> MutationResponse:
    return MutationResponse(
        success=result.success,
        binder=result.binder,
        applied=[
            MoveItem(from_position=op.from_position, to_position=op.to_position)
            for op in result.applied
        ],
        failed=[
            FailedMoveItem(from_position=f.from_position, to_position=f.to_position, error=f.error)
            for f in result.failed
        ],
    )


@router.get("", response_model=BinderListResponse)
async def list_binders(
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return BinderListResponse(items=service.list_binders(actor_id))


@router.post("", response_model=Binder, status_code=201)
async def create_binder(
    payload: BinderCreateRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return await service.create_binder(
        actor_id, name=payload.name, description=payload.description, grid_size=payload.grid_size
    )


@router.get("/current", response_model=CurrentBinderResponse)
async def get_current_binder(
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return CurrentBinderResponse(binder=service.get_current_binder(actor_id))


@router.put("/current", response_model=CurrentBinderResponse)
async def set_current_binder(
    payload: CurrentBinderRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    binder = await service.set_current_binder(payload.binder_id, actor_id)
    return CurrentBinderResponse(binder=binder)


@router.get("/export", response_model=BinderCollectionExport)
async def export_binders(
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return service.export_collection(actor_id)


@router.post("/import", response_model=BinderListResponse)
async def import_binders(
    payload: BinderCollectionExport,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return BinderListResponse(items=await service.import_collection(actor_id, payload))


@router.get("/{binder_id}", response_model=Binder)
async def get_binder(
    binder_id: str,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    return service.get_binder(binder_id, actor_id)


@router.patch("/{binder_id}", response_model=MutationResponse)
async def patch_binder_metadata(
    binder_id: str,
    payload: BinderMetadataPatchRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    changes = payload.changes()
    result = await service.mutate(
        binder_id, actor_id, lambda b: card_store.update_metadata(b, changes, actor=actor_id)
    )
    return _mutation(result)


@router.delete("/{binder_id}", response_model=OkResponse)
async def delete_binder(
    binder_id: str,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    await service.delete_binder(binder_id, actor_id)
    return OkResponse()


@router.post("/{binder_id}/cards", response_model=MutationResponse)
async def add_card(
    binder_id: str,
    payload: CardAddRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.add_card(
            b,
            payload.card,
            payload.position,
            actor=actor_id,
            notes=payload.notes,
            condition=payload.condition,
            quantity=payload.quantity,
            is_protected=payload.is_protected,
        ),
    )
    return _mutation(result)


@router.post("/{binder_id}/cards/batch", response_model=MutationResponse)
async def batch_add_cards(
    binder_id: str,
    payload: CardBatchAddRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.batch_add_cards(
            b,
            payload.cards,
            payload.start_position,
            actor=actor_id,
            notes=payload.notes,
            condition=payload.condition,
            quantity=payload.quantity,
            is_protected=payload.is_protected,
        ),
    )
    return _mutation(result)


@router.post("/{binder_id}/cards/move", response_model=MutationResponse)
async def move_card(
    binder_id: str,
    payload: CardMoveRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.move_card(
            b,
            payload.from_position,
            payload.to_position,
            mode=payload.mode,
            optimistic=payload.optimistic,
            actor=actor_id,
        ),
    )
    return _mutation(result)


@router.post("/{binder_id}/cards/batch-move", response_model=MutationResponse)
async def batch_move_cards(
    binder_id: str,
    payload: CardBatchMoveRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    operations = [MoveOperation(op.from_position, op.to_position) for op in payload.operations]
    result = await service.mutate(
        binder_id, actor_id, lambda b: card_store.batch_move_cards(b, operations, actor=actor_id)
    )
    return _mutation(result)


@router.post("/{binder_id}/cards/clear", response_model=MutationResponse)
async def clear_cards(
    binder_id: str,
    payload: CardClearRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.clear_cards(b, reason=payload.reason, actor=actor_id),
    )
    return _mutation(result)


@router.post("/{binder_id}/cards/compact", response_model=MutationResponse)
async def compact_cards(
    binder_id: str,
    payload: CardCompactRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.compact_cards(
            b, payload.scope, payload.page_indices, actor=actor_id
        ),
    )
    return _mutation(result)


@router.post("/{binder_id}/sort", response_model=MutationResponse)
async def sort_binder(
    binder_id: str,
    payload: BinderSortRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.sort_binder(
            b, payload.sort_by, payload.sort_direction, actor=actor_id
        ),
    )
    return _mutation(result)


@router.patch("/{binder_id}/cards/{position}", response_model=MutationResponse)
async def patch_card(
    binder_id: str,
    position: int,
    payload: CardPatchRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    updates = payload.changes()
    result = await service.mutate(
        binder_id, actor_id, lambda b: card_store.update_card(b, position, updates, actor=actor_id)
    )
    return _mutation(result)


@router.delete("/{binder_id}/cards/{position}", response_model=MutationResponse)
async def remove_card(
    binder_id: str,
    position: int,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id, actor_id, lambda b: card_store.remove_card(b, position, actor=actor_id)
    )
    return _mutation(result)


@router.post("/{binder_id}/pages", response_model=MutationResponse)
async def add_pages(
    binder_id: str,
    payload: PagesAddRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.batch_add_pages(b, payload.count, actor=actor_id),
    )
    return _mutation(result)


@router.delete("/{binder_id}/pages/last", response_model=MutationResponse)
async def remove_last_page(
    binder_id: str,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id, actor_id, lambda b: card_store.remove_page(b, actor=actor_id)
    )
    return _mutation(result)


@router.post("/{binder_id}/pages/reorder", response_model=MutationResponse)
async def reorder_pages(
    binder_id: str,
    payload: PageReorderRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.reorder_pages(b, payload.from_index, payload.to_index, actor=actor_id),
    )
    return _mutation(result)


@router.post("/{binder_id}/card-pages/reorder", response_model=MutationResponse)
async def reorder_card_pages(
    binder_id: str,
    payload: CardPageReorderRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id,
        actor_id,
        lambda b: card_store.reorder_card_pages(
            b, payload.from_card_page_index, payload.to_card_page_index, actor=actor_id
        ),
    )
    return _mutation(result)


@router.patch("/{binder_id}/settings", response_model=MutationResponse)
async def patch_settings(
    binder_id: str,
    payload: BinderSettingsPatchRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    changes = payload.changes()
    result = await service.mutate(
        binder_id, actor_id, lambda b: card_store.update_settings(b, changes, actor=actor_id)
    )
    return _mutation(result)


@router.post("/{binder_id}/claim", response_model=MutationResponse)
async def claim_binder(
    binder_id: str,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.mutate(
        binder_id, actor_id, lambda b: card_store.claim_ownership(b, actor_id)
    )
    return _mutation(result)


@router.post("/{binder_id}/sync", response_model=SyncResponse)
async def sync_binder(
    binder_id: str,
    payload: SyncRequest,
    actor_id: str = Depends(get_actor_id),
    service: BinderService = Depends(get_binder_service),
):
    result = await service.save_to_cloud(
        binder_id,
        actor_id,
        force_overwrite=payload.force_overwrite,
        resolve_conflicts=payload.resolve_conflicts,
    )
    return SyncResponse(binder=result.binder, resolved_conflict=result.resolved_conflict)
