from __future__ import annotations

from typing import Any, ClassVar, Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from binder_backend.domain.sorting import SortBy, SortDirection
from binder_backend.schemas_binder import (
    Binder,
    CamelModel,
    CardData,
    ConflictDescriptor,
    GridSize,
)
from binder_backend.services.sync_service import CloudSyncStatus


class _PatchModel(CamelModel):
    # Unknown keys are kept and stored as extras.
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class BinderCreateRequest(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    grid_size: GridSize = "3x3"


class BinderMetadataPatchRequest(_PatchModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    tags: list[str] | None = None
    cover_image_url: str | None = None
    is_archived: bool | None = None
    sort_order: int | None = None


class BinderSettingsPatchRequest(_PatchModel):
    grid_size: GridSize | None = None
    page_count: int | None = Field(default=None, ge=1)
    min_pages: int | None = Field(default=None, ge=1)
    max_pages: int | None = Field(default=None, ge=1)
    page_order: list[int] | None = None


class CardPlacementOptions(CamelModel):
    notes: str = ""
    condition: str = "mint"
    quantity: int = Field(default=1, ge=1)
    is_protected: bool = False


class CardAddRequest(CardPlacementOptions):
    card: CardData
    position: int | None = Field(default=None, ge=0)


class CardBatchAddRequest(CardPlacementOptions):
    cards: list[CardData] = Field(min_length=1)
    start_position: int | None = Field(default=None, ge=0)


class CardPatchRequest(CamelModel):
    notes: str | None = None
    condition: str | None = None
    quantity: int | None = Field(default=None, ge=1)
    is_protected: bool | None = None
    card_data: dict[str, Any] | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CardMoveRequest(CamelModel):
    from_position: int
    to_position: int
    mode: Literal["swap", "shift"] = "swap"
    optimistic: bool = False


class MoveItem(CamelModel):
    from_position: int
    to_position: int


class FailedMoveItem(MoveItem):
    error: str


class CardBatchMoveRequest(CamelModel):
    operations: list[MoveItem] = Field(min_length=1)


class CardClearRequest(CamelModel):
    reason: str = "clear_for_replacement"


class CardCompactRequest(CamelModel):
    scope: Literal["binder", "page"] = "binder"
    page_indices: list[int] = Field(default_factory=list)


class BinderSortRequest(CamelModel):
    sort_by: SortBy
    sort_direction: SortDirection = "asc"


class PagesAddRequest(CamelModel):
    count: int = Field(default=1, ge=1)


class PageReorderRequest(CamelModel):
    from_index: int
    to_index: int


class CardPageReorderRequest(CamelModel):
    from_card_page_index: int
    to_card_page_index: int


class CurrentBinderRequest(CamelModel):
    binder_id: str = Field(min_length=1)


class SyncRequest(CamelModel):
    force_overwrite: bool = False
    resolve_conflicts: bool = True


class SyncStatusRequest(CamelModel):
    binder_ids: list[str] = Field(min_length=1, max_length=200)


class BinderListResponse(CamelModel):
    items: list[Binder] = Field(default_factory=list)


class CurrentBinderResponse(CamelModel):
    binder: Binder | None = None


class MutationResponse(CamelModel):
    success: bool
    binder: Binder
    applied: list[MoveItem] = Field(default_factory=list)
    failed: list[FailedMoveItem] = Field(default_factory=list)


class SyncResponse(CamelModel):
    binder: Binder
    resolved_conflict: ConflictDescriptor | None = None


class SyncStatusResponse(CamelModel):
    statuses: dict[str, CloudSyncStatus] = Field(default_factory=dict)
