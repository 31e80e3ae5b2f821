from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


LOCAL_USER = "local_user"
SCHEMA_VERSION = "2.0"

SyncStatus = Literal["local", "synced", "pending", "conflict", "error"]
GridSize = Literal["1x1", "2x2", "3x3", "4x3", "4x4"]
CardsStorage = Literal["embedded", "partition"]
ConflictType = Literal["version_newer_remote", "timestamp_newer_remote", "content_different"]
ChangeType = Literal[
    "binder_created",
    "binder_migrated",
    "card_added",
    "card_removed",
    "card_updated",
    "card_moved",
    "cards_batch_added",
    "cards_batch_cleared",
    "batch_move_cards",
    "settings_updated",
    "metadata_updated",
    "page_added",
    "pages_batch_added",
    "page_removed",
    "pages_reordered",
    "card_pages_reordered",
    "ownership_claimed",
    "binder_sorted",
    "cards_compacted",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    # Legacy documents carry naive ISO strings; treat them as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class CamelModel(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class CardSet(CamelModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str | None = None
    name: str | None = None
    series: str | None = None


class CardData(CamelModel):
    """Catalog fields captured when the card was placed."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    id: str | None = None
    name: str | None = None
    image: str | None = None
    image_small: str | None = None
    set: CardSet = Field(default_factory=CardSet)
    number: str | None = None
    artist: str | None = None
    rarity: str | None = None
    types: list[str] | None = None
    reverse_holo: bool = False


class CardInstance(CamelModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    instance_id: str = Field(min_length=1)
    card_id: str = Field(min_length=1)
    card_data: CardData | None = None
    added_at: UtcDatetime = Field(default_factory=utc_now)
    added_by: str = LOCAL_USER
    notes: str = ""
    condition: str = "mint"
    quantity: int = Field(default=1, ge=1)
    is_protected: bool = False


class ChangeRecord(CamelModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str = Field(min_length=1)
    timestamp: UtcDatetime
    type: ChangeType
    user_id: str = LOCAL_USER
    data: dict[str, Any] = Field(default_factory=dict)


class ConflictDescriptor(CamelModel):
    has_conflict: bool = False
    type: ConflictType | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class SyncState(CamelModel):
    status: SyncStatus = "local"
    last_synced: UtcDatetime | None = None
    # Remote document version this binder last matched.
    synced_version: int | None = None
    pending_changes: list[ChangeRecord] = Field(default_factory=list)
    conflict_data: ConflictDescriptor | None = None
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None


class Permissions(CamelModel):
    public: bool = False
    collaborators: list[str] = Field(default_factory=list)
    share_code: str | None = None


class BinderMetadata(CamelModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    name: str = "Untitled Binder"
    description: str = ""
    created_at: UtcDatetime = Field(default_factory=utc_now)
    tags: list[str] = Field(default_factory=list)
    cover_image_url: str | None = None
    is_archived: bool = False
    sort_order: int = 0


class BinderSettings(CamelModel):
    # UI-only settings (theme, sortBy, ...) ride along as extras.
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    grid_size: GridSize = "3x3"
    page_count: int = Field(default=1, ge=1)
    min_pages: int = Field(default=1, ge=1)
    max_pages: int = Field(default=100, ge=1)
    page_order: list[int] | None = None


class Binder(CamelModel):
    id: str = Field(min_length=1)
    schema_version: str = SCHEMA_VERSION
    owner_id: str = LOCAL_USER
    permissions: Permissions = Field(default_factory=Permissions)

    version: int = Field(default=1, ge=1)
    last_modified: UtcDatetime = Field(default_factory=utc_now)
    last_modified_by: str = LOCAL_USER

    sync: SyncState = Field(default_factory=SyncState)
    metadata: BinderMetadata = Field(default_factory=BinderMetadata)
    settings: BinderSettings = Field(default_factory=BinderSettings)

    # Sparse position map; keys are decimal strings of non-negative integers.
    cards: dict[str, CardInstance] = Field(default_factory=dict)
    changelog: list[ChangeRecord] = Field(default_factory=list)

    cards_storage: CardsStorage = "embedded"

    @field_validator("cards", mode="after")
    @classmethod
    def _validate_positions(cls, value: dict[str, CardInstance]) -> dict[str, CardInstance]:
        out: dict[str, CardInstance] = {}
        for key, card in value.items():
            try:
                position = int(str(key).strip())
            except ValueError:
                raise ValueError(f"card position must be an integer: {key!r}") from None
            if position < 0:
                raise ValueError(f"card position must be >= 0: {key!r}")
            norm = str(position)
            if norm in out:
                raise ValueError(f"duplicate card position: {norm}")
            out[norm] = card
        return out


def binder_to_document(binder: Binder) -> dict[str, Any]:
    return binder.model_dump(mode="json", by_alias=True)


def binder_from_document(doc: dict[str, Any]) -> Binder:
    return Binder.model_validate(doc)


def card_positions(binder: Binder) -> list[int]:
    return sorted(int(k) for k in binder.cards)


class BinderCollectionExport(CamelModel):
    """Snapshot of a user's local binders, as written by export and read by import."""

    binders: list[dict[str, Any]] = Field(default_factory=list)
    current_binder_id: str | None = None
    exported_at: UtcDatetime = Field(default_factory=utc_now)
    version: str = "1.0"
