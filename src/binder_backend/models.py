# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, Text, UniqueConstraint
from sqlalchemy.types import JSON as SAJSON
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    # Opaque bearer token issued out of band.
    api_token: Optional[str] = Field(
        default=None, sa_column=Column(Text, nullable=True, unique=True, index=True)
    )

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class BinderDocument(SQLModel, table=True):
    """One remote binder document, keyed by ``{owner_id}_{binder_id}``.

    With ``cards_storage == "partition"`` the ``cards`` mapping is kept out of
    ``body_json`` and lives in ``binder_cards`` instead.
    """

    __tablename__ = "binder_documents"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    doc_key: str = Field(primary_key=True, min_length=1, max_length=300)
    binder_id: str = Field(index=True, min_length=1, max_length=200)
    owner_id: str = Field(index=True, min_length=1, max_length=200)

    version: int = Field(default=1)
    is_archived: bool = Field(default=False, index=True)
    cards_storage: str = Field(default="embedded", max_length=16)
    binder_created_at: Optional[str] = Field(default=None, max_length=64, index=True)

    body_json: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SAJSON))

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


class BinderCardRow(SQLModel, table=True):
    __tablename__ = "binder_cards"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("doc_key", "position", name="uq_binder_cards_doc_key_position"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    doc_key: str = Field(index=True, foreign_key="binder_documents.doc_key", max_length=300)
    position: int = Field(index=True, ge=0)
    card_json: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SAJSON))

    updated_at: datetime = Field(default_factory=utc_now)
