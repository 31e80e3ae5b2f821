from __future__ import annotations

from collections.abc import Iterable
from typing import cast

from sqlalchemy import delete as sa_delete
from sqlalchemy.ext.asyncio import AsyncSession as SAAsyncSession
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from binder_backend.models import BinderCardRow, BinderDocument


async def get_document(session: AsyncSession, *, doc_key: str) -> BinderDocument | None:
    return (
        await session.exec(select(BinderDocument).where(BinderDocument.doc_key == doc_key))
    ).first()


async def list_documents(
    session: AsyncSession, *, owner_id: str, include_archived: bool
) -> list[BinderDocument]:
    stmt = select(BinderDocument).where(BinderDocument.owner_id == owner_id)
    if not include_archived:
        stmt = stmt.where(col(BinderDocument.is_archived).is_(False))
    stmt = stmt.order_by(col(BinderDocument.binder_created_at).desc())
    return list((await session.exec(stmt)).all())


async def list_card_rows(session: AsyncSession, *, doc_key: str) -> list[BinderCardRow]:
    stmt = (
        select(BinderCardRow)
        .where(BinderCardRow.doc_key == doc_key)
        .order_by(col(BinderCardRow.position))
    )
    return list((await session.exec(stmt)).all())


async def delete_card_rows(
    session: AsyncSession, *, doc_key: str, positions: Iterable[int] | None = None
) -> None:
    stmt = sa_delete(BinderCardRow).where(col(BinderCardRow.doc_key) == doc_key)
    if positions is not None:
        stmt = stmt.where(col(BinderCardRow.position).in_(list(positions)))
    _ = await cast(SAAsyncSession, session).execute(stmt)
