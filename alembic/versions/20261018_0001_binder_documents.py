"""users + binder documents + partitioned binder cards

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("username", sa.String(length=64), nullable=False),
            sa.Column("api_token", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ix_users_api_token", "users", ["api_token"], unique=True)
        op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
        op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    if not _table_exists("binder_documents"):
        op.create_table(
            "binder_documents",
            sa.Column("doc_key", sa.String(length=300), primary_key=True, nullable=False),
            sa.Column("binder_id", sa.String(length=200), nullable=False),
            sa.Column("owner_id", sa.String(length=200), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("cards_storage", sa.String(length=16), nullable=False),
            sa.Column("binder_created_at", sa.String(length=64), nullable=True),
            sa.Column("body_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_binder_documents_binder_id", "binder_documents", ["binder_id"], unique=False)
        op.create_index("ix_binder_documents_owner_id", "binder_documents", ["owner_id"], unique=False)
        op.create_index("ix_binder_documents_is_archived", "binder_documents", ["is_archived"], unique=False)
        op.create_index(
            "ix_binder_documents_binder_created_at",
            "binder_documents",
            ["binder_created_at"],
            unique=False,
        )
        op.create_index("ix_binder_documents_created_at", "binder_documents", ["created_at"], unique=False)
        op.create_index("ix_binder_documents_updated_at", "binder_documents", ["updated_at"], unique=False)

    if not _table_exists("binder_cards"):
        op.create_table(
            "binder_cards",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column(
                "doc_key",
                sa.String(length=300),
                sa.ForeignKey("binder_documents.doc_key"),
                nullable=False,
            ),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("card_json", sa.JSON(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("doc_key", "position", name="uq_binder_cards_doc_key_position"),
        )
        op.create_index("ix_binder_cards_doc_key", "binder_cards", ["doc_key"], unique=False)
        op.create_index("ix_binder_cards_position", "binder_cards", ["position"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_binder_cards_position", table_name="binder_cards")
    op.drop_index("ix_binder_cards_doc_key", table_name="binder_cards")
    op.drop_table("binder_cards")

    for name in (
        "ix_binder_documents_updated_at",
        "ix_binder_documents_created_at",
        "ix_binder_documents_binder_created_at",
        "ix_binder_documents_is_archived",
        "ix_binder_documents_owner_id",
        "ix_binder_documents_binder_id",
    ):
        op.drop_index(name, table_name="binder_documents")
    op.drop_table("binder_documents")

    for name in (
        "ix_users_created_at",
        "ix_users_is_active",
        "ix_users_api_token",
        "ix_users_username",
    ):
        op.drop_index(name, table_name="users")
    op.drop_table("users")
