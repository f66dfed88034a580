"""initial chat, contact and message store

Revision ID: 5d1c0a7e9b21
Revises:
Create Date: 2026-10-17 09:12:40.512734

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5d1c0a7e9b21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _record_columns() -> list[sa.Column]:
    return [
        sa.Column("pk_id", PK_TYPE, primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(length=128), nullable=False),
        sa.Column("api_id", sa.String(length=64), nullable=True),
        sa.Column("extra", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _record_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_session_id", table, ["session_id"])
    op.create_index(f"ix_{table}_api_id", table, ["api_id"])


def upgrade() -> None:
    """Create the chat, contact and message tables."""
    op.create_table(
        "chat",
        *_record_columns(),
        sa.Column("id", sa.String(length=256), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("unread_count", sa.Integer(), nullable=True),
        sa.Column("conversation_timestamp", sa.BigInteger(), nullable=True),
        sa.Column("archived", sa.Boolean(), nullable=True),
        sa.UniqueConstraint("session_id", "id", name="uq_chat_session_id"),
    )
    _record_indexes("chat")

    op.create_table(
        "contact",
        *_record_columns(),
        sa.Column("id", sa.String(length=256), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("notify", sa.Text(), nullable=True),
        sa.Column("verified_name", sa.Text(), nullable=True),
        sa.Column("img_url", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=True),
        sa.UniqueConstraint("session_id", "id", name="uq_contact_session_id"),
    )
    _record_indexes("contact")

    op.create_table(
        "message",
        *_record_columns(),
        sa.Column("id", sa.String(length=256), nullable=False),
        sa.Column("remote_jid", sa.String(length=256), nullable=False),
        sa.Column("chat_id", PK_TYPE, nullable=True),
        sa.Column("from_me", sa.Boolean(), nullable=True),
        sa.Column("key", sa.JSON(), nullable=False),
        sa.Column("message", sa.JSON(), nullable=True),
        sa.Column("message_timestamp", sa.BigInteger(), nullable=True),
        sa.Column("participant", sa.String(length=256), nullable=True),
        sa.Column("push_name", sa.Text(), nullable=True),
        sa.Column("user_receipt", sa.JSON(), nullable=True),
        sa.Column("reactions", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["chat_id"], ["chat.pk_id"], ondelete="SET NULL"),
        sa.UniqueConstraint("session_id", "remote_jid", "id", name="uq_message_session_jid_id"),
    )
    _record_indexes("message")
    op.create_index("ix_message_remote_jid", "message", ["remote_jid"])


def downgrade() -> None:
    """Drop the store tables."""
    op.drop_index("ix_message_remote_jid", table_name="message")
    for table in ("message", "contact", "chat"):
        op.drop_index(f"ix_{table}_api_id", table_name=table)
        op.drop_index(f"ix_{table}_session_id", table_name=table)
        op.drop_table(table)
