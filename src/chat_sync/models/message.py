# src/chat_sync/models/message.py
"""SQLAlchemy model for messages of a session."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chat_sync.db.session import Base
from chat_sync.models.mixins import ProtocolRecordMixin


class Message(ProtocolRecordMixin, Base):
    """A protocol message with its receipts and reactions embedded.

    ``remote_jid`` and ``id`` are copied out of the message key so the natural
    key ``(session_id, remote_jid, id)`` can be constrained. ``chat_id`` points
    at ``chat.pk_id`` and stays NULL while the chat is unknown.
    """

    __tablename__ = "message"
    __table_args__ = (
        UniqueConstraint("session_id", "remote_jid", "id", name="uq_message_session_jid_id"),
    )

    record_fields = {
        "apiId": "api_id",
        "key": "key",
        "message": "message",
        "messageTimestamp": "message_timestamp",
        "participant": "participant",
        "pushName": "push_name",
        "userReceipt": "user_receipt",
        "reactions": "reactions",
    }

    id: Mapped[str] = mapped_column(String(256), nullable=False)
    remote_jid: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    chat_id: Mapped[int | None] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("chat.pk_id", ondelete="SET NULL"),
        nullable=True,
    )
    from_me: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    key: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    message: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    message_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    participant: Mapped[str | None] = mapped_column(String(256), nullable=True)
    push_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # One entry per userJid, in arrival order.
    user_receipt: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    # One entry per reacting author.
    reactions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    @classmethod
    def row_for(
        cls,
        session_id: str,
        record: dict[str, Any],
        *,
        remote_jid: str,
        chat_id: int | None,
    ) -> dict[str, Any]:
        """Return insert values for ``record`` keyed under ``remote_jid``."""
        key = record.get("key") or {}
        values = cls.split_record(record)
        values.update(
            session_id=session_id,
            id=key["id"],
            remote_jid=remote_jid,
            from_me=key.get("fromMe"),
            chat_id=chat_id,
        )
        return values
