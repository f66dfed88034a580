# src/chat_sync/models/chat.py
"""SQLAlchemy model for chats (dialogs) of a session."""

from sqlalchemy import BigInteger, Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chat_sync.db.session import Base
from chat_sync.models.mixins import ProtocolRecordMixin


class Chat(ProtocolRecordMixin, Base):
    """One conversation as reported by the protocol client.

    The natural key is ``(session_id, id)`` where ``id`` is the chat JID.
    """

    __tablename__ = "chat"
    __table_args__ = (UniqueConstraint("session_id", "id", name="uq_chat_session_id"),)

    record_fields = {
        "id": "id",
        "apiId": "api_id",
        "name": "name",
        "unreadCount": "unread_count",
        "conversationTimestamp": "conversation_timestamp",
        "archived": "archived",
    }

    id: Mapped[str] = mapped_column(String(256), nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    unread_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    conversation_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    archived: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
