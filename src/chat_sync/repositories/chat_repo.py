"""Data access helpers for working with chats."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, func, insert, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from chat_sync.db.upsert import insert_if_absent
from chat_sync.models.chat import Chat
from chat_sync.utils.normalize import to_number

__all__ = ["ChatRepository"]

logger = logging.getLogger(__name__)

# Links messages stored before their chat was known. Portable across
# PostgreSQL and SQLite (correlated subquery rather than UPDATE ... FROM).
_FIX_MESSAGE_CHAT_REFS = text(
    """
    UPDATE message
    SET chat_id = (
        SELECT chat.pk_id FROM chat
        WHERE chat.id = message.remote_jid
          AND chat.session_id = message.session_id
    )
    WHERE message.session_id = :session_id
      AND EXISTS (
        SELECT 1 FROM chat
        WHERE chat.id = message.remote_jid
          AND chat.session_id = message.session_id
      )
    """
)


def _unread_count(chat_id: str, value: Any) -> int | None:
    """Coerce an incoming ``unreadCount`` to an int; unusable values are skipped."""
    if value is None:
        return None
    try:
        return int(to_number(value))
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring unreadCount %r for chat %s", value, chat_id)
        return None


class ChatRepository:
    """Thin wrapper around database access for the chats of one session."""

    def __init__(self, session: AsyncSession, session_id: str) -> None:
        """Initialize the repository with an async SQLAlchemy session."""
        self.session = session
        self.session_id = session_id

    async def get(self, chat_id: str, *, for_update: bool = False) -> Chat | None:
        """Return the chat with natural key ``chat_id``."""
        stmt = select(Chat).where(Chat.session_id == self.session_id, Chat.id == chat_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def exists(self, chat_id: str) -> bool:
        count = await self.session.scalar(
            select(func.count())
            .select_from(Chat)
            .where(Chat.session_id == self.session_id, Chat.id == chat_id)
        )
        return bool(count)

    async def list_all(self) -> list[Chat]:
        """Return all chats of the session ordered by insertion."""
        result = await self.session.execute(
            select(Chat).where(Chat.session_id == self.session_id).order_by(Chat.pk_id)
        )
        return list(result.scalars())

    async def existing_ids(self, chat_ids: Iterable[str]) -> set[str]:
        """Return which of ``chat_ids`` are already stored."""
        ids = list(chat_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(Chat.id).where(Chat.session_id == self.session_id, Chat.id.in_(ids))
        )
        return set(result.scalars())

    async def pk_map(self, chat_ids: Iterable[str]) -> dict[str, int]:
        """Resolve natural chat ids to internal keys; unknown ids are absent."""
        ids = list(set(chat_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(Chat.id, Chat.pk_id).where(
                Chat.session_id == self.session_id, Chat.id.in_(ids)
            )
        )
        return {row.id: row.pk_id for row in result}

    async def upsert(self, record: dict[str, Any]) -> Chat:
        """Create the chat or overwrite the fields present in ``record``.

        The insert is checked against the ``(session_id, id)`` constraint, so a
        concurrent upsert of the same chat turns into an update instead of
        failing.
        """
        values = {"session_id": self.session_id, **Chat.split_record(record)}
        inserted = await insert_if_absent(
            self.session, Chat.__table__, values, ["session_id", "id"]
        )
        chat = await self.get(record["id"], for_update=inserted is None)
        if inserted is None:
            chat.apply_record(record)
            await self.session.flush()
        return chat

    async def update(self, record: dict[str, Any]) -> Chat | None:
        """Merge a partial update into the stored chat.

        A positive ``unreadCount`` increments the stored counter, anything else
        sets it. Returns ``None`` when the chat does not exist.
        """
        chat = await self.get(record["id"], for_update=True)
        if chat is None:
            return None

        fields = dict(record)
        unread = _unread_count(record["id"], fields.pop("unreadCount", None))
        chat.apply_record(fields)
        if unread is not None:
            if unread > 0:
                chat.unread_count = func.coalesce(Chat.unread_count, 0) + unread
            else:
                chat.unread_count = unread
        await self.session.flush()
        if unread is not None:
            # The counter was written as a SQL expression; load the stored value.
            await self.session.refresh(chat, ["unread_count"])
        return chat

    async def insert_many(self, records: list[dict[str, Any]]) -> int:
        """Bulk insert ``records`` and return how many rows were written."""
        if not records:
            return 0
        rows = [{"session_id": self.session_id, **Chat.split_record(r)} for r in records]
        await self.session.execute(insert(Chat), rows)
        return len(rows)

    async def delete_all(self) -> int:
        result = await self.session.execute(
            delete(Chat).where(Chat.session_id == self.session_id)
        )
        return result.rowcount or 0

    async def delete_ids(self, chat_ids: Iterable[str]) -> int:
        ids = list(chat_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            delete(Chat).where(Chat.session_id == self.session_id, Chat.id.in_(ids))
        )
        return result.rowcount or 0

    async def fix_message_refs(self) -> int:
        """Point unlinked messages of the session at their chats."""
        result = await self.session.execute(
            _FIX_MESSAGE_CHAT_REFS, {"session_id": self.session_id}
        )
        return result.rowcount or 0
