"""Data access helpers for working with messages."""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, insert, select, tuple_, update
from sqlalchemy.ext.asyncio import AsyncSession

from chat_sync.db.upsert import insert_if_absent
from chat_sync.models.message import Message

__all__ = ["MessageRepository"]


class MessageRepository:
    """Thin wrapper around database access for the messages of one session."""

    def __init__(self, session: AsyncSession, session_id: str) -> None:
        """Initialize the repository with an async SQLAlchemy session."""
        self.session = session
        self.session_id = session_id

    async def get(
        self, remote_jid: str, message_id: str, *, for_update: bool = False
    ) -> Message | None:
        """Return the message stored under ``(remote_jid, message_id)``."""
        stmt = select(Message).where(
            Message.session_id == self.session_id,
            Message.remote_jid == remote_jid,
            Message.id == message_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_for_chat(self, remote_jid: str) -> list[Message]:
        result = await self.session.execute(
            select(Message)
            .where(Message.session_id == self.session_id, Message.remote_jid == remote_jid)
            .order_by(Message.message_timestamp, Message.pk_id)
        )
        return list(result.scalars())

    async def list_all(self) -> list[Message]:
        result = await self.session.execute(
            select(Message).where(Message.session_id == self.session_id).order_by(Message.pk_id)
        )
        return list(result.scalars())

    async def existing_keys(self, keys: Iterable[tuple[str, str]]) -> set[tuple[str, str]]:
        """Return which ``(remote_jid, id)`` pairs are already stored."""
        pairs = list(set(keys))
        if not pairs:
            return set()
        result = await self.session.execute(
            select(Message.remote_jid, Message.id).where(
                Message.session_id == self.session_id,
                tuple_(Message.remote_jid, Message.id).in_(pairs),
            )
        )
        return {(row.remote_jid, row.id) for row in result}

    async def upsert(self, values: dict[str, Any]) -> Message:
        """Create the message or overwrite the fields present in ``values``.

        ``values`` are column values as built by :meth:`Message.row_for`.
        """
        inserted = await insert_if_absent(
            self.session, Message.__table__, values, ["session_id", "remote_jid", "id"]
        )
        message = await self.get(values["remote_jid"], values["id"], for_update=inserted is None)
        if inserted is None:
            record_values = dict(values)
            extra = record_values.pop("extra", None) or {}
            # The existing link is kept when the chat is still unresolved.
            if record_values.get("chat_id") is None:
                record_values.pop("chat_id", None)
            for attr, value in record_values.items():
                setattr(message, attr, value)
            message.extra = {**(message.extra or {}), **extra} or None
        await self.session.flush()
        return message

    async def add(self, values: dict[str, Any]) -> Message:
        message = Message(**values)
        self.session.add(message)
        await self.session.flush()
        return message

    async def insert_many(self, rows: list[dict[str, Any]]) -> int:
        """Bulk insert prepared rows and return how many were written."""
        if not rows:
            return 0
        await self.session.execute(insert(Message), rows)
        return len(rows)

    async def remove(self, message: Message) -> None:
        await self.session.delete(message)
        await self.session.flush()

    async def delete_all(self) -> int:
        result = await self.session.execute(
            delete(Message).where(Message.session_id == self.session_id)
        )
        return result.rowcount or 0

    async def api_ids_for_chat(self, remote_jid: str) -> list[str]:
        result = await self.session.execute(
            select(Message.api_id).where(
                Message.session_id == self.session_id,
                Message.remote_jid == remote_jid,
                Message.api_id.is_not(None),
            )
        )
        return list(result.scalars())

    async def delete_chat(self, remote_jid: str) -> int:
        result = await self.session.execute(
            delete(Message).where(
                Message.session_id == self.session_id, Message.remote_jid == remote_jid
            )
        )
        return result.rowcount or 0

    async def delete_ids(self, remote_jid: str, message_ids: Iterable[str]) -> int:
        ids = list(message_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            delete(Message).where(
                Message.session_id == self.session_id,
                Message.remote_jid == remote_jid,
                Message.id.in_(ids),
            )
        )
        return result.rowcount or 0

    async def link_chat(self, remote_jid: str, chat_pk: int) -> int:
        """Attach unlinked messages of ``remote_jid`` to the chat row ``chat_pk``."""
        result = await self.session.execute(
            update(Message)
            .where(
                Message.session_id == self.session_id,
                Message.remote_jid == remote_jid,
                Message.chat_id.is_(None),
            )
            .values(chat_id=chat_pk)
        )
        return result.rowcount or 0

    async def set_user_receipt(self, message: Message, receipts: list[dict[str, Any]]) -> None:
        message.user_receipt = receipts
        await self.session.flush()

    async def set_reactions(self, message: Message, reactions: list[dict[str, Any]]) -> None:
        message.reactions = reactions
        await self.session.flush()
