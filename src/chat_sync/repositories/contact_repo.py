"""Data access helpers for working with contacts."""
from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chat_sync.db.upsert import insert_if_absent
from chat_sync.models.contact import Contact

__all__ = ["ContactRepository"]


class ContactRepository:
    """Thin wrapper around database access for the contacts of one session."""

    def __init__(self, session: AsyncSession, session_id: str) -> None:
        """Initialize the repository with an async SQLAlchemy session."""
        self.session = session
        self.session_id = session_id

    async def get(self, contact_id: str) -> Contact | None:
        result = await self.session.execute(
            select(Contact).where(
                Contact.session_id == self.session_id, Contact.id == contact_id
            )
        )
        return result.scalars().first()

    async def list_all(self) -> list[Contact]:
        """Return all contacts of the session ordered by insertion."""
        result = await self.session.execute(
            select(Contact)
            .where(Contact.session_id == self.session_id)
            .order_by(Contact.pk_id)
        )
        return list(result.scalars())

    async def upsert(self, record: dict[str, Any]) -> Contact:
        """Create the contact or overwrite the fields present in ``record``."""
        values = {"session_id": self.session_id, **Contact.split_record(record)}
        inserted = await insert_if_absent(
            self.session, Contact.__table__, values, ["session_id", "id"]
        )
        contact = await self.get(record["id"])
        if inserted is None:
            contact.apply_record(record)
            await self.session.flush()
        return contact

    async def update(self, record: dict[str, Any]) -> Contact | None:
        """Merge a partial update; returns ``None`` when the contact is unknown."""
        contact = await self.get(record["id"])
        if contact is None:
            return None
        contact.apply_record(record)
        await self.session.flush()
        return contact

    async def ids_without_image(self) -> list[str]:
        result = await self.session.execute(
            select(Contact.id)
            .where(Contact.session_id == self.session_id, Contact.img_url.is_(None))
            .order_by(Contact.pk_id)
        )
        return list(result.scalars())

    async def unnamed(self) -> list[Contact]:
        result = await self.session.execute(
            select(Contact).where(
                Contact.session_id == self.session_id, Contact.name.is_(None)
            )
        )
        return list(result.scalars())

    async def set_fields(self, contact_id: str, **values: Any) -> int:
        """Set plain column values on one contact and return the affected row count."""
        result = await self.session.execute(
            update(Contact)
            .where(Contact.session_id == self.session_id, Contact.id == contact_id)
            .values(**values)
        )
        return result.rowcount or 0
