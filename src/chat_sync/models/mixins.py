"""Shared column sets and record mapping for protocol-backed entities."""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from chat_sync.db.time import utcnow


class ProtocolRecordMixin:
    """Columns and helpers common to chats, contacts and messages.

    Protocol records are camelCase mappings. Keys listed in ``record_fields``
    map onto real columns; every other key is kept in the ``extra`` JSON column
    so nothing the protocol sends is lost.
    """

    record_fields: ClassVar[dict[str, str]] = {}

    pk_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    api_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    @classmethod
    def split_record(cls, record: dict[str, Any]) -> dict[str, Any]:
        """Return column values for ``record`` with unmapped keys folded into ``extra``."""
        values: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in record.items():
            attr = cls.record_fields.get(key)
            if attr:
                values[attr] = value
            else:
                extra[key] = value
        values["extra"] = extra or None
        return values

    def apply_record(self, record: dict[str, Any]) -> None:
        """Overwrite the fields present in ``record``, leaving the rest untouched."""
        extra = dict(self.extra or {})
        for key, value in record.items():
            attr = self.record_fields.get(key)
            if attr:
                setattr(self, attr, value)
            else:
                extra[key] = value
        # JSON columns are only flushed on reassignment.
        self.extra = extra or None

    def to_record(self) -> dict[str, Any]:
        """Rebuild the protocol-shaped record, without storage-local keys."""
        record = dict(self.extra or {})
        for key, attr in self.record_fields.items():
            value = getattr(self, attr)
            if value is not None:
                record[key] = value
        return record

