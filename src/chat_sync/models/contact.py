# src/chat_sync/models/contact.py
"""SQLAlchemy model for contacts of a session."""

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chat_sync.db.session import Base
from chat_sync.models.mixins import ProtocolRecordMixin


class Contact(ProtocolRecordMixin, Base):
    """Address-book entry; ``name``, ``notify`` and ``img_url`` fill in over time."""

    __tablename__ = "contact"
    __table_args__ = (UniqueConstraint("session_id", "id", name="uq_contact_session_id"),)

    record_fields = {
        "id": "id",
        "apiId": "api_id",
        "name": "name",
        "notify": "notify",
        "verifiedName": "verified_name",
        "imgUrl": "img_url",
        "status": "status",
    }

    id: Mapped[str] = mapped_column(String(256), nullable=False)
    # Saved address-book name, usually from history sync.
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Push name chosen by the contact.
    notify: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    img_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(Text, nullable=True)
