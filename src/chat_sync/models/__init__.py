# src/chat_sync/models/__init__.py
"""SQLAlchemy models for the chat sync store."""

from .chat import Chat
from .contact import Contact
from .message import Message

__all__ = [
    "Chat",
    "Contact",
    "Message",
]
