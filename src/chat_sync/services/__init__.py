# src/chat_sync/services/__init__.py
"""Sync components and the session store built from them."""

from .chat_sync import ChatSync
from .contact_sync import ContactSync
from .event_bus import EventBus
from .message_sync import MessageSync
from .notifier import HttpWebhookSink, Notifier, NullSink
from .store import Store, init_store

__all__ = [
    "ChatSync",
    "ContactSync",
    "EventBus",
    "HttpWebhookSink",
    "MessageSync",
    "Notifier",
    "NullSink",
    "Store",
    "init_store",
]
