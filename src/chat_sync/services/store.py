"""Per-session store wiring the sync components to one event bus."""

from __future__ import annotations

import logging
from types import TracebackType

from chat_sync.core.logging import configure_logging
from chat_sync.db.session import SessionFactory, SessionLocal
from chat_sync.services.chat_sync import ChatSync
from chat_sync.services.contact_sync import ContactSync
from chat_sync.services.event_bus import EventBus
from chat_sync.services.message_sync import MessageSync
from chat_sync.services.notifier import Notifier
from chat_sync.services.protocol import ProtocolClient

logger = logging.getLogger(__name__)

_session_factory: SessionFactory | None = None


def init_store(session_factory: SessionFactory | None = None) -> SessionFactory:
    """Configure logging and install the session factory used by stores created afterwards."""
    global _session_factory
    configure_logging()
    _session_factory = session_factory or SessionLocal
    return _session_factory


def current_session_factory() -> SessionFactory:
    return _session_factory or SessionLocal


class Store:
    """Persists the chats, contacts and messages of one protocol session.

    Usage::

        async with Store("session-1", bus, client) as store:
            ...  # events emitted on ``bus`` are now persisted

    ``open`` starts notification delivery; handlers are attached on
    construction unless ``listen=False``.
    """

    def __init__(
        self,
        session_id: str,
        bus: EventBus,
        client: ProtocolClient | None = None,
        *,
        notifier: Notifier | None = None,
        session_factory: SessionFactory | None = None,
        listen: bool = True,
    ) -> None:
        self.session_id = session_id
        self.bus = bus
        self.notifier = notifier or Notifier(session_id)
        factory = session_factory or current_session_factory()

        self.chats = ChatSync(session_id, bus, self.notifier, factory)
        self.contacts = ContactSync(session_id, bus, self.notifier, factory, client)
        self.messages = MessageSync(session_id, bus, self.notifier, factory, self.chats)
        self._components = (self.chats, self.contacts, self.messages)

        if listen:
            self.listen()

    @property
    def listening(self) -> bool:
        return all(component.listening for component in self._components)

    def listen(self) -> None:
        """Attach every component's handlers to the bus."""
        for component in self._components:
            component.start()
        logger.info("Store for %s listening", self.session_id)

    def unlisten(self) -> None:
        """Detach every component's handlers from the bus."""
        for component in self._components:
            component.stop()
        logger.info("Store for %s stopped listening", self.session_id)

    async def open(self) -> Store:
        await self.notifier.start()
        return self

    async def close(self) -> None:
        """Detach from the bus, flush pending notifications and close the sink."""
        self.unlisten()
        await self.notifier.aclose()

    async def __aenter__(self) -> Store:
        return await self.open()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
