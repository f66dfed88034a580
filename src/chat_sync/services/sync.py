"""Shared plumbing for the per-entity sync components."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from chat_sync.db.session import SessionFactory
from chat_sync.services.event_bus import EventBus, Handler
from chat_sync.services.notifier import Notifier


class SyncComponent:
    """Base class for components that reconcile one entity kind of a session.

    Subclasses return their ``{event name: handler}`` table from
    :meth:`subscriptions`; :meth:`start` and :meth:`stop` attach and detach
    those handlers on the shared bus.
    """

    def __init__(
        self,
        session_id: str,
        bus: EventBus,
        notifier: Notifier,
        session_factory: SessionFactory,
    ) -> None:
        self.session_id = session_id
        self.bus = bus
        self.notifier = notifier
        self.session_factory = session_factory
        self._listening = False

    @property
    def listening(self) -> bool:
        return self._listening

    def subscriptions(self) -> dict[str, Handler]:
        raise NotImplementedError

    def start(self) -> None:
        """Subscribe this component's handlers to the bus."""
        if self._listening:
            return
        for event, handler in self.subscriptions().items():
            self.bus.on(event, handler)
        self._listening = True

    def stop(self) -> None:
        """Unsubscribe this component's handlers from the bus."""
        if not self._listening:
            return
        for event, handler in self.subscriptions().items():
            self.bus.off(event, handler)
        self._listening = False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside one transaction; commits on exit, rolls back on error."""
        async with self.session_factory() as db:
            async with db.begin():
                yield db
