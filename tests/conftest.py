# tests/conftest.py
from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from chat_sync.db.session import (
    SessionFactory,
    build_engine,
    build_session_factory,
    create_tables,
)
from chat_sync.services.chat_sync import ChatSync
from chat_sync.services.contact_sync import ContactSync
from chat_sync.services.event_bus import EventBus
from chat_sync.services.message_sync import MessageSync
from chat_sync.services.notifier import Notifier

SESSION_ID = "session-1"


class RecordingSink:
    """Notification sink that keeps everything it receives."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, Any]] = []
        self.closed = False

    async def send(self, session_id: str, event: str, payload: Any) -> None:
        self.sent.append((session_id, event, payload))

    async def close(self) -> None:
        self.closed = True

    def payloads(self, event: str) -> list[Any]:
        return [payload for _, name, payload in self.sent if name == event]

    def events(self) -> list[str]:
        return [name for _, name, _ in self.sent]


class FakeProtocolClient:
    """Protocol client answering profile picture lookups from a dict."""

    def __init__(
        self,
        pictures: dict[str, str] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self.pictures = pictures or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []

    async def profile_picture_url(self, jid: str, resolution: str = "preview") -> str | None:
        self.calls.append((jid, resolution))
        if jid in self.failing:
            raise RuntimeError("item-not-found")
        return self.pictures.get(jid)


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}", echo=False)
    await create_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> SessionFactory:
    return build_session_factory(engine)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest_asyncio.fixture()
async def notifier(sink: RecordingSink) -> AsyncIterator[Notifier]:
    notifier = Notifier(SESSION_ID, sink)
    await notifier.start()
    try:
        yield notifier
    finally:
        await notifier.stop()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def client() -> FakeProtocolClient:
    return FakeProtocolClient()


@pytest.fixture()
def chat_sync(bus, notifier, session_factory) -> ChatSync:
    return ChatSync(SESSION_ID, bus, notifier, session_factory)


@pytest.fixture()
def contact_sync(bus, notifier, session_factory, client) -> ContactSync:
    return ContactSync(
        SESSION_ID,
        bus,
        notifier,
        session_factory,
        client,
        fill_names=False,
        fetch_pictures=True,
    )


@pytest.fixture()
def message_sync(bus, notifier, session_factory, chat_sync) -> MessageSync:
    return MessageSync(SESSION_ID, bus, notifier, session_factory, chat_sync)


def make_message(
    remote_jid: str,
    message_id: str,
    *,
    from_me: bool = False,
    text: str = "hi",
    timestamp: Any = 1700000000,
    **extra: Any,
) -> dict[str, Any]:
    """Build a raw protocol message."""
    return {
        "key": {"remoteJid": remote_jid, "id": message_id, "fromMe": from_me},
        "message": {"conversation": text},
        "messageTimestamp": timestamp,
        **extra,
    }
