"""Non-blocking notification fan-out.

Sync components hand notifications to a :class:`Notifier`, which queues them
and returns immediately. A background task drains the queue into a
:class:`NotificationSink`; delivery failures are logged and dropped so they
never reach the write path.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from chat_sync.core.errors import NotificationError
from chat_sync.core.settings import settings

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Destination for outbound notifications."""

    async def send(self, session_id: str, event: str, payload: Any) -> None: ...

    async def close(self) -> None: ...


class NullSink:
    """Sink that discards every notification."""

    async def send(self, session_id: str, event: str, payload: Any) -> None:
        logger.debug("Dropping %s notification for session %s", event, session_id)

    async def close(self) -> None:
        pass


class HttpWebhookSink:
    """POSTs each notification as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.webhook_timeout_seconds
        )

    async def send(self, session_id: str, event: str, payload: Any) -> None:
        body = {"sessionId": session_id, "event": event, "data": payload}
        try:
            response = await self._client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook delivery of {event!r} failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


def build_sink() -> NotificationSink:
    """Return the sink configured by ``WEBHOOK_URL``."""
    if settings.webhook_url:
        return HttpWebhookSink(settings.webhook_url)
    return NullSink()


@dataclass(frozen=True)
class Notification:
    event: str
    payload: Any


class Notifier:
    """Queues notifications for one session and delivers them in the background."""

    def __init__(
        self,
        session_id: str,
        sink: NotificationSink | None = None,
        *,
        maxsize: int | None = None,
    ) -> None:
        self.session_id = session_id
        self.sink = sink or build_sink()
        self._queue: asyncio.Queue[Notification] = asyncio.Queue(
            maxsize=settings.webhook_queue_maxsize if maxsize is None else maxsize
        )
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def send(self, event: str, payload: Any) -> None:
        """Schedule ``payload`` for delivery without waiting for it."""
        try:
            self._queue.put_nowait(Notification(event, payload))
        except asyncio.QueueFull:
            logger.warning("Notification queue full, dropping %s for %s", event, self.session_id)

    async def start(self) -> None:
        """Start the background delivery loop."""
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Deliver what is already queued, then stop the delivery loop."""
        if self._task is None:
            return

        await self._queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def aclose(self) -> None:
        """Stop delivery and release the sink; the notifier is not reusable afterwards."""
        await self.stop()
        await self.sink.close()

    async def drain(self) -> None:
        """Wait until every queued notification has been handed to the sink."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            notification = await self._queue.get()
            try:
                await self.sink.send(self.session_id, notification.event, notification.payload)
            except NotificationError as e:
                logger.warning("Notification %s not delivered: %s", notification.event, e)
            except Exception:
                logger.error(
                    "Notification sink failed for %s", notification.event, exc_info=True
                )
            finally:
                self._queue.task_done()
