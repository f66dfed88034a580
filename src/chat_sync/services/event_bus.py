"""In-process publish/subscribe registry keyed by event name."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    """Routes protocol events to the handlers subscribed to their name.

    Handlers subscribed to the same event run concurrently on ``emit``; an
    exception in one handler is logged and does not affect the others or the
    caller.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> None:
        """Subscribe ``handler`` to ``event``; subscribing twice is a no-op."""
        handlers = self._handlers[event]
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: Handler) -> None:
        """Unsubscribe ``handler`` from ``event`` if it is subscribed."""
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event]

    def handlers(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, ()))

    async def emit(self, event: str, payload: Any) -> None:
        """Deliver ``payload`` to every handler of ``event`` and wait for them."""
        handlers = self.handlers(event)
        if not handlers:
            logger.debug("No handlers for %s", event)
            return

        results = await asyncio.gather(
            *(handler(payload) for handler in handlers),
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %r failed for %s",
                    getattr(handler, "__qualname__", handler),
                    event,
                    exc_info=result,
                )
