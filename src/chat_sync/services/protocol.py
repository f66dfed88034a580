"""Interface of the messaging-protocol client consumed by the store."""

from __future__ import annotations

from typing import Protocol


class ProtocolClient(Protocol):
    """The calls the sync components make back into the protocol client."""

    async def profile_picture_url(self, jid: str, resolution: str = "preview") -> str | None:
        """Return the profile picture URL of ``jid`` or ``None`` when there is none."""
        ...
