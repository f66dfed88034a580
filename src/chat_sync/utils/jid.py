# src/chat_sync/utils/jid.py
"""Helpers for protocol addresses (JIDs)."""

from __future__ import annotations

USER_SERVER = "s.whatsapp.net"
LEGACY_USER_SERVER = "c.us"


def normalize_user_jid(jid: str) -> str:
    """Strip the device/agent suffix from ``jid`` and map the legacy user server.

    ``"123:4@s.whatsapp.net"`` becomes ``"123@s.whatsapp.net"`` and
    ``"123@c.us"`` becomes ``"123@s.whatsapp.net"``. Values without a server
    part are returned unchanged.
    """
    if not jid or "@" not in jid:
        return jid
    user, server = jid.split("@", 1)
    user = user.split(":", 1)[0].split("_", 1)[0]
    if server == LEGACY_USER_SERVER:
        server = USER_SERVER
    return f"{user}@{server}"


def jid_user(jid: str) -> str:
    """Return everything before the first ``@`` in ``jid``."""
    return jid.split("@", 1)[0]
