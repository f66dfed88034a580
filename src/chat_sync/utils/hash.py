# src/chat_sync/utils/hash.py
"""Session-scoped external identifiers for stored entities."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from typing import Any

API_ID_HEX_LENGTH = 64


def api_id(session_id: str, natural_id: str) -> str:
    """Return the external identifier for ``natural_id`` within ``session_id``.

    The value is the SHA-256 hex digest of the two strings concatenated, so it
    is stable for the entity's lifetime and cannot be reversed into the
    protocol identifier.
    """
    return hashlib.sha256((session_id + natural_id).encode("utf-8")).hexdigest()


def api_ids(session_id: str, natural_ids: Iterable[str]) -> list[str]:
    """Hash every identifier in ``natural_ids`` for ``session_id``."""
    return [api_id(session_id, natural_id) for natural_id in natural_ids]


def with_api_id(session_id: str, record: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``record`` carrying ``apiId`` when it has an ``id``.

    Records without an ``id`` are returned unchanged.
    """
    natural_id = record.get("id")
    if not natural_id:
        return dict(record)
    return {**record, "apiId": api_id(session_id, str(natural_id))}
