"""Event names and typed payloads emitted by the protocol client.

The protocol client publishes loosely shaped mappings. Each handler parses
its payload into one of the frozen dataclasses below before touching the
store, so unexpected shapes are rejected at the boundary.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chat_sync.core.errors import UnknownEventError

Record = dict[str, Any]

HISTORY_SET = "messaging-history.set"
CHATS_UPSERT = "chats.upsert"
CHATS_UPDATE = "chats.update"
CHATS_DELETE = "chats.delete"
CONTACTS_UPSERT = "contacts.upsert"
CONTACTS_UPDATE = "contacts.update"
CREDS_UPDATE = "creds.update"
MESSAGES_UPSERT = "messages.upsert"
MESSAGES_UPDATE = "messages.update"
MESSAGES_DELETE = "messages.delete"
MESSAGE_RECEIPT_UPDATE = "message-receipt.update"
MESSAGES_REACTION = "messages.reaction"

# Outbound notification names.
NEW_DIALOG = "new dialog"
UPDATE_DIALOG = "update dialog"
DELETE_DIALOGS = "delete dialogs"
NEW_MESSAGE = "new message"
UPDATE_MESSAGES = "update messages"
DELETE_MESSAGES = "delete messages"
HISTORY_SYNC = "history sync"


class UpsertType(str, Enum):
    """Sub-kinds of a message upsert that the store acts on."""

    APPEND = "append"
    NOTIFY = "notify"


@dataclass(frozen=True)
class HistorySet:
    chats: list[Record] = field(default_factory=list)
    contacts: list[Record] = field(default_factory=list)
    messages: list[Record] = field(default_factory=list)
    is_latest: bool = False


@dataclass(frozen=True)
class CredsUpdate:
    me: Record | None = None


@dataclass(frozen=True)
class MessagesUpsert:
    messages: list[Record]
    type: UpsertType


@dataclass(frozen=True)
class MessageUpdate:
    key: Record
    update: Record


@dataclass(frozen=True)
class DeleteAllInChat:
    jid: str


@dataclass(frozen=True)
class DeleteKeys:
    keys: list[Record]


MessagesDelete = DeleteAllInChat | DeleteKeys


@dataclass(frozen=True)
class ReceiptUpdate:
    key: Record
    receipt: Record


@dataclass(frozen=True)
class ReactionUpdate:
    key: Record
    reaction: Record


def _mapping(payload: Any, event: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise UnknownEventError(f"{event}: expected a mapping, got {type(payload).__name__}")
    return payload


def _records(payload: Any, event: str) -> list[Record]:
    if payload is None:
        return []
    if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
        raise UnknownEventError(f"{event}: expected a list, got {type(payload).__name__}")
    items = []
    for item in payload:
        items.append(dict(_mapping(item, event)))
    return items


def parse_history_set(payload: Any) -> HistorySet:
    data = _mapping(payload, HISTORY_SET)
    return HistorySet(
        chats=_records(data.get("chats"), HISTORY_SET),
        contacts=_records(data.get("contacts"), HISTORY_SET),
        messages=_records(data.get("messages"), HISTORY_SET),
        is_latest=bool(data.get("isLatest")),
    )


def parse_records(event: str, payload: Any) -> list[Record]:
    """Parse the plain record batches of upsert/update events."""
    return _records(payload, event)


def parse_ids(event: str, payload: Any) -> list[str]:
    if isinstance(payload, str) or not isinstance(payload, Sequence):
        raise UnknownEventError(f"{event}: expected a list of ids")
    return [str(item) for item in payload]


def parse_creds_update(payload: Any) -> CredsUpdate:
    data = _mapping(payload, CREDS_UPDATE)
    me = data.get("me")
    return CredsUpdate(me=dict(me) if isinstance(me, Mapping) else None)


def parse_messages_upsert(payload: Any) -> MessagesUpsert:
    data = _mapping(payload, MESSAGES_UPSERT)
    raw_type = data.get("type")
    try:
        upsert_type = UpsertType(raw_type)
    except ValueError as err:
        raise UnknownEventError(f"{MESSAGES_UPSERT}: unsupported type {raw_type!r}") from err
    return MessagesUpsert(messages=_records(data.get("messages"), MESSAGES_UPSERT), type=upsert_type)


def parse_message_updates(payload: Any) -> list[MessageUpdate]:
    return [
        MessageUpdate(key=dict(item.get("key") or {}), update=dict(item.get("update") or {}))
        for item in _records(payload, MESSAGES_UPDATE)
    ]


def parse_messages_delete(payload: Any) -> MessagesDelete:
    data = _mapping(payload, MESSAGES_DELETE)
    if data.get("all"):
        jid = data.get("jid")
        if not jid:
            raise UnknownEventError(f"{MESSAGES_DELETE}: 'all' without a jid")
        return DeleteAllInChat(jid=str(jid))
    if "keys" in data:
        return DeleteKeys(keys=_records(data["keys"], MESSAGES_DELETE))
    raise UnknownEventError(f"{MESSAGES_DELETE}: expected 'all' or 'keys'")


def parse_receipt_updates(payload: Any) -> list[ReceiptUpdate]:
    return [
        ReceiptUpdate(key=dict(item.get("key") or {}), receipt=dict(item.get("receipt") or {}))
        for item in _records(payload, MESSAGE_RECEIPT_UPDATE)
    ]


def parse_reaction_updates(payload: Any) -> list[ReactionUpdate]:
    return [
        ReactionUpdate(key=dict(item.get("key") or {}), reaction=dict(item.get("reaction") or {}))
        for item in _records(payload, MESSAGES_REACTION)
    ]
