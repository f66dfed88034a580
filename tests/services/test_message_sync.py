"""Tests for message reconciliation."""

from __future__ import annotations

import asyncio
import logging

import pytest

from chat_sync.core.errors import MalformedPayloadError
from chat_sync.repositories.chat_repo import ChatRepository
from chat_sync.repositories.message_repo import MessageRepository
from chat_sync.services.events import (
    DELETE_MESSAGES,
    HISTORY_SYNC,
    NEW_DIALOG,
    NEW_MESSAGE,
    UPDATE_MESSAGES,
)
from chat_sync.services.message_sync import (
    merge_reaction,
    merge_receipt,
    message_key,
    reaction_author,
)
from chat_sync.utils.hash import api_id, api_ids

from conftest import SESSION_ID, make_message

ALICE = "5511@s.whatsapp.net"
BOB = "5522@s.whatsapp.net"
GROUP = "1203@g.us"


async def stored_messages(session_factory, remote_jid=None):
    async with session_factory() as db:
        repo = MessageRepository(db, SESSION_ID)
        if remote_jid is None:
            return await repo.list_all()
        return await repo.list_for_chat(remote_jid)


async def stored_chat(session_factory, chat_id):
    async with session_factory() as db:
        return await ChatRepository(db, SESSION_ID).get(chat_id)


def test_reaction_author() -> None:
    assert reaction_author({"fromMe": True, "participant": ALICE}) == "me"
    assert reaction_author({"participant": ALICE, "remoteJid": GROUP}) == ALICE
    assert reaction_author({"remoteJid": BOB}) == BOB
    assert reaction_author({}) == ""
    assert reaction_author(None) == ""


def test_merge_receipt_replaces_per_user() -> None:
    receipts = [{"userJid": ALICE, "receiptTimestamp": 1}, {"userJid": BOB, "receiptTimestamp": 2}]
    merged = merge_receipt(receipts, {"userJid": ALICE, "readTimestamp": 3})
    assert merged == [{"userJid": BOB, "receiptTimestamp": 2}, {"userJid": ALICE, "readTimestamp": 3}]


def test_merge_reaction_replaces_and_removes() -> None:
    reactions = [{"key": {"remoteJid": BOB}, "text": "A"}]
    merged = merge_reaction(reactions, {"key": {"remoteJid": BOB}, "text": "B"})
    assert merged == [{"key": {"remoteJid": BOB}, "text": "B"}]
    assert merge_reaction(merged, {"key": {"remoteJid": BOB}, "text": ""}) == []


def test_message_key_normalizes_jid() -> None:
    assert message_key({"key": {"remoteJid": "5511:3@s.whatsapp.net", "id": "M"}}) == (ALICE, "M")
    with pytest.raises(MalformedPayloadError):
        message_key({"key": {"id": "M"}})


@pytest.mark.asyncio
async def test_history_stores_messages_linked_to_known_chats(
    chat_sync, message_sync, notifier, sink, session_factory
) -> None:
    await chat_sync.on_upsert([{"id": ALICE}])
    await message_sync.on_history_set(
        {
            "messages": [
                make_message(ALICE, "M1", timestamp={"low": 1700000000, "high": 0}),
                make_message("5522:4@s.whatsapp.net", "M2", pushName="Bob"),
            ]
        }
    )
    await notifier.drain()

    chat = await stored_chat(session_factory, ALICE)
    messages = {m.id: m for m in await stored_messages(session_factory)}
    assert messages["M1"].chat_id == chat.pk_id
    assert messages["M1"].message_timestamp == 1700000000
    assert messages["M1"].api_id == api_id(SESSION_ID, "M1")
    assert messages["M2"].remote_jid == BOB
    assert messages["M2"].chat_id is None
    assert messages["M2"].push_name == "Bob"
    assert sink.payloads(HISTORY_SYNC) == [{"sessionId": SESSION_ID}]


@pytest.mark.asyncio
async def test_history_is_idempotent(message_sync, session_factory) -> None:
    first = [make_message(ALICE, "M1"), make_message(ALICE, "M1", text="dup")]
    await message_sync.on_history_set({"messages": first})
    await message_sync.on_history_set(
        {"messages": [make_message(ALICE, "M1", text="again"), make_message(ALICE, "M2")]}
    )

    messages = await stored_messages(session_factory, ALICE)
    assert [m.id for m in messages] == ["M1", "M2"]
    assert messages[0].message == {"conversation": "hi"}


@pytest.mark.asyncio
async def test_latest_history_replaces_messages(message_sync, session_factory) -> None:
    await message_sync.on_history_set({"messages": [make_message(ALICE, "OLD")]})
    await message_sync.on_history_set(
        {"messages": [make_message(ALICE, "NEW")], "isLatest": True}
    )

    assert [m.id for m in await stored_messages(session_factory)] == ["NEW"]


@pytest.mark.asyncio
async def test_notify_upsert_creates_missing_chat(
    message_sync, notifier, sink, session_factory
) -> None:
    await message_sync.on_upsert(
        {"messages": [make_message(ALICE, "M1", timestamp={"low": 42, "high": 0})], "type": "notify"}
    )
    await notifier.drain()

    chat = await stored_chat(session_factory, ALICE)
    assert chat is not None
    assert chat.unread_count == 1
    assert chat.conversation_timestamp == 42
    [message] = await stored_messages(session_factory, ALICE)
    assert message.chat_id == chat.pk_id

    [new_message] = sink.payloads(NEW_MESSAGE)
    assert new_message["remoteJid"] == ALICE
    assert new_message["id"] == "M1"
    assert new_message["apiId"] == api_id(SESSION_ID, "M1")
    assert [d["id"] for d in sink.payloads(NEW_DIALOG)] == [ALICE]
    assert sink.events().index(NEW_MESSAGE) < sink.events().index(NEW_DIALOG)


@pytest.mark.asyncio
async def test_append_upsert_does_not_create_chat(message_sync, notifier, sink, session_factory) -> None:
    await message_sync.on_upsert({"messages": [make_message(ALICE, "M1")], "type": "append"})
    await notifier.drain()

    assert await stored_chat(session_factory, ALICE) is None
    assert len(await stored_messages(session_factory)) == 1
    assert sink.payloads(NEW_DIALOG) == []
    assert len(sink.payloads(NEW_MESSAGE)) == 1


@pytest.mark.asyncio
async def test_upsert_into_known_chat(chat_sync, message_sync, notifier, sink, session_factory) -> None:
    await chat_sync.on_upsert([{"id": GROUP}])
    await notifier.drain()
    sink.sent.clear()

    await message_sync.on_upsert(
        {"messages": [make_message(GROUP, "M1", participant=ALICE)], "type": "notify"}
    )
    await message_sync.on_upsert(
        {"messages": [make_message(GROUP, "M1", text="edited", participant=ALICE)], "type": "notify"}
    )
    await notifier.drain()

    chat = await stored_chat(session_factory, GROUP)
    [message] = await stored_messages(session_factory, GROUP)
    assert message.chat_id == chat.pk_id
    assert message.message == {"conversation": "edited"}
    assert message.participant == ALICE
    assert sink.events() == [NEW_MESSAGE, NEW_MESSAGE]


@pytest.mark.asyncio
async def test_upsert_of_unknown_type_is_ignored(message_sync, notifier, sink, session_factory) -> None:
    await message_sync.on_upsert({"messages": [make_message(ALICE, "M1")], "type": "prepend"})
    await notifier.drain()

    assert await stored_messages(session_factory) == []
    assert sink.sent == []


@pytest.mark.asyncio
async def test_update_merges_and_rekeys(message_sync, notifier, sink, session_factory) -> None:
    await message_sync.on_upsert({"messages": [make_message(ALICE, "M1")], "type": "append"})

    await message_sync.on_update(
        [
            {"key": {"remoteJid": ALICE, "id": "M1"}, "update": {"status": 4, "pushName": None}},
            {"key": {"remoteJid": ALICE, "id": "MISSING"}, "update": {"status": 4}},
        ]
    )
    await notifier.drain()

    [message] = await stored_messages(session_factory, ALICE)
    record = message.to_record()
    assert record["status"] == 4
    assert record["message"] == {"conversation": "hi"}
    assert message.api_id == api_id(SESSION_ID, "M1")

    [updates] = sink.payloads(UPDATE_MESSAGES)
    assert updates[0] == {"key": {"remoteJid": ALICE, "id": "M1"}, "update": {"status": 4}}
    assert len(updates) == 2


@pytest.mark.asyncio
async def test_update_can_move_message_to_new_key(message_sync, session_factory) -> None:
    await message_sync.on_upsert({"messages": [make_message(ALICE, "TMP")], "type": "append"})

    await message_sync.on_update(
        [{"key": {"remoteJid": ALICE, "id": "TMP"}, "update": {"key": {"remoteJid": ALICE, "id": "FINAL"}}}]
    )

    [message] = await stored_messages(session_factory, ALICE)
    assert message.id == "FINAL"
    assert message.api_id == api_id(SESSION_ID, "FINAL")


@pytest.mark.asyncio
async def test_delete_keys(message_sync, notifier, sink, session_factory) -> None:
    await message_sync.on_history_set(
        {"messages": [make_message(ALICE, "M1"), make_message(ALICE, "M2"), make_message(BOB, "M1")]}
    )

    await message_sync.on_delete(
        {"keys": [{"remoteJid": ALICE, "id": "M1"}, {"remoteJid": ALICE, "id": "M2"}]}
    )
    await notifier.drain()

    remaining = [(m.remote_jid, m.id) for m in await stored_messages(session_factory)]
    assert remaining == [(BOB, "M1")]
    [payload] = sink.payloads(DELETE_MESSAGES)
    assert payload == {"ids": [api_id(SESSION_ID, "M1"), api_id(SESSION_ID, "M2")]}
    assert "M1" not in payload["ids"]


@pytest.mark.asyncio
async def test_delete_all_in_chat(message_sync, notifier, sink, session_factory) -> None:
    await message_sync.on_history_set(
        {"messages": [make_message(ALICE, "M1"), make_message(ALICE, "M2"), make_message(BOB, "M3")]}
    )

    await message_sync.on_delete({"all": True, "jid": "5511:9@s.whatsapp.net"})
    await notifier.drain()

    assert [m.id for m in await stored_messages(session_factory)] == ["M3"]
    [payload] = sink.payloads(DELETE_MESSAGES)
    assert sorted(payload["ids"]) == sorted(api_ids(SESSION_ID, ["M1", "M2"]))


@pytest.mark.asyncio
async def test_receipts_keep_one_entry_per_user(message_sync, notifier, sink, session_factory) -> None:
    await message_sync.on_upsert({"messages": [make_message(GROUP, "M1", from_me=True)], "type": "append"})
    key = {"remoteJid": GROUP, "id": "M1", "fromMe": True}

    await message_sync.on_receipt_update([{"key": key, "receipt": {"userJid": ALICE, "receiptTimestamp": 1}}])
    await message_sync.on_receipt_update([{"key": key, "receipt": {"userJid": BOB, "receiptTimestamp": 2}}])
    await message_sync.on_receipt_update([{"key": key, "receipt": {"userJid": ALICE, "readTimestamp": 3}}])
    await message_sync.on_receipt_update(
        [{"key": {"remoteJid": GROUP, "id": "UNKNOWN"}, "receipt": {"userJid": ALICE}}]
    )
    await notifier.drain()

    [message] = await stored_messages(session_factory, GROUP)
    assert message.user_receipt == [
        {"userJid": BOB, "receiptTimestamp": 2},
        {"userJid": ALICE, "readTimestamp": 3},
    ]
    updates = sink.payloads(UPDATE_MESSAGES)
    assert len(updates) == 4
    assert updates[0] == [{"key": key, "receipt": {"userJid": ALICE, "receiptTimestamp": 1}}]


@pytest.mark.asyncio
async def test_reactions_replace_and_remove(message_sync, notifier, sink, session_factory) -> None:
    await message_sync.on_upsert({"messages": [make_message(BOB, "M1")], "type": "append"})
    key = {"remoteJid": BOB, "id": "M1"}

    await message_sync.on_reaction([{"key": key, "reaction": {"key": {"remoteJid": BOB}, "text": "A"}}])
    await message_sync.on_reaction([{"key": key, "reaction": {"key": {"fromMe": True}, "text": "B"}}])
    await message_sync.on_reaction([{"key": key, "reaction": {"key": {"remoteJid": BOB}, "text": "C"}}])
    [message] = await stored_messages(session_factory, BOB)
    assert [r["text"] for r in message.reactions] == ["B", "C"]

    await message_sync.on_reaction([{"key": key, "reaction": {"key": {"fromMe": True}, "text": ""}}])
    await message_sync.on_reaction(
        [{"key": {"remoteJid": BOB, "id": "UNKNOWN"}, "reaction": {"key": {"remoteJid": BOB}, "text": "X"}}]
    )
    await notifier.drain()

    [message] = await stored_messages(session_factory, BOB)
    assert [r["text"] for r in message.reactions] == ["C"]
    updates = sink.payloads(UPDATE_MESSAGES)
    assert len(updates) == 4
    assert updates[-1] == [{"key": key, "reactions": [{"key": {"remoteJid": BOB}, "text": "C"}]}]


@pytest.mark.asyncio
async def test_messages_are_session_scoped(bus, notifier, session_factory, message_sync) -> None:
    other = type(message_sync)("other-session", bus, notifier, session_factory)
    await message_sync.on_history_set({"messages": [make_message(ALICE, "M1")]})
    await other.on_history_set({"messages": [make_message(ALICE, "M1")]})

    await message_sync.on_delete({"all": True, "jid": ALICE})

    assert await stored_messages(session_factory) == []
    async with session_factory() as db:
        assert len(await MessageRepository(db, "other-session").list_all()) == 1


@pytest.mark.asyncio
async def test_notify_creates_unknown_chat_exactly_once(mocker, message_sync, chat_sync, session_factory) -> None:
    spy = mocker.spy(chat_sync, "ingest_upsert")
    await message_sync.on_upsert(
        {"messages": [make_message(BOB, "M1"), make_message(BOB, "M2")], "type": "notify"}
    )

    spy.assert_called_once()
    [stub] = spy.call_args.args[0]
    assert stub["id"] == BOB
    assert stub["unreadCount"] == 1

    chat = await stored_chat(session_factory, BOB)
    messages = await stored_messages(session_factory, BOB)
    assert [(m.id, m.chat_id) for m in messages] == [("M1", chat.pk_id), ("M2", chat.pk_id)]


@pytest.mark.asyncio
async def test_redelivered_message_upserts_concurrently(
    message_sync, notifier, sink, session_factory, caplog
) -> None:
    event = {"messages": [make_message(ALICE, "M1")], "type": "append"}
    with caplog.at_level(logging.ERROR, logger="chat_sync"):
        await asyncio.gather(message_sync.on_upsert(event), message_sync.on_upsert(event))
    await notifier.drain()

    assert [r.getMessage() for r in caplog.records if r.levelno >= logging.ERROR] == []
    assert [m.id for m in await stored_messages(session_factory)] == ["M1"]
    assert len(sink.payloads(NEW_MESSAGE)) == 2
