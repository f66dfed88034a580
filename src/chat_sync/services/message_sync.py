"""Message reconciliation.

Handles history backfills, live upserts, updates, deletes, delivery receipts
and reactions for one session. Incoming messages for chats the store has not
seen yet create those chats through :meth:`ChatSync.ingest_upsert`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from chat_sync.core.errors import MalformedPayloadError, UnknownEventError
from chat_sync.db.session import SessionFactory
from chat_sync.models.message import Message
from chat_sync.repositories.chat_repo import ChatRepository
from chat_sync.repositories.message_repo import MessageRepository
from chat_sync.services.chat_sync import ChatSync
from chat_sync.services.event_bus import EventBus, Handler
from chat_sync.services.events import (
    DELETE_MESSAGES,
    HISTORY_SET,
    HISTORY_SYNC,
    MESSAGE_RECEIPT_UPDATE,
    MESSAGES_DELETE,
    MESSAGES_REACTION,
    MESSAGES_UPDATE,
    MESSAGES_UPSERT,
    NEW_MESSAGE,
    UPDATE_MESSAGES,
    DeleteAllInChat,
    DeleteKeys,
    Record,
    UpsertType,
    parse_history_set,
    parse_message_updates,
    parse_messages_delete,
    parse_messages_upsert,
    parse_reaction_updates,
    parse_receipt_updates,
)
from chat_sync.services.notifier import Notifier
from chat_sync.services.sync import SyncComponent
from chat_sync.utils.hash import api_id, api_ids
from chat_sync.utils.jid import normalize_user_jid
from chat_sync.utils.normalize import normalize, to_number

logger = logging.getLogger(__name__)

ME = "me"


def reaction_author(key: Record | None) -> str:
    """Identify who reacted: ``"me"`` for own reactions, else participant or chat."""
    if not key:
        return ""
    if key.get("fromMe"):
        return ME
    return key.get("participant") or key.get("remoteJid") or ""


def merge_receipt(receipts: Iterable[Record], receipt: Record) -> list[Record]:
    """Replace the receipt of ``receipt["userJid"]`` or append it.

    The newest receipt of a user always ends up last, so the list stays in
    arrival order with one entry per user.
    """
    user_jid = receipt.get("userJid")
    merged = [r for r in receipts if r.get("userJid") != user_jid]
    merged.append(receipt)
    return merged


def merge_reaction(reactions: Iterable[Record], reaction: Record) -> list[Record]:
    """Drop the author's previous reaction and keep the new one unless its text is empty."""
    author = reaction_author(reaction.get("key"))
    merged = [r for r in reactions if reaction_author(r.get("key")) != author]
    if reaction.get("text"):
        merged.append(reaction)
    return merged


def message_key(message: Record) -> tuple[str, str]:
    """Return the natural key ``(remoteJid, id)`` of a raw message."""
    key = message.get("key") or {}
    remote_jid = key.get("remoteJid")
    message_id = key.get("id")
    if not remote_jid or not message_id:
        raise MalformedPayloadError("message key lacks remoteJid or id")
    return normalize_user_jid(str(remote_jid)), str(message_id)


class MessageSync(SyncComponent):
    """Keeps the ``message`` table of one session in step with the protocol client."""

    def __init__(
        self,
        session_id: str,
        bus: EventBus,
        notifier: Notifier,
        session_factory: SessionFactory,
        chat_sync: ChatSync | None = None,
    ) -> None:
        super().__init__(session_id, bus, notifier, session_factory)
        self.chat_sync = chat_sync

    def subscriptions(self) -> dict[str, Handler]:
        return {
            HISTORY_SET: self.on_history_set,
            MESSAGES_UPSERT: self.on_upsert,
            MESSAGES_UPDATE: self.on_update,
            MESSAGES_DELETE: self.on_delete,
            MESSAGE_RECEIPT_UPDATE: self.on_receipt_update,
            MESSAGES_REACTION: self.on_reaction,
        }

    def prepare(self, message: Record) -> Record:
        """Normalize a raw message and attach its ``apiId``."""
        record = normalize(message)
        message_id = (record.get("key") or {}).get("id")
        if message_id:
            record["apiId"] = api_id(self.session_id, str(message_id))
        return record

    def _valid(self, messages: Iterable[Record]) -> list[tuple[tuple[str, str], Record]]:
        keyed = []
        for message in messages:
            try:
                keyed.append((message_key(message), message))
            except MalformedPayloadError as e:
                logger.warning("Skipping message: %s", e)
        return keyed

    async def fetch_media(self, messages: Iterable[Record]) -> None:
        """Media download hook; message media is stored as metadata only."""
        return None

    async def _chat_map(self, jids: Iterable[str]) -> dict[str, int]:
        async with self.session_factory() as db:
            return await ChatRepository(db, self.session_id).pk_map(jids)

    async def on_history_set(self, payload: Any) -> None:
        try:
            event = parse_history_set(payload)
        except UnknownEventError as e:
            logger.warning("Ignoring message history: %s", e)
            return

        keyed = self._valid(event.messages)
        try:
            async with self.transaction() as db:
                repo = MessageRepository(db, self.session_id)
                chat_map = await ChatRepository(db, self.session_id).pk_map(
                    jid for (jid, _), _ in keyed
                )
                if event.is_latest:
                    await repo.delete_all()
                    existing: set[tuple[str, str]] = set()
                else:
                    existing = await repo.existing_keys(natural for natural, _ in keyed)

                rows = []
                seen: set[tuple[str, str]] = set()
                for natural, message in keyed:
                    if natural in existing or natural in seen:
                        continue
                    seen.add(natural)
                    jid = natural[0]
                    rows.append(
                        Message.row_for(
                            self.session_id,
                            self.prepare(message),
                            remote_jid=jid,
                            chat_id=chat_map.get(jid),
                        )
                    )
                added = await repo.insert_many(rows)
        except SQLAlchemyError:
            logger.error("An error occurred during messages set", exc_info=True)
            return

        self.notifier.send(HISTORY_SYNC, {"sessionId": self.session_id})
        logger.info("Synced messages for %s: %d added", self.session_id, added)

    async def on_upsert(self, payload: Any) -> None:
        try:
            event = parse_messages_upsert(payload)
        except UnknownEventError as e:
            logger.info("Ignoring messages upsert: %s", e)
            return

        keyed = self._valid(event.messages)
        try:
            chat_map = await self._chat_map(jid for (jid, _), _ in keyed)
        except SQLAlchemyError:
            logger.error("Could not resolve chats for messages upsert", exc_info=True)
            return
        await self.fetch_media(message for _, message in keyed)

        for (jid, message_id), message in keyed:
            record = self.prepare(message)
            try:
                async with self.transaction() as db:
                    await MessageRepository(db, self.session_id).upsert(
                        Message.row_for(
                            self.session_id, record, remote_jid=jid, chat_id=chat_map.get(jid)
                        )
                    )
                    chat_exists = await ChatRepository(db, self.session_id).exists(jid)
            except SQLAlchemyError:
                logger.error("An error occurred during message upsert", exc_info=True)
                continue

            self.notifier.send(NEW_MESSAGE, {**record, "remoteJid": jid, "id": message_id})

            if event.type is UpsertType.NOTIFY and not chat_exists:
                await self._create_chat(jid, message)
                # Later messages of this batch link to the chat just created.
                try:
                    chat_map.update(await self._chat_map([jid]))
                except SQLAlchemyError:
                    logger.error("Could not resolve chat %s after creating it", jid, exc_info=True)

    async def _create_chat(self, jid: str, message: Record) -> None:
        if self.chat_sync is None:
            logger.debug("No chat sync attached, not creating chat %s", jid)
            return
        await self.chat_sync.ingest_upsert(
            [
                {
                    "id": jid,
                    "conversationTimestamp": to_number(message.get("messageTimestamp")),
                    "unreadCount": 1,
                }
            ]
        )

    async def on_update(self, payload: Any) -> None:
        try:
            updates = parse_message_updates(payload)
        except UnknownEventError as e:
            logger.warning("Ignoring messages update: %s", e)
            return

        for item in updates:
            try:
                jid, message_id = message_key({"key": item.key})
            except MalformedPayloadError as e:
                logger.warning("Skipping message update: %s", e)
                continue
            await self.fetch_media([item.update])
            try:
                await self._recreate(jid, message_id, normalize(item.update))
            except (SQLAlchemyError, MalformedPayloadError):
                logger.error("An error occurred during message update", exc_info=True)

        self.notifier.send(
            UPDATE_MESSAGES,
            [{"key": normalize(item.key), "update": normalize(item.update)} for item in updates],
        )

    async def _recreate(self, jid: str, message_id: str, update: Record) -> None:
        """Merge ``update`` into the stored message and store it under its new key."""
        async with self.transaction() as db:
            repo = MessageRepository(db, self.session_id)
            previous = await repo.get(jid, message_id, for_update=True)
            if previous is None:
                logger.info("Got update for non existent message %s/%s", jid, message_id)
                return

            data = {**previous.to_record(), **update}
            new_jid, new_id = message_key(data)
            data["apiId"] = api_id(self.session_id, new_id)
            await repo.remove(previous)

            chat_map = await ChatRepository(db, self.session_id).pk_map([new_jid])
            await repo.add(
                Message.row_for(
                    self.session_id, data, remote_jid=new_jid, chat_id=chat_map.get(new_jid)
                )
            )

    async def on_delete(self, payload: Any) -> None:
        try:
            item = parse_messages_delete(payload)
        except UnknownEventError as e:
            logger.warning("Ignoring messages delete: %s", e)
            return

        try:
            if isinstance(item, DeleteAllInChat):
                deleted_ids = await self._delete_chat_messages(normalize_user_jid(item.jid))
            elif isinstance(item, DeleteKeys):
                deleted_ids = await self._delete_keys(item.keys)
            else:
                raise UnknownEventError(f"unsupported delete {item!r}")
        except (SQLAlchemyError, MalformedPayloadError):
            logger.error("An error occurred during message delete", exc_info=True)
            return

        self.notifier.send(DELETE_MESSAGES, {"ids": deleted_ids})

    async def _delete_chat_messages(self, jid: str) -> list[str]:
        async with self.transaction() as db:
            repo = MessageRepository(db, self.session_id)
            ids = await repo.api_ids_for_chat(jid)
            deleted = await repo.delete_chat(jid)
        logger.info("Deleted %d messages of %s", deleted, jid)
        return ids

    async def _delete_keys(self, keys: list[Record]) -> list[str]:
        if not keys:
            return []
        jid = message_key({"key": keys[0]})[0]
        message_ids = [str(key["id"]) for key in keys if key.get("id")]
        async with self.transaction() as db:
            deleted = await MessageRepository(db, self.session_id).delete_ids(jid, message_ids)
        logger.info("Deleted %d messages of %s", deleted, jid)
        return api_ids(self.session_id, message_ids)

    async def on_receipt_update(self, payload: Any) -> None:
        try:
            updates = parse_receipt_updates(payload)
        except UnknownEventError as e:
            logger.warning("Ignoring receipt update: %s", e)
            return

        for item in updates:
            try:
                jid, message_id = message_key({"key": item.key})
            except MalformedPayloadError as e:
                logger.warning("Skipping receipt update: %s", e)
                continue
            receipt = normalize(item.receipt)
            try:
                async with self.transaction() as db:
                    repo = MessageRepository(db, self.session_id)
                    message = await repo.get(jid, message_id, for_update=True)
                    if message is None:
                        logger.debug(
                            "Got receipt update for non existent message %s/%s", jid, message_id
                        )
                        continue
                    await repo.set_user_receipt(
                        message, merge_receipt(message.user_receipt or [], receipt)
                    )
            except SQLAlchemyError:
                logger.error("An error occurred during message receipt update", exc_info=True)

        if updates:
            self.notifier.send(
                UPDATE_MESSAGES,
                [
                    {"key": normalize(item.key), "receipt": normalize(item.receipt)}
                    for item in updates
                ],
            )

    async def on_reaction(self, payload: Any) -> None:
        try:
            updates = parse_reaction_updates(payload)
        except UnknownEventError as e:
            logger.warning("Ignoring reaction update: %s", e)
            return

        results = []
        for item in updates:
            try:
                jid, message_id = message_key({"key": item.key})
            except MalformedPayloadError as e:
                logger.warning("Skipping reaction update: %s", e)
                continue
            reaction = normalize(item.reaction)
            try:
                async with self.transaction() as db:
                    repo = MessageRepository(db, self.session_id)
                    message = await repo.get(jid, message_id, for_update=True)
                    if message is None:
                        logger.debug(
                            "Got reaction update for non existent message %s/%s", jid, message_id
                        )
                        continue
                    reactions = merge_reaction(message.reactions or [], reaction)
                    await repo.set_reactions(message, reactions)
            except SQLAlchemyError:
                logger.error("An error occurred during message reaction update", exc_info=True)
                continue
            results.append({"key": normalize(item.key), "reactions": reactions})

        if results:
            self.notifier.send(UPDATE_MESSAGES, results)
