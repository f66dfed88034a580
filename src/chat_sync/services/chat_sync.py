"""Chat reconciliation: history snapshots, upserts, partial updates and deletes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from chat_sync.core.errors import UnknownEventError
from chat_sync.repositories.chat_repo import ChatRepository
from chat_sync.repositories.message_repo import MessageRepository
from chat_sync.services.event_bus import Handler
from chat_sync.services.events import (
    CHATS_DELETE,
    CHATS_UPDATE,
    CHATS_UPSERT,
    DELETE_DIALOGS,
    HISTORY_SET,
    NEW_DIALOG,
    UPDATE_DIALOG,
    Record,
    parse_history_set,
    parse_ids,
    parse_records,
)
from chat_sync.services.sync import SyncComponent
from chat_sync.utils.hash import with_api_id
from chat_sync.utils.normalize import normalize

logger = logging.getLogger(__name__)


class ChatSync(SyncComponent):
    """Keeps the ``chat`` table of one session in step with the protocol client."""

    def subscriptions(self) -> dict[str, Handler]:
        return {
            HISTORY_SET: self.on_history_set,
            CHATS_UPSERT: self.on_upsert,
            CHATS_UPDATE: self.on_update,
            CHATS_DELETE: self.on_delete,
        }

    def prepare(self, chat: Record) -> Record:
        return normalize(with_api_id(self.session_id, chat))

    async def on_history_set(self, payload: Any) -> None:
        try:
            event = parse_history_set(payload)
        except UnknownEventError as e:
            logger.warning("Ignoring chat history: %s", e)
            return
        await self.sync_history(event.chats, is_latest=event.is_latest)

    async def sync_history(self, chats: list[Record], *, is_latest: bool) -> None:
        """Insert unseen chats in one transaction, replacing everything when ``is_latest``."""
        new_chats: list[Record] = []
        try:
            async with self.transaction() as db:
                repo = ChatRepository(db, self.session_id)
                if is_latest:
                    await repo.delete_all()

                existing = await repo.existing_ids(c["id"] for c in chats if c.get("id"))
                seen: set[str] = set()
                for chat in chats:
                    chat_id = chat.get("id")
                    if not chat_id or chat_id in existing or chat_id in seen:
                        continue
                    seen.add(chat_id)
                    new_chats.append(self.prepare(chat))

                chats_added = await repo.insert_many(new_chats)
                linked = await repo.fix_message_refs()
        except SQLAlchemyError:
            logger.error("An error occurred during chats set", exc_info=True)
            return

        for chat in new_chats:
            self.notifier.send(NEW_DIALOG, chat)
        logger.info(
            "Synced chats for %s: %d added, %d messages linked",
            self.session_id,
            chats_added,
            linked,
        )

    async def on_upsert(self, payload: Any) -> None:
        try:
            chats = parse_records(CHATS_UPSERT, payload)
        except UnknownEventError as e:
            logger.warning("Ignoring chats upsert: %s", e)
            return
        await self.ingest_upsert(chats)

    async def ingest_upsert(self, chats: Iterable[Record]) -> None:
        """Create or overwrite each chat independently, then announce every one.

        This is also the entry point message sync uses to create chats it
        discovers through incoming messages.
        """
        records = []
        for chat in chats:
            if not chat.get("id"):
                logger.warning("Skipping chat without id in upsert")
                continue
            records.append(self.prepare(chat))

        results = await asyncio.gather(
            *(self._upsert_one(record) for record in records),
            return_exceptions=True,
        )
        for record, result in zip(records, results):
            if isinstance(result, BaseException):
                logger.error("Chat upsert failed for %s", record["id"], exc_info=result)

        for record in records:
            self.notifier.send(NEW_DIALOG, record)

    async def _upsert_one(self, record: Record) -> None:
        async with self.transaction() as db:
            chat = await ChatRepository(db, self.session_id).upsert(record)
            await MessageRepository(db, self.session_id).link_chat(chat.id, chat.pk_id)

    async def on_update(self, payload: Any) -> None:
        try:
            updates = parse_records(CHATS_UPDATE, payload)
        except UnknownEventError as e:
            logger.warning("Ignoring chats update: %s", e)
            return

        for update in updates:
            if not update.get("id"):
                logger.warning("Skipping chat update without id")
                continue
            record = self.prepare(update)
            try:
                async with self.transaction() as db:
                    chat = await ChatRepository(db, self.session_id).update(record)
            except SQLAlchemyError:
                logger.error("An error occurred during chat update", exc_info=True)
                continue

            if chat is None:
                logger.info("Got update for non existent chat %s", record["id"])
                continue
            self.notifier.send(UPDATE_DIALOG, record)

    async def on_delete(self, payload: Any) -> None:
        try:
            ids = parse_ids(CHATS_DELETE, payload)
        except UnknownEventError as e:
            logger.warning("Ignoring chats delete: %s", e)
            return

        try:
            async with self.transaction() as db:
                deleted = await ChatRepository(db, self.session_id).delete_ids(ids)
        except SQLAlchemyError:
            logger.error("An error occurred during chats delete", exc_info=True)
            return

        logger.info("Deleted %d chats for %s", deleted, self.session_id)
        self.notifier.send(DELETE_DIALOGS, ids)
