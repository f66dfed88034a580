"""Contact reconciliation and best-effort profile enrichment."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from chat_sync.core.errors import UnknownEventError
from chat_sync.core.settings import settings
from chat_sync.db.session import SessionFactory
from chat_sync.repositories.contact_repo import ContactRepository
from chat_sync.services.event_bus import EventBus, Handler
from chat_sync.services.events import (
    CONTACTS_UPDATE,
    CONTACTS_UPSERT,
    CREDS_UPDATE,
    HISTORY_SET,
    Record,
    parse_creds_update,
    parse_history_set,
    parse_records,
)
from chat_sync.services.notifier import Notifier
from chat_sync.services.protocol import ProtocolClient
from chat_sync.services.sync import SyncComponent
from chat_sync.utils.hash import with_api_id
from chat_sync.utils.jid import jid_user
from chat_sync.utils.normalize import normalize

logger = logging.getLogger(__name__)


def fallback_name(contact_id: str, notify: str | None) -> str | None:
    """Name to show for a contact without one: its push name, else the JID user part."""
    if notify:
        return notify
    return jid_user(contact_id) or None


class ContactSync(SyncComponent):
    """Keeps the ``contact`` table of one session in step with the protocol client.

    Besides plain upserts and updates it enriches contacts after each batch:

    - optional name completion for contacts without a saved name
      (``CONTACT_NAME_FILL_ENABLED``)
    - profile picture lookup for contacts without an image, one protocol call
      at a time

    It also maintains the account's own contact from ``creds.update``.
    """

    def __init__(
        self,
        session_id: str,
        bus: EventBus,
        notifier: Notifier,
        session_factory: SessionFactory,
        client: ProtocolClient | None = None,
        *,
        fill_names: bool | None = None,
        fetch_pictures: bool | None = None,
        picture_resolution: str | None = None,
    ) -> None:
        super().__init__(session_id, bus, notifier, session_factory)
        self.client = client
        self.fill_names = (
            settings.contact_name_fill_enabled if fill_names is None else fill_names
        )
        self.fetch_pictures = (
            settings.profile_picture_sync_enabled if fetch_pictures is None else fetch_pictures
        )
        self.picture_resolution = picture_resolution or settings.profile_picture_resolution

    def subscriptions(self) -> dict[str, Handler]:
        return {
            HISTORY_SET: self.on_history_set,
            CONTACTS_UPSERT: self.on_upsert,
            CONTACTS_UPDATE: self.on_update,
            CREDS_UPDATE: self.on_creds_update,
        }

    def prepare(self, contact: Record) -> Record:
        return normalize(with_api_id(self.session_id, contact))

    async def on_history_set(self, payload: Any) -> None:
        try:
            event = parse_history_set(payload)
        except UnknownEventError as e:
            logger.warning("Ignoring contact history: %s", e)
            return
        if not event.contacts:
            return

        await self.upsert_batch(event.contacts)
        await self.fill_empty_names()
        await self.refresh_profile_pictures()
        logger.info("Synced contacts for %s: %d received", self.session_id, len(event.contacts))

    async def on_upsert(self, payload: Any) -> None:
        try:
            contacts = parse_records(CONTACTS_UPSERT, payload)
        except UnknownEventError as e:
            logger.warning("Ignoring contacts upsert: %s", e)
            return

        await self.upsert_batch(contacts)
        await self.fill_empty_names()
        await self.refresh_profile_pictures()

    async def upsert_batch(self, contacts: list[Record]) -> None:
        """Upsert every contact independently; one failure does not block the rest."""
        records = []
        for contact in contacts:
            if not contact.get("id"):
                logger.warning("Skipping contact without id")
                continue
            records.append(self.prepare(contact))

        results = await asyncio.gather(
            *(self._upsert_one(record) for record in records),
            return_exceptions=True,
        )
        for record, result in zip(records, results):
            if isinstance(result, BaseException):
                logger.error("Contact upsert failed for %s", record["id"], exc_info=result)

    async def _upsert_one(self, record: Record) -> None:
        async with self.transaction() as db:
            await ContactRepository(db, self.session_id).upsert(record)

    async def on_update(self, payload: Any) -> None:
        try:
            updates = parse_records(CONTACTS_UPDATE, payload)
        except UnknownEventError as e:
            logger.warning("Ignoring contacts update: %s", e)
            return

        for update in updates:
            if not update.get("id"):
                logger.warning("Skipping contact update without id")
                continue
            record = self.prepare(update)
            try:
                async with self.transaction() as db:
                    contact = await ContactRepository(db, self.session_id).update(record)
            except SQLAlchemyError:
                logger.error("An error occurred during contact update", exc_info=True)
                continue
            if contact is None:
                logger.info("Got update for non existent contact %s", record["id"])

        await self.fill_empty_names()

    async def on_creds_update(self, payload: Any) -> None:
        """Store the account's own profile as a contact."""
        try:
            me = parse_creds_update(payload).me
        except UnknownEventError as e:
            logger.warning("Ignoring creds update: %s", e)
            return
        if not me or not me.get("id"):
            return

        record: Record = {"id": me["id"], "name": me.get("name")}
        img_url = await self._lookup_picture(me["id"])
        if img_url:
            record["imgUrl"] = img_url

        try:
            await self._upsert_one(self.prepare(record))
        except SQLAlchemyError:
            logger.error("An error occurred during self contact sync", exc_info=True)
            return
        logger.info("Synced self contact %s", me["id"])

    async def fill_empty_names(self) -> None:
        """Give unnamed contacts their push name or JID user part as a name."""
        if not self.fill_names:
            return

        try:
            async with self.transaction() as db:
                unnamed = [
                    (c.id, c.notify) for c in await ContactRepository(db, self.session_id).unnamed()
                ]
        except SQLAlchemyError:
            logger.error("Could not load unnamed contacts", exc_info=True)
            return

        pending = []
        for contact_id, notify in unnamed:
            name = fallback_name(contact_id, notify)
            if name:
                pending.append(self._set_fields(contact_id, name=name))
        results = await asyncio.gather(*pending, return_exceptions=True)
        failed = sum(1 for result in results if isinstance(result, BaseException))
        if failed:
            logger.warning("Name completion failed for %d contacts of %s", failed, self.session_id)

    async def refresh_profile_pictures(self) -> None:
        """Look up a picture for every contact without one, sequentially."""
        if not self.fetch_pictures or self.client is None:
            return

        try:
            async with self.transaction() as db:
                contact_ids = await ContactRepository(db, self.session_id).ids_without_image()
        except SQLAlchemyError:
            logger.error("Could not load contacts without image", exc_info=True)
            return

        for contact_id in contact_ids:
            img_url = await self._lookup_picture(contact_id)
            if not img_url:
                continue
            try:
                await self._set_fields(contact_id, img_url=img_url)
            except SQLAlchemyError:
                logger.error("Could not store image for %s", contact_id, exc_info=True)

    async def _lookup_picture(self, contact_id: str) -> str | None:
        if self.client is None:
            return None
        logger.debug("Fetching profile picture for %s", contact_id)
        try:
            return await self.client.profile_picture_url(contact_id, self.picture_resolution)
        except Exception as e:
            # Best effort; the contact keeps its current image.
            logger.warning("Profile picture lookup failed for %s: %s", contact_id, e)
            return None

    async def _set_fields(self, contact_id: str, **values: Any) -> None:
        async with self.transaction() as db:
            await ContactRepository(db, self.session_id).set_fields(contact_id, **values)
