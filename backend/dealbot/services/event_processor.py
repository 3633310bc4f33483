"""
Event Processor
───────────────
Runs one inbound event end to end:

    lock(store, user) → load → already handled? → step → stage outbox → save → send

Events for the same user are serialized with an asyncio lock so the
load/step/save sequence is atomic per user within this process. Locks are
dropped again once nobody holds or waits on them.

A redelivered webhook (same message id) is answered with nothing: the ids of
handled messages are kept in the session, so the state machine never runs
twice for one inbound message. Messages are only sent after the session (with
their hashes) has been saved; a storage failure anywhere sends the generic
apology and leaves the stored session as it was.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Callable

from sqlalchemy.orm import Session

from dealbot.database.engine import SessionLocal
from dealbot.database.repositories.session_repository import SessionRepository, session_key
from dealbot.dialog.machine import DialogStateMachine, dialog_machine
from dealbot.errors import StorageUnavailable
from dealbot.messages.builders import text_message
from dealbot.messages.deal_cards import APOLOGY_TEXT
from dealbot.messages.outbox import stage_outbound
from dealbot.schemas.events import InboundEvent
from dealbot.services.whatsapp_client import WhatsAppClient, whatsapp_client
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)


class EventProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        machine: DialogStateMachine = dialog_machine,
        client: WhatsAppClient = whatsapp_client,
    ):
        self._session_factory = session_factory
        self.machine = machine
        self.client = client
        # key → [lock, number of tasks holding or waiting on it]
        self._locks: dict[str, list] = {}

    @asynccontextmanager
    async def _user_lock(self, key: str):
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    async def process(self, event: InboundEvent) -> list[dict]:
        """Handle one event; returns the messages actually handed to the egress."""
        key = session_key(event.store_id, event.user_id)
        async with self._user_lock(key):
            try:
                outbound = await self._run(event)
            except StorageUnavailable as e:
                logger.error("process — storage unavailable for %s, sending apology: %s", key, e)
                outbound = [text_message(APOLOGY_TEXT)]

            for message in outbound:
                await self.client.send(event.user_id, message)
            return outbound

    async def _run(self, event: InboundEvent) -> list[dict]:
        with self._session_factory() as db:
            session = SessionRepository(db).load(event.store_id, event.user_id)

        if event.message_id and event.message_id in session.processed_events:
            logger.info("_run — message %s already handled, ignoring redelivery", event.message_id)
            return []

        result = await self.machine.step(session, event)
        if not result.persist:
            return result.outbound

        pending = stage_outbound(result.session, event.key, result.outbound)
        if len(pending) < len(result.outbound):
            logger.info(
                "_run — suppressed %d duplicate message(s) for event %s",
                len(result.outbound) - len(pending), event.key,
            )
        result.session.mark_processed(event.message_id)

        with self._session_factory() as db:
            SessionRepository(db).save(event.store_id, event.user_id, result.session)
        return pending


event_processor = EventProcessor()
