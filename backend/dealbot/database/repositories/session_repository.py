"""
Session Repository
──────────────────
Key-value access to UserSession records, keyed by (store id, user id).

  * ``load`` never fails on absence: a missing or expired row yields an
    empty, well-formed session.
  * ``save`` enforces the retention caps, strips None-valued attributes and
    writes the whole record in one transaction.
  * Any SQLAlchemy error is rolled back and surfaced as StorageUnavailable.
"""
import json

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dealbot.config.settings import settings
from dealbot.database.models.session_record import SessionRecord
from dealbot.errors import StorageUnavailable
from dealbot.schemas.session import UserSession
from dealbot.utils.clock import now_ms, now_s
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)


def session_key(store_id: str, user_id: str) -> str:
    return f"{store_id}:{user_id}"


class SessionRepository:
    def __init__(self, db: Session):
        self.db = db

    def load(self, store_id: str, user_id: str) -> UserSession:
        key = session_key(store_id, user_id)
        try:
            row = self.db.execute(
                select(SessionRecord).where(SessionRecord.session_key == key)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("load — session store read failed for key=%s: %s", key, e)
            raise StorageUnavailable(f"session read failed: {e}") from e

        if row is None:
            logger.debug("load — no session for key=%s, starting fresh", key)
            return UserSession()
        if row.ttl and row.ttl <= now_s():
            logger.info("load — session for key=%s expired at %s, starting fresh", key, row.ttl)
            return UserSession()

        try:
            return UserSession.model_validate(json.loads(row.data_json or "{}"))
        except (ValueError, ValidationError) as e:
            # A record we cannot read is treated like an absent one
            logger.warning("load — unreadable session for key=%s, starting fresh: %s", key, e)
            return UserSession()

    def save(self, store_id: str, user_id: str, session: UserSession) -> UserSession:
        """Persist the session atomically and return the stored form (caps applied, ttl stamped)."""
        key = session_key(store_id, user_id)
        stored = session.model_copy(deep=True)
        stored.apply_caps(
            conversation=settings.cap_conversation,
            sent_messages=settings.cap_sent_messages,
            shared_deal_ids=settings.cap_shared_deal_ids,
            processed_events=settings.cap_processed_events,
        )
        stored.timestamp = now_ms()
        stored.ttl = now_s() + settings.session_ttl_hours * 3600
        stored.last_interaction = stored.user_state.step.value

        payload = stored.model_dump_json(exclude_none=True)

        try:
            row = self.db.get(SessionRecord, key)
            if row is None:
                row = SessionRecord(session_key=key, store_id=store_id, user_id=user_id)
                self.db.add(row)
            row.data_json = payload
            row.last_interaction = stored.last_interaction
            row.timestamp = stored.timestamp
            row.ttl = stored.ttl
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("save — session store write failed for key=%s: %s", key, e)
            raise StorageUnavailable(f"session write failed: {e}") from e

        logger.debug(
            "save — key=%s step=%s conversation=%d sent=%d shared=%d",
            key,
            stored.last_interaction,
            len(stored.conversation),
            len(stored.sent_messages),
            len(stored.shared_deal_ids),
        )
        return stored

    def purge_expired(self) -> int:
        try:
            result = self.db.execute(delete(SessionRecord).where(SessionRecord.ttl <= now_s()))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"session purge failed: {e}") from e
        return result.rowcount or 0
