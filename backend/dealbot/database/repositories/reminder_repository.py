import json
import uuid
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dealbot.config.settings import settings
from dealbot.database.models.reminder_record import ReminderRecord
from dealbot.errors import StorageUnavailable
from dealbot.schemas.deal import Deal
from dealbot.utils.clock import now_s, utc_now
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)


class ReminderRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, *, store_id: str, user_id: str, deal: Deal, remind_at: datetime, title: str) -> ReminderRecord:
        record = ReminderRecord(
            reminder_id=str(uuid.uuid4()),
            store_id=store_id,
            user_id=user_id,
            deal_json=deal.model_dump_json(exclude_none=True),
            title=title,
            remind_at=remind_at,
            status="pending",
            created_at=utc_now(),
            ttl=int(remind_at.timestamp()) + settings.reminder_ttl_hours * 3600,
        )
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("create — reminder write failed for user=%s: %s", user_id, e)
            raise StorageUnavailable(f"reminder write failed: {e}") from e
        logger.info("create — reminder=%s user=%s at=%s", record.reminder_id, user_id, remind_at.isoformat())
        return record

    def due(self, now: datetime | None = None) -> list[ReminderRecord]:
        stmt = (
            select(ReminderRecord)
            .where(ReminderRecord.status == "pending", ReminderRecord.remind_at <= (now or utc_now()))
            .order_by(ReminderRecord.remind_at.asc())
        )
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"reminder scan failed: {e}") from e

    def mark(self, record: ReminderRecord, status: str) -> None:
        record.status = status
        if status == "sent":
            record.sent_at = utc_now()
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"reminder update failed: {e}") from e

    def purge_expired(self) -> int:
        try:
            result = self.db.execute(delete(ReminderRecord).where(ReminderRecord.ttl <= now_s()))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageUnavailable(f"reminder purge failed: {e}") from e
        return result.rowcount or 0


def deal_from_record(record: ReminderRecord) -> Deal:
    return Deal.model_validate(json.loads(record.deal_json))
