"""
Deal reminders
──────────────
Reminders are stored on their own (not inside the user session), so they
survive session expiry. A scheduler calls ``dispatch_due`` periodically
(``POST /api/reminders/dispatch``); the notification is sent through the
regular messaging egress with the service's own credentials.
"""
import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from dealbot.database.engine import SessionLocal
from dealbot.database.repositories.reminder_repository import ReminderRepository, deal_from_record
from dealbot.messages.deal_cards import reminder_notification_text
from dealbot.schemas.deal import Deal
from dealbot.services.whatsapp_client import WhatsAppClient, whatsapp_client
from dealbot.utils.clock import as_utc, local_now, utc_now
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

MAX_AHEAD = timedelta(hours=24)

IN_HOURS = re.compile(r"in (\d+) hours?")
IN_MINUTES = re.compile(r"in (\d+) (?:minutes?|mins?)")
AT_TIME = re.compile(r"at (\d{1,2}):?(\d{0,2})\s*(am|pm)")


def parse_reminder_time(text: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    "in 2 hours", "in 45 minutes", "at 7pm", "at 7:30 am" → aware datetime
    within the next 24 hours, or None.
    """
    current = now or local_now()
    lowered = (text or "").lower().strip()

    match = IN_HOURS.search(lowered)
    if match and 0 < int(match.group(1)) <= 24:
        return current + timedelta(hours=int(match.group(1)))

    match = IN_MINUTES.search(lowered)
    if match and 0 < int(match.group(1)) <= 24 * 60:
        return current + timedelta(minutes=int(match.group(1)))

    match = AT_TIME.search(lowered)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not (1 <= hour <= 12 and 0 <= minute < 60):
            return None
        if match.group(3) == "pm" and hour != 12:
            hour += 12
        if match.group(3) == "am" and hour == 12:
            hour = 0
        target = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if target <= current:
            target += timedelta(days=1)
        if target - current <= MAX_AHEAD:
            return target

    return None


class ReminderService:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        client: WhatsAppClient = whatsapp_client,
    ):
        self._session_factory = session_factory
        self.client = client

    def schedule(self, store_id: str, user_id: str, deal: Deal, remind_at: datetime, title: Optional[str] = None) -> str:
        with self._session_factory() as db:
            record = ReminderRepository(db).create(
                store_id=store_id,
                user_id=user_id,
                deal=deal,
                remind_at=as_utc(remind_at),
                title=title or deal.business_name,
            )
            return record.reminder_id

    async def dispatch_due(self, now: Optional[datetime] = None) -> int:
        """Send every pending reminder whose time has come. Returns how many were delivered."""
        with self._session_factory() as db:
            repo = ReminderRepository(db)
            due = repo.due(now or utc_now())
            if not due:
                return 0

            logger.info("━" * 60)
            logger.info("🔔 REMINDER DISPATCH — %d due", len(due))
            logger.info("━" * 60)

            delivered = 0
            for record in due:
                message = reminder_notification_text(deal_from_record(record), record.title, as_utc(record.remind_at))
                if await self.client.send(record.user_id, message):
                    repo.mark(record, "sent")
                    delivered += 1
                else:
                    # stays pending and is retried on the next dispatch
                    logger.warning("dispatch_due — reminder=%s not delivered", record.reminder_id)
            return delivered


reminder_service = ReminderService()
