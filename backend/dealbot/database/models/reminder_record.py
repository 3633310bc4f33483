from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealbot.database.engine import Base


class ReminderRecord(Base):
    __tablename__ = "reminders"

    reminder_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    store_id: Mapped[str] = mapped_column(String(64))
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    # JSON snapshot of the Deal at the time the reminder was set
    deal_json: Mapped[str] = mapped_column(Text)
    title: Mapped[str] = mapped_column(String(255))

    remind_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)  # pending | sent | failed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ttl: Mapped[int] = mapped_column(Integer, index=True)
