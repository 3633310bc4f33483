"""
Session Record Model
────────────────────
One row per (store id, user id). The whole conversational record is kept
as a single JSON document so a save is one atomic row write.
"""
from sqlalchemy import BigInteger, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealbot.database.engine import Base


class SessionRecord(Base):
    __tablename__ = "user_sessions"

    # "{store_id}:{user_id}"
    session_key: Mapped[str] = mapped_column(String(160), primary_key=True)
    store_id: Mapped[str] = mapped_column(String(64), index=True)

    # WhatsApp phone number (E.164 format without '+', e.g. "6591234567")
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    # Serialized UserSession with None-valued attributes stripped
    data_json: Mapped[str] = mapped_column(Text, default="{}")

    last_interaction: Mapped[str | None] = mapped_column(String(40), nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, default=0)

    # Unix seconds; rows past their ttl read as absent and are purged at startup
    ttl: Mapped[int] = mapped_column(Integer, index=True)
