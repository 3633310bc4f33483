"""
Deal Record Model
─────────────────
Deals discovered by the acquisition pipeline, kept for reuse by later
searches near the same place. Rows carry their own ttl.
"""
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealbot.database.engine import Base


class DealRecord(Base):
    __tablename__ = "deals"

    deal_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    category: Mapped[str] = mapped_column(String(32), index=True)

    business_name: Mapped[str] = mapped_column(String(255))
    offer: Mapped[str] = mapped_column(Text, default="Special Deal")
    description: Mapped[str] = mapped_column(Text, default="")
    full_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(Text, default="")
    validity: Mapped[str] = mapped_column(String(255), default="Limited time")
    contact: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Label of the searched location ("Marina Bay"), used for textual matching
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    place_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    social_media_source: Mapped[str] = mapped_column(String(32), default="web")
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)

    # JSON list of {url, width, height}
    photos_json: Mapped[str] = mapped_column(Text, default="[]")
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    timestamp: Mapped[int] = mapped_column(BigInteger)
    ttl: Mapped[int] = mapped_column(Integer, index=True)
