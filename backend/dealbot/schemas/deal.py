from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Photo(BaseModel):
    url: str
    width: int = 0
    height: int = 0


class Deal(BaseModel):
    """A discovered offer. ``deal_id`` is assigned by the repository at write time."""
    deal_id: Optional[str] = None
    business_name: str
    offer: str = "Special Deal"
    description: str = ""
    full_description: Optional[str] = None
    address: str = ""
    location_label: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    place_id: Optional[str] = None
    category: str
    validity: str = "Limited time"
    contact: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    social_media_source: str = "web"
    rating: Optional[float] = None
    photos: list[Photo] = Field(default_factory=list)
    source_url: Optional[str] = None
    checked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    timestamp: Optional[int] = None           # ms since epoch, ranking tie-breaker
    ttl: Optional[int] = None                 # unix seconds

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.business_name)

    @property
    def photo_url(self) -> Optional[str]:
        return self.photos[0].url if self.photos else None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class ChatContext(BaseModel):
    """Frozen snapshot of a result set the user is asking follow-up questions about."""
    deals: list[Deal] = Field(default_factory=list)
    category: Optional[str] = None
    location_label: str = ""


def normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def dedupe_by_name(deals: list[Deal]) -> list[Deal]:
    """Drop deals whose normalized business name was already seen; first occurrence wins."""
    seen: set[str] = set()
    unique = []
    for deal in deals:
        key = deal.normalized_name
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(deal)
    return unique


# Tie-breaker order on deal sources; youtube and reddit share a rank.
SOCIAL_PRIORITY = {
    "instagram": 6,
    "tiktok": 5,
    "facebook": 4,
    "telegram": 3,
    "whatsapp": 2,
    "youtube": 1,
    "reddit": 1,
    "web": 0,
}


def social_priority(source: Optional[str]) -> int:
    return SOCIAL_PRIORITY.get((source or "web").strip().lower(), 0)
