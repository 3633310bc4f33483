from dataclasses import dataclass
from typing import Optional

from dealbot.schemas.location import Place, PlacePhoto
from dealbot.utils.keywords import locality_stop_words
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

MIN_WORD_LENGTH = 3
MIN_SUBSTRING_LENGTH = 6


@dataclass(frozen=True)
class PlaceMatch:
    place: Place
    # False when the place is only a visual fallback, not the business itself
    matched: bool


def _significant_words(name: str) -> list[str]:
    stop = locality_stop_words()
    return [w for w in name.split() if len(w) >= MIN_WORD_LENGTH and w not in stop]


def find_matching_place(business_name: str, places: list[Place]) -> Optional[PlaceMatch]:
    """Exact name, then shared significant word, then substring; else the first place with photos."""
    if not business_name or not places:
        return None
    target = business_name.strip().lower()

    for place in places:
        if place.name.strip().lower() == target:
            logger.debug("find_matching_place — exact: %r = %r", business_name, place.name)
            return PlaceMatch(place, True)

    target_words = _significant_words(target)
    for place in places:
        place_words = _significant_words(place.name.strip().lower())
        if any(b in p or p in b for b in target_words for p in place_words):
            logger.debug("find_matching_place — word overlap: %r ~ %r", business_name, place.name)
            return PlaceMatch(place, True)

    for place in places:
        name = place.name.strip().lower()
        if (name in target and len(name) >= MIN_SUBSTRING_LENGTH) or (target in name and len(target) >= MIN_SUBSTRING_LENGTH):
            logger.debug("find_matching_place — substring: %r ~ %r", business_name, place.name)
            return PlaceMatch(place, True)

    for place in places:
        if place.photos:
            logger.debug("find_matching_place — no match for %r, borrowing photos of %r", business_name, place.name)
            return PlaceMatch(place, False)
    return None


def best_photo(place: Place) -> Optional[PlacePhoto]:
    if not place.photos:
        return None
    return max(place.photos, key=lambda p: p.width * p.height)
