import httpx

from dealbot.config.settings import settings
from dealbot.errors import FailureKind, ProviderResult, classify_status
from dealbot.schemas.location import Place, PlacePhoto
from dealbot.utils.keywords import category_info
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

NEARBY_URL = "https://places.googleapis.com/v1/places:searchNearby"
LEGACY_PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"

FIELD_MASK = ",".join([
    "places.displayName",
    "places.id",
    "places.rating",
    "places.priceLevel",
    "places.formattedAddress",
    "places.photos",
    "places.types",
    "places.location",
    "places.nationalPhoneNumber",
    "places.websiteUri",
])

# Category place types use short names; Places API v1 spells a few differently
PLACES_API_TYPES = {
    "takeaway": "meal_takeaway",
    "cinema": "movie_theater",
}


def place_types_for(category: str) -> list[str]:
    return [PLACES_API_TYPES.get(t, t) for t in category_info(category).get("place_types", [])]


def _to_place(raw: dict) -> Place | None:
    place_id = raw.get("id")
    name = (raw.get("displayName") or {}).get("text")
    if not place_id or not name:
        return None
    location = raw.get("location") or {}
    return Place(
        place_id=place_id,
        name=name,
        rating=raw.get("rating"),
        address=raw.get("formattedAddress"),
        latitude=location.get("latitude"),
        longitude=location.get("longitude"),
        photos=[
            PlacePhoto(reference=p["name"], width=p.get("widthPx", 0), height=p.get("heightPx", 0))
            for p in raw.get("photos") or []
            if p.get("name")
        ],
        types=raw.get("types") or [],
        phone=raw.get("nationalPhoneNumber"),
        website=raw.get("websiteUri"),
    )


class PlacesService:
    def __init__(self, api_key: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self._transport = transport

    async def nearby(self, lat: float, lng: float, category: str, radius_m: float | None = None) -> ProviderResult:
        """Nearby businesses for the category, in provider order."""
        types = place_types_for(category)
        if not types:
            return ProviderResult.failure(FailureKind.INVALID, f"unknown category {category!r}")
        if not self.api_key:
            return ProviderResult.failure(FailureKind.DENIED, "no places key configured")

        body = {
            "includedTypes": types,
            "maxResultCount": settings.places_max_results,
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": lat, "longitude": lng},
                    "radius": radius_m or settings.places_radius_m,
                }
            },
        }
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": FIELD_MASK,
        }

        try:
            async with httpx.AsyncClient(timeout=settings.timeout_default_seconds, transport=self._transport) as client:
                response = await client.post(NEARBY_URL, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            kind = classify_status(e.response.status_code)
            logger.error("nearby — Places API returned %s (%s)", e.response.status_code, kind.value)
            return ProviderResult.failure(kind, f"HTTP {e.response.status_code}")
        except httpx.TimeoutException:
            logger.warning("nearby — Places API timed out")
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "timeout")
        except httpx.RequestError as e:
            logger.error("nearby — could not reach Places API: %s", e)
            return ProviderResult.failure(FailureKind.UNAVAILABLE, str(e))
        except ValueError:
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "invalid json")

        places = [p for p in (_to_place(raw) for raw in data.get("places") or []) if p is not None]
        logger.info("nearby — %d %s places around %.4f,%.4f", len(places), category, lat, lng)
        return ProviderResult.success(places)

    def photo_url(self, photo_ref: str, max_width_px: int | None = None) -> str:
        width = max_width_px or settings.photo_max_width_px
        if photo_ref.startswith("places/"):
            return f"https://places.googleapis.com/v1/{photo_ref}/media?maxWidthPx={width}&key={self.api_key}"
        return f"{LEGACY_PHOTO_URL}?maxwidth={width}&photo_reference={photo_ref}&key={self.api_key}"


places_service = PlacesService()
