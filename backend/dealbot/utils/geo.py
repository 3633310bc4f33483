import math

from dealbot.config.settings import settings

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def valid_coordinates(lat, lng) -> bool:
    if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
        return False
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def in_region(lat: float, lng: float) -> bool:
    """True when the point lies inside the configured region's bounding box."""
    return (
        settings.region_min_lat <= lat <= settings.region_max_lat
        and settings.region_min_lng <= lng <= settings.region_max_lng
    )
