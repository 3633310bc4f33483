"""
Geo + Weather provider
──────────────────────
Reverse/forward geocoding (Google Geocoding API) plus current conditions
and the rest-of-day hourly forecast (Google Weather API).

Every method returns a ProviderResult; httpx errors are classified here and
never reach the caller.
"""
import asyncio
from datetime import datetime

import httpx

from dealbot.config.settings import settings
from dealbot.errors import FailureKind, ProviderResult, classify_status
from dealbot.schemas.location import HourlyEntry, Location, LocationSource, WeatherSnapshot
from dealbot.utils.clock import hour_label, local_now
from dealbot.utils.geo import in_region
from dealbot.utils.logger import get_logger

logger = get_logger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
CURRENT_CONDITIONS_URL = "https://weather.googleapis.com/v1/currentConditions:lookup"
HOURLY_FORECAST_URL = "https://weather.googleapis.com/v1/forecast/hours:lookup"

MIN_FORECAST_HOURS = 3

WEATHER_EMOJI = {
    "CLEAR": "☀️",
    "MOSTLY_CLEAR": "🌤️",
    "PARTLY_CLOUDY": "⛅",
    "CLOUDY": "☁️",
    "OVERCAST": "☁️",
    "RAIN": "🌧️",
    "LIGHT_RAIN": "🌧️",
    "HEAVY_RAIN": "🌧️",
    "RAIN_SHOWERS": "🌦️",
    "SCATTERED_SHOWERS": "🌦️",
    "THUNDERSTORM": "⛈️",
    "SCATTERED_THUNDERSTORMS": "⛈️",
    "FOG": "🌫️",
    "MIST": "🌫️",
    "HAZE": "🌫️",
    "WINDY": "💨",
}


def weather_emoji(condition_type: str | None) -> str:
    return WEATHER_EMOJI.get((condition_type or "").upper(), "🌤️")


def _components(result: dict) -> dict:
    """Flatten address_components into {type: component} (first occurrence wins)."""
    found: dict[str, dict] = {}
    for component in result.get("address_components", []):
        for kind in component.get("types", []):
            found.setdefault(kind, component)
    return found


def _display_name(formatted_address: str, locality: str | None, sublocality: str | None) -> str:
    if sublocality:
        return sublocality
    if locality and locality != settings.region_name:
        return locality
    return (formatted_address or "").split(",")[0].strip() or settings.region_name


class GeoWeatherService:
    def __init__(self, api_key: str | None = None, weather_key: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self.weather_key = weather_key if weather_key is not None else settings.effective_weather_key
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.timeout_default_seconds, transport=self._transport)

    async def _get_json(self, url: str, params: dict, label: str) -> ProviderResult:
        try:
            async with self._client() as client:
                response = await client.get(url, params=params)
            response.raise_for_status()
            return ProviderResult.success(response.json())
        except httpx.HTTPStatusError as e:
            kind = classify_status(e.response.status_code)
            logger.error("%s — provider returned %s (%s)", label, e.response.status_code, kind.value)
            return ProviderResult.failure(kind, f"HTTP {e.response.status_code}")
        except httpx.TimeoutException:
            logger.warning("%s — timed out after %.1fs", label, settings.timeout_default_seconds)
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "timeout")
        except httpx.RequestError as e:
            logger.error("%s — could not reach provider: %s", label, e)
            return ProviderResult.failure(FailureKind.UNAVAILABLE, str(e))
        except ValueError as e:
            logger.error("%s — response was not JSON: %s", label, e)
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "invalid json")

    # ── Geocoding ─────────────────────────────────────────────

    def _location_from_result(self, result: dict, lat: float, lng: float, source: LocationSource) -> ProviderResult:
        comps = _components(result)
        country = comps.get("country", {})
        if country.get("short_name", "").upper() != settings.region.upper():
            logger.info("geocode — %s,%s resolved to country=%r, rejecting", lat, lng, country.get("long_name"))
            return ProviderResult.failure(FailureKind.OUT_OF_REGION, country.get("long_name"))

        locality = comps.get("locality", {}).get("long_name")
        sublocality = (comps.get("sublocality") or comps.get("sublocality_level_1") or comps.get("neighborhood") or {}).get("long_name")
        formatted = result.get("formatted_address", "")
        location = Location(
            latitude=lat,
            longitude=lng,
            display_name=_display_name(formatted, locality, sublocality),
            formatted_address=formatted or None,
            area=sublocality or locality or settings.region_name,
            postal_code=comps.get("postal_code", {}).get("long_name"),
            source=source,
        )
        return ProviderResult.success(location)

    def _status_failure(self, status: str, label: str) -> ProviderResult:
        if status == "ZERO_RESULTS":
            return ProviderResult.failure(FailureKind.UNRESOLVABLE, status)
        if status == "REQUEST_DENIED":
            logger.error("%s — REQUEST_DENIED; check that the key has the Geocoding API enabled", label)
            return ProviderResult.failure(FailureKind.DENIED, status)
        if status in ("OVER_QUERY_LIMIT", "UNKNOWN_ERROR"):
            return ProviderResult.failure(FailureKind.UNAVAILABLE, status)
        return ProviderResult.failure(FailureKind.INVALID, status)

    async def resolve(self, lat: float, lng: float) -> ProviderResult:
        """Reverse geocode. Out-of-box coordinates are rejected without a provider call."""
        if not in_region(lat, lng):
            return ProviderResult.failure(FailureKind.OUT_OF_REGION, "outside region bounds")
        if not self.api_key:
            return ProviderResult.failure(FailureKind.DENIED, "no geocoding key configured")

        fetched = await self._get_json(GEOCODE_URL, {"latlng": f"{lat},{lng}", "key": self.api_key}, "resolve")
        if not fetched.ok:
            return fetched
        data = fetched.value
        if data.get("status") != "OK" or not data.get("results"):
            return self._status_failure(data.get("status", ""), "resolve")
        return self._location_from_result(data["results"][0], lat, lng, LocationSource.GPS)

    async def geocode(self, query: str) -> ProviderResult:
        """Forward geocode a typed place name, restricted to the configured region."""
        if not self.api_key:
            return ProviderResult.failure(FailureKind.DENIED, "no geocoding key configured")
        params = {"address": query, "components": f"country:{settings.region}", "key": self.api_key}
        fetched = await self._get_json(GEOCODE_URL, params, "geocode")
        if not fetched.ok:
            return fetched
        data = fetched.value
        if data.get("status") != "OK" or not data.get("results"):
            return self._status_failure(data.get("status", ""), "geocode")
        result = data["results"][0]
        point = result.get("geometry", {}).get("location", {})
        lat, lng = point.get("lat"), point.get("lng")
        if lat is None or lng is None:
            return ProviderResult.failure(FailureKind.UNRESOLVABLE, "no geometry")
        if not in_region(lat, lng):
            return ProviderResult.failure(FailureKind.OUT_OF_REGION, "outside region bounds")
        return self._location_from_result(result, lat, lng, LocationSource.GEOCODED_SEARCH)

    # ── Weather ───────────────────────────────────────────────

    async def current_weather(self, lat: float, lng: float) -> ProviderResult:
        if not self.weather_key:
            return ProviderResult.failure(FailureKind.DENIED, "no weather key configured")
        params = {"key": self.weather_key, "location.latitude": lat, "location.longitude": lng}
        fetched = await self._get_json(CURRENT_CONDITIONS_URL, params, "current_weather")
        if not fetched.ok:
            return fetched

        data = fetched.value
        condition = data.get("weatherCondition")
        temperature = (data.get("temperature") or {}).get("degrees")
        if not condition or temperature is None:
            return ProviderResult.failure(FailureKind.UNAVAILABLE, "no weather data")

        text = (condition.get("description") or {}).get("text", condition.get("type", ""))
        feels_like = (data.get("feelsLikeTemperature") or {}).get("degrees")
        snapshot = WeatherSnapshot(
            temperature_c=round(temperature),
            feels_like_c=round(feels_like) if feels_like is not None else None,
            condition=condition.get("type", ""),
            emoji=weather_emoji(condition.get("type")),
            description=text.lower(),
            humidity=data.get("relativeHumidity"),
            wind_speed=((data.get("wind") or {}).get("speed") or {}).get("value"),
            is_daytime=bool(data.get("isDaytime", True)),
            display_text=f"{round(temperature)}°C, {text}",
        )
        return ProviderResult.success(snapshot)

    async def hourly_forecast(self, lat: float, lng: float, now: datetime | None = None) -> ProviderResult:
        """Hours left in the user's local day, never fewer than three."""
        if not self.weather_key:
            return ProviderResult.failure(FailureKind.DENIED, "no weather key configured")
        current = now or local_now()
        hours = max(24 - current.hour, MIN_FORECAST_HOURS)
        params = {"key": self.weather_key, "location.latitude": lat, "location.longitude": lng, "hours": hours}
        fetched = await self._get_json(HOURLY_FORECAST_URL, params, "hourly_forecast")
        if not fetched.ok:
            return fetched

        entries = []
        for hour in (fetched.value.get("forecastHours") or [])[:hours]:
            try:
                start = datetime.fromisoformat(hour["interval"]["startTime"].replace("Z", "+00:00"))
                temperature = round(hour["temperature"]["degrees"])
                condition = hour["weatherCondition"]
            except (KeyError, TypeError, ValueError):
                continue
            text = (condition.get("description") or {}).get("text", condition.get("type", ""))
            rain = int(((hour.get("precipitation") or {}).get("probability") or {}).get("percent") or 0)
            label = hour_label(start)
            emoji = weather_emoji(condition.get("type"))
            rain_text = f" ({rain}% rain)" if rain > 20 else ""
            entries.append(HourlyEntry(
                time=label,
                temperature_c=temperature,
                emoji=emoji,
                condition=text,
                rain_chance_pct=rain,
                display_text=f"{label}: {temperature}°C {emoji} {text}{rain_text}",
            ))

        if len(entries) < MIN_FORECAST_HOURS:
            logger.info("hourly_forecast — only %d usable hour(s) returned", len(entries))
            return ProviderResult.failure(FailureKind.UNAVAILABLE, f"{len(entries)} forecast hour(s)")
        return ProviderResult.success(entries)

    async def attach_weather(self, location: Location) -> Location:
        weather, forecast = await asyncio.gather(
            self.current_weather(location.latitude, location.longitude),
            self.hourly_forecast(location.latitude, location.longitude),
        )
        if not weather.ok:
            logger.info("attach_weather — weather unavailable (%s)", weather.kind.value)
        if not forecast.ok:
            logger.info("attach_weather — forecast unavailable (%s)", forecast.kind.value)
        return location.model_copy(update={
            "weather": weather.value if weather.ok else None,
            "hourly_forecast": forecast.value if forecast.ok else None,
        })


geo_weather_service = GeoWeatherService()
