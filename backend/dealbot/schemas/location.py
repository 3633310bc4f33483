from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class LocationSource(str, Enum):
    GPS = "gps"
    GEOCODED_SEARCH = "geocoded_search"


class WeatherSnapshot(BaseModel):
    temperature_c: float
    feels_like_c: Optional[float] = None
    condition: str
    emoji: str
    description: str
    humidity: Optional[float] = None
    wind_speed: Optional[float] = None
    is_daytime: bool = True
    display_text: str


class HourlyEntry(BaseModel):
    time: str                      # "3PM"
    temperature_c: float
    emoji: str
    condition: str
    rain_chance_pct: int = 0
    display_text: str


class Location(BaseModel):
    latitude: float
    longitude: float
    display_name: str
    formatted_address: Optional[str] = None
    area: Optional[str] = None
    postal_code: Optional[str] = None
    weather: Optional[WeatherSnapshot] = None
    hourly_forecast: Optional[list[HourlyEntry]] = None
    source: LocationSource = LocationSource.GPS

    @property
    def label(self) -> str:
        return self.display_name or self.area or self.formatted_address or ""


class Place(BaseModel):
    """A nearby business returned by the places provider."""
    place_id: str
    name: str
    rating: Optional[float] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    photos: list["PlacePhoto"] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)
    phone: Optional[str] = None
    website: Optional[str] = None


class PlacePhoto(BaseModel):
    reference: str
    width: int = 0
    height: int = 0


Place.model_rebuild()
