"""
Shared fixtures.

Env vars are set before any dealbot import so the module-level Settings
singleton and engine point at an in-memory database and no real
credentials are picked up.
"""
import os

os.environ["SQLITE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")
for _var in ("OPENAI_API_KEY", "GOOGLE_MAPS_API_KEY", "WEATHER_API_KEY", "WHATSAPP_TOKEN", "WHATSAPP_APP_SECRET"):
    os.environ.pop(_var, None)

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from dealbot.database.engine import Base, build_engine
from dealbot.database.models.deal_record import DealRecord  # noqa: F401
from dealbot.database.models.reminder_record import ReminderRecord  # noqa: F401
from dealbot.database.models.session_record import SessionRecord  # noqa: F401
from dealbot.schemas.deal import Deal
from dealbot.schemas.location import Location, WeatherSnapshot

MARINA_BAY = (1.2834, 103.8607)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def location():
    return Location(
        latitude=MARINA_BAY[0],
        longitude=MARINA_BAY[1],
        display_name="Marina Bay",
        formatted_address="10 Bayfront Ave, Singapore 018956",
        area="Downtown Core",
        postal_code="018956",
        weather=WeatherSnapshot(
            temperature_c=31,
            condition="PARTLY_CLOUDY",
            emoji="⛅",
            description="partly cloudy",
            display_text="31°C, Partly cloudy",
        ),
    )


@pytest.fixture
def make_deal():
    def _make(name: str = "Toast Box", category: str = "food", **overrides) -> Deal:
        fields = {
            "business_name": name,
            "offer": "1-for-1 kaya toast set",
            "description": "1-for-1 kaya toast set",
            "address": "10 Bayfront Ave, Marina Bay Sands, Singapore 018956",
            "category": category,
            "validity": "Until 31 Dec",
        }
        fields.update(overrides)
        return Deal(**fields)

    return _make


@pytest.fixture
def utc_now():
    return datetime.now(timezone.utc)


@pytest.fixture
def days_ago(utc_now):
    return lambda n: utc_now - timedelta(days=n)
