from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    sqlite_url: str = "sqlite:///./dealbot.db"
    log_level: str = "INFO"
    request_log_body_limit: int = 4000
    brand_name: str = "LobangLah"
    default_store_id: str = "lobanglah"

    # Region the bot serves. Coordinates outside the box are rejected
    # before any provider is called; geocoding then confirms the country.
    region: str = "SG"
    region_name: str = "Singapore"
    region_min_lat: float = 1.15
    region_max_lat: float = 1.48
    region_min_lng: float = 103.59
    region_max_lng: float = 104.10
    timezone: str = "Asia/Singapore"
    timezone_label: str = "SGT"

    # Provider credentials
    openai_api_key: str | None = None
    google_maps_api_key: str | None = None
    weather_api_key: str | None = None      # falls back to google_maps_api_key

    # AI Models
    chat_model: str = "gpt-4o-mini"                     # Chat follow-up answers
    search_model: str = "gpt-4o-mini-search-preview"    # Grounded deal discovery

    # Timeouts
    timeout_default_ms: int = 10_000
    timeout_language_model_ms: int = 20_000

    # Retention
    session_ttl_hours: int = 24
    deal_ttl_days: int = 7
    deal_end_date_days: int = 30
    deal_freshness_days: int = 7
    reminder_ttl_hours: int = 48
    cap_conversation: int = 20
    cap_sent_messages: int = 50
    cap_shared_deal_ids: int = 200
    cap_processed_events: int = 50

    # Search behaviour
    radius_km_exact: float = 1.0
    places_radius_m: float = 1000.0
    places_max_results: int = 10
    photo_max_width_px: int = 400
    deals_per_search: int = 5
    deal_scan_limit: int = 200

    # Conversation behaviour
    chat_turn_quota: int = 10
    chat_history_window: int = 10
    chat_reply_max_chars: int = 500
    greeting_reset_minutes: int = 30

    # WhatsApp Cloud API
    whatsapp_api_version: str = "v19.0"
    whatsapp_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_verify_token: str = ""
    whatsapp_app_secret: str = ""
    reminder_dispatch_token: str = ""       # shared secret for POST /api/reminders/dispatch
    # NOTE: when set, deals are sent as one carousel template instead of per-deal cards
    deal_carousel_template: str | None = None
    deal_carousel_language: str = "en"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def timeout_default_seconds(self) -> float:
        return self.timeout_default_ms / 1000

    @property
    def timeout_language_model_seconds(self) -> float:
        return self.timeout_language_model_ms / 1000

    @property
    def effective_weather_key(self) -> str | None:
        return self.weather_api_key or self.google_maps_api_key

    @property
    def whatsapp_messages_url(self) -> str:
        return (
            f"https://graph.facebook.com/{self.whatsapp_api_version}"
            f"/{self.whatsapp_phone_number_id}/messages"
        )


settings = Settings()
