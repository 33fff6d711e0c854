from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_SCORING_MODES = {"profile_based", "toggle_based"}
_CROWD_CONVENTIONS = {"congestion_penalty", "safety_in_numbers"}
_ROUTING_PROVIDERS = {"ors", "synthetic"}


class Settings(BaseSettings):
    """Runtime configuration; every field reads from the environment or a .env file."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default="out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(default="http://localhost:5173", alias="CORS_ORIGINS")

    # Routing provider
    routing_provider: str = Field(default="ors", alias="ROUTING_PROVIDER")
    ors_base_url: str = Field(default="https://api.openrouteservice.org", alias="ORS_BASE_URL")
    ors_api_key: str = Field(default="", alias="ORS_API_KEY")
    ors_alternative_count: int = Field(default=3, ge=1, le=3, alias="ORS_ALTERNATIVE_COUNT")
    ors_share_factor: float = Field(default=0.6, gt=0.0, le=1.0, alias="ORS_SHARE_FACTOR")
    ors_weight_factor: float = Field(default=1.4, ge=1.0, le=5.0, alias="ORS_WEIGHT_FACTOR")
    routing_timeout_s: float = Field(default=15.0, ge=1.0, le=120.0, alias="ROUTING_TIMEOUT_S")
    routing_max_retries: int = Field(default=3, ge=1, le=10, alias="ROUTING_MAX_RETRIES")

    # Weather provider + cache
    live_weather_enabled: bool = Field(default=True, alias="LIVE_WEATHER_ENABLED")
    open_meteo_forecast_url: str = Field(
        default="https://api.open-meteo.com/v1/forecast",
        alias="OPEN_METEO_FORECAST_URL",
    )
    weather_timeout_s: float = Field(default=5.0, ge=0.5, le=60.0, alias="WEATHER_TIMEOUT_S")
    weather_max_attempts: int = Field(default=2, ge=1, le=5, alias="WEATHER_MAX_ATTEMPTS")
    weather_cache_ttl_s: int = Field(default=600, ge=1, alias="WEATHER_CACHE_TTL_S")
    weather_cache_max_entries: int = Field(default=2048, ge=1, alias="WEATHER_CACHE_MAX_ENTRIES")
    # Short negative cache for the degraded fallback sample; 0 disables it.
    weather_fallback_ttl_s: int = Field(default=30, ge=0, alias="WEATHER_FALLBACK_TTL_S")

    # Scoring
    scoring_mode: str = Field(default="toggle_based", alias="SCORING_MODE")
    crowd_convention: str = Field(default="congestion_penalty", alias="CROWD_CONVENTION")
    crowd_spike_penalty: float = Field(default=20.0, ge=0.0, le=30.0, alias="CROWD_SPIKE_PENALTY")
    construction_penalty: float = Field(default=15.0, ge=0.0, le=20.0, alias="CONSTRUCTION_PENALTY")
    weather_window_s: int = Field(default=3600, ge=60, alias="WEATHER_WINDOW_S")
    night_start_hour: int = Field(default=20, ge=0, le=23, alias="NIGHT_START_HOUR")
    night_end_hour: int = Field(default=6, ge=0, le=23, alias="NIGHT_END_HOUR")

    # Observer channel
    broadcast_queue_size: int = Field(default=64, ge=1, le=10_000, alias="BROADCAST_QUEUE_SIZE")
    vehicle_feed_interval_s: float = Field(default=5.0, ge=0.0, alias="VEHICLE_FEED_INTERVAL_S")
    vehicle_feed_start_lat: float = Field(default=19.0760, ge=-90, le=90, alias="VEHICLE_FEED_START_LAT")
    vehicle_feed_start_lon: float = Field(default=72.8777, ge=-180, le=180, alias="VEHICLE_FEED_START_LON")

    @model_validator(mode="after")
    def _normalise_choices(self) -> "Settings":
        mode = str(self.scoring_mode or "").strip().lower()
        self.scoring_mode = mode if mode in _SCORING_MODES else "toggle_based"
        convention = str(self.crowd_convention or "").strip().lower()
        self.crowd_convention = convention if convention in _CROWD_CONVENTIONS else "congestion_penalty"
        provider = str(self.routing_provider or "").strip().lower()
        self.routing_provider = provider if provider in _ROUTING_PROVIDERS else "ors"
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
