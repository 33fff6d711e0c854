from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from .hazard_state import HazardState
from .scoring import CrowdConvention, ScoreBreakdown, ScoringMode, ScoringToggles
from .vehicles import TravelMode
from .weather_open_meteo import WeatherSample


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)

    @model_validator(mode="before")
    @classmethod
    def accept_lon_lat_pair(cls, value: object) -> object:
        # Map clients send [lon, lat] arrays.
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ValueError("coordinate pairs must be [lon, lat]")
            return {"lon": value[0], "lat": value[1]}
        return value


class GeoJSONLineString(BaseModel):
    type: Literal["LineString"]
    coordinates: list[tuple[float, float]]  # [lon, lat]


class RouteScoreRequest(BaseModel):
    origin: LatLng
    destination: LatLng
    travel_mode: TravelMode = "car"
    time_of_day: Literal["day", "night"] | None = None
    departure_time: datetime | None = None
    toggles: ScoringToggles | None = None
    scoring_mode: ScoringMode | None = None
    crowd_convention: CrowdConvention | None = None
    use_live_weather: bool = True

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_aliases(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        if "travel_mode" not in data:
            for key in ("vehicle_type", "vehicleType"):
                if key in data:
                    data["travel_mode"] = data[key]
                    break
        if "time_of_day" not in data and "timeOfDay" in data:
            data["time_of_day"] = data["timeOfDay"]
        return data


class ScoredRoute(BaseModel):
    id: str
    geometry: GeoJSONLineString
    distance_km: float
    travel_time_min: float
    breakdown: ScoreBreakdown


class RouteScoreResponse(BaseModel):
    routes: list[ScoredRoute]
    recommended_route_id: str
    travel_mode: TravelMode
    time_of_day: Literal["day", "night"]
    hazard_version: int
    weather: WeatherSample | None = None


class HazardEventRequest(BaseModel):
    event: str = Field(..., min_length=1)
    active: bool | None = None
    value: float | str | None = None


class HazardEventResponse(BaseModel):
    success: bool
    event: str
    message: str
    state: HazardState
