from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

TravelMode = Literal["car", "truck", "bike", "pedestrian"]
DEFAULT_TRAVEL_MODE: TravelMode = "car"


class TravelProfile(BaseModel):
    id: TravelMode
    label: str
    ors_profile: str
    # Fixed night penalty used by the profile-based scoring mode.
    darkness_penalty: float = Field(..., ge=0.0)
    # Used to estimate travel time when the provider omits a duration.
    nominal_speed_kmh: float = Field(..., gt=0.0)


TRAVEL_PROFILES: dict[str, TravelProfile] = {
    "car": TravelProfile(
        id="car",
        label="Car",
        ors_profile="driving-car",
        darkness_penalty=10.0,
        nominal_speed_kmh=40.0,
    ),
    "truck": TravelProfile(
        id="truck",
        label="Truck",
        ors_profile="driving-hgv",
        darkness_penalty=12.0,
        nominal_speed_kmh=32.0,
    ),
    "bike": TravelProfile(
        id="bike",
        label="Bicycle",
        ors_profile="cycling-regular",
        darkness_penalty=15.0,
        nominal_speed_kmh=15.0,
    ),
    "pedestrian": TravelProfile(
        id="pedestrian",
        label="Pedestrian",
        ors_profile="foot-walking",
        darkness_penalty=20.0,
        nominal_speed_kmh=5.0,
    ),
}

# Raw ORS profile names are accepted too.
_ALIASES: dict[str, str] = {p.ors_profile: p.id for p in TRAVEL_PROFILES.values()}


def get_travel_profile(mode: str) -> TravelProfile:
    key = str(mode or "").strip().lower()
    key = _ALIASES.get(key, key)
    profile = TRAVEL_PROFILES.get(key)
    if profile is None:
        raise KeyError(f"Unknown travel mode: {mode}")
    return profile
