"""Safety scoring.

`compute_score_breakdown` is a pure function of its arguments: it reads the
hazard snapshot and weather sample it is handed and never touches the shared
store or cache. Two scoring modes coexist because the deployed formula
changed over time; they differ only in the darkness term and configuration
picks one.

    final = clamp(100 - (weather + crowd + darkness + construction + distance), 0, 100)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .hazard_state import HazardState
from .logging_utils import log_event
from .settings import settings
from .vehicles import get_travel_profile
from .weather_open_meteo import WeatherSample

BASE_SCORE = 100.0
DISTANCE_PENALTY_PER_KM = 2.0

# Distance and polyline bands.
LONG_ROUTE_KM = 7.0
LONG_NIGHT_ROUTE_KM = 6.0
DENSE_POLYLINE_POINTS = 150
STORM_PENALTY_LONG = 25.0
STORM_PENALTY_SHORT = 12.0
CROWD_PENALTY_LONG = 20.0
CROWD_PENALTY_SHORT = 10.0
DARKNESS_PENALTY_LONG = 15.0
DARKNESS_PENALTY_SHORT = 8.0
CONSTRUCTION_PENALTY_DENSE = 15.0
CONSTRUCTION_PENALTY_SPARSE = 5.0


class ScoringMode(str, Enum):
    PROFILE_BASED = "profile_based"
    TOGGLE_BASED = "toggle_based"


class CrowdConvention(str, Enum):
    # Crowding means congestion: always a penalty.
    CONGESTION_PENALTY = "congestion_penalty"
    # Crowding means safety in numbers: reported as a negative penalty (bonus).
    SAFETY_IN_NUMBERS = "safety_in_numbers"


def default_scoring_mode() -> ScoringMode:
    return ScoringMode(settings.scoring_mode)


def default_crowd_convention() -> CrowdConvention:
    return CrowdConvention(settings.crowd_convention)


@dataclass(frozen=True)
class RouteAttributes:
    distance_km: float
    point_count: int


class ScoringToggles(BaseModel):
    """Per-request overrides; None falls back to the hazard state."""

    storm: bool | None = None
    crowd_spike: bool | None = None
    construction: bool | None = None


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_score: float = BASE_SCORE
    weather_penalty: float = Field(..., ge=0.0)
    crowd_penalty: float
    darkness_penalty: float = Field(..., ge=0.0)
    construction_penalty: float = Field(..., ge=0.0)
    distance_penalty: float = Field(..., ge=0.0)
    final_score: float = Field(..., ge=0.0, le=100.0)
    scoring_mode: ScoringMode
    crowd_convention: CrowdConvention
    weather_source: str
    explanations: tuple[str, ...] = ()


def _safe_distance(distance_km: float) -> float:
    d = float(distance_km)
    if not math.isfinite(d) or d < 0:
        return 0.0
    return d


def _toggle(override: bool | None, state_flag: bool) -> bool:
    return state_flag if override is None else bool(override)


def _clamp_final(raw: float) -> float:
    if not math.isfinite(raw):
        log_event("score_invariant_repaired", level=logging.ERROR, raw_score=repr(raw))
        return 0.0
    return max(0.0, min(BASE_SCORE, raw))


def compute_score_breakdown(
    route: RouteAttributes,
    state: HazardState,
    *,
    travel_mode: str = "car",
    time_of_day: str | None = None,
    toggles: ScoringToggles | None = None,
    weather: WeatherSample | None = None,
    mode: ScoringMode | None = None,
    crowd_convention: CrowdConvention | None = None,
) -> ScoreBreakdown:
    mode = mode or default_scoring_mode()
    crowd_convention = crowd_convention or default_crowd_convention()
    toggles = toggles or ScoringToggles()
    distance_km = _safe_distance(route.distance_km)
    is_long = distance_km > LONG_ROUTE_KM
    night = (time_of_day or state.time_of_day) == "night"
    explanations: list[str] = []

    storm_on = _toggle(toggles.storm, state.storm_active)
    crowd_on = _toggle(toggles.crowd_spike, state.crowd_active)
    construction_on = _toggle(toggles.construction, state.construction_active)

    # Weather
    if weather is not None and not weather.degraded:
        weather_penalty = float(weather.penalty)
        weather_source = "live"
        if weather_penalty > 0:
            explanations.append(f"Live weather '{weather.condition}' adds {weather_penalty:.1f}")
    else:
        weather_penalty = (STORM_PENALTY_LONG if is_long else STORM_PENALTY_SHORT) if storm_on else 0.0
        weather_source = "toggle" if storm_on else "none"
        if storm_on:
            explanations.append(f"Storm toggle active adds {weather_penalty:.1f}")

    # Crowd
    crowd_magnitude = (CROWD_PENALTY_LONG if is_long else CROWD_PENALTY_SHORT) if crowd_on else 0.0
    if crowd_convention == CrowdConvention.SAFETY_IN_NUMBERS:
        crowd_penalty = -crowd_magnitude if crowd_magnitude > 0 else 0.0
        if crowd_magnitude > 0:
            explanations.append(f"Crowding treated as safety in numbers, bonus {crowd_magnitude:.1f}")
    else:
        crowd_penalty = crowd_magnitude
        if crowd_magnitude > 0:
            explanations.append(f"Crowding adds {crowd_magnitude:.1f}")

    # Darkness: the only term that depends on the scoring mode.
    darkness_penalty = 0.0
    if night:
        if mode == ScoringMode.TOGGLE_BASED:
            darkness_penalty = DARKNESS_PENALTY_LONG if distance_km > LONG_NIGHT_ROUTE_KM else DARKNESS_PENALTY_SHORT
        else:
            darkness_penalty = get_travel_profile(travel_mode).darkness_penalty
        explanations.append(f"Night travel adds {darkness_penalty:.1f}")

    # Construction
    if construction_on:
        construction_penalty = (
            CONSTRUCTION_PENALTY_DENSE if route.point_count > DENSE_POLYLINE_POINTS else CONSTRUCTION_PENALTY_SPARSE
        )
    else:
        construction_penalty = 0.0
    if construction_penalty > 0:
        explanations.append(f"Construction adds {construction_penalty:.1f}")

    distance_penalty = distance_km * DISTANCE_PENALTY_PER_KM

    total = weather_penalty + crowd_penalty + darkness_penalty + construction_penalty + distance_penalty
    final_score = _clamp_final(BASE_SCORE - total)

    return ScoreBreakdown(
        base_score=round(BASE_SCORE, 1),
        weather_penalty=round(weather_penalty, 1),
        crowd_penalty=round(crowd_penalty, 1),
        darkness_penalty=round(darkness_penalty, 1),
        construction_penalty=round(construction_penalty, 1),
        distance_penalty=round(distance_penalty, 1),
        final_score=round(final_score, 1),
        scoring_mode=mode,
        crowd_convention=crowd_convention,
        weather_source=weather_source,
        explanations=tuple(explanations),
    )
