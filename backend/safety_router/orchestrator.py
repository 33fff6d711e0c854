from __future__ import annotations

import asyncio
import time
import uuid

from .errors import NoRouteFoundError
from .hazard_state import HazardState, HazardStateStore
from .logging_utils import log_event
from .models import GeoJSONLineString, RouteScoreRequest, RouteScoreResponse, ScoredRoute
from .routing_ors import ProviderRoute, RouteProvider, polyline_length_km
from .scoring import RouteAttributes, compute_score_breakdown
from .settings import settings
from .time_of_day import classify_time_of_day
from .vehicles import get_travel_profile
from .weather_cache import WeatherCache, WeatherFetcher
from .weather_open_meteo import WeatherSample


def route_midpoint(coords: list[tuple[float, float]]) -> tuple[float, float]:
    """Midpoint of a route's end points as (lat, lon)."""
    (lon1, lat1), (lon2, lat2) = coords[0], coords[-1]
    return (lat1 + lat2) / 2.0, (lon1 + lon2) / 2.0


def _distance_and_duration(route: ProviderRoute, travel_mode: str) -> tuple[float, float]:
    # If the provider omits these, derive them from the geometry.
    if route.distance_m is not None:
        distance_km = route.distance_m / 1000.0
    else:
        distance_km = polyline_length_km(route.coordinates)
    if route.duration_s is not None:
        travel_time_min = route.duration_s / 60.0
    else:
        travel_time_min = (distance_km / get_travel_profile(travel_mode).nominal_speed_kmh) * 60.0
    return distance_km, travel_time_min


class RouteScoringOrchestrator:
    """Fetches candidates, resolves weather per candidate and scores each one."""

    def __init__(
        self,
        *,
        provider: RouteProvider,
        store: HazardStateStore,
        weather_cache: WeatherCache,
        weather_fetcher: WeatherFetcher | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._weather_cache = weather_cache
        self._weather_fetcher = weather_fetcher

    async def _weather_for(self, route: ProviderRoute) -> WeatherSample | None:
        if self._weather_fetcher is None:
            return None
        lat, lon = route_midpoint(route.coordinates)
        return await self._weather_cache.get(lat, lon, self._weather_fetcher)

    def _score_one(
        self,
        route_id: str,
        route: ProviderRoute,
        *,
        req: RouteScoreRequest,
        state: HazardState,
        time_of_day: str,
        weather: WeatherSample | None,
    ) -> ScoredRoute:
        distance_km, travel_time_min = _distance_and_duration(route, req.travel_mode)
        breakdown = compute_score_breakdown(
            RouteAttributes(distance_km=distance_km, point_count=len(route.coordinates)),
            state,
            travel_mode=req.travel_mode,
            time_of_day=time_of_day,
            toggles=req.toggles,
            weather=weather,
            mode=req.scoring_mode,
            crowd_convention=req.crowd_convention,
        )
        return ScoredRoute(
            id=route_id,
            geometry=GeoJSONLineString(type="LineString", coordinates=route.coordinates),
            distance_km=round(distance_km, 2),
            travel_time_min=round(travel_time_min, 1),
            breakdown=breakdown,
        )

    async def score_routes(self, req: RouteScoreRequest) -> RouteScoreResponse:
        request_id = str(uuid.uuid4())
        t0 = time.perf_counter()

        candidates = await self._provider.get_alternative_routes(
            origin_lat=req.origin.lat,
            origin_lon=req.origin.lon,
            dest_lat=req.destination.lat,
            dest_lon=req.destination.lon,
            travel_mode=req.travel_mode,
        )
        candidates = [c for c in candidates if len(c.coordinates) >= 2]
        if not candidates:
            raise NoRouteFoundError("No route found")

        # One snapshot per request so every candidate is scored against the same state.
        state = self._store.read()
        time_of_day = req.time_of_day or classify_time_of_day(req.departure_time, fallback=state.time_of_day)

        if req.use_live_weather and settings.live_weather_enabled:
            samples = await asyncio.gather(*[self._weather_for(c) for c in candidates])
        else:
            samples = [None] * len(candidates)

        scored = [
            self._score_one(
                f"route_{i + 1}",
                route,
                req=req,
                state=state,
                time_of_day=time_of_day,
                weather=sample,
            )
            for i, (route, sample) in enumerate(zip(candidates, samples, strict=True))
        ]
        scored.sort(key=lambda r: (-r.breakdown.final_score, r.travel_time_min))

        weather = next((s for s in samples if s is not None), None)
        log_event(
            "route_scoring_request",
            request_id=request_id,
            travel_mode=req.travel_mode,
            time_of_day=time_of_day,
            hazard_version=state.version,
            candidate_count=len(scored),
            recommended_route_id=scored[0].id,
            recommended_score=scored[0].breakdown.final_score,
            weather_degraded=bool(weather.degraded) if weather is not None else None,
            duration_ms=round((time.perf_counter() - t0) * 1000, 2),
        )

        return RouteScoreResponse(
            routes=scored,
            recommended_route_id=scored[0].id,
            travel_mode=req.travel_mode,
            time_of_day=time_of_day,
            hazard_version=state.version,
            weather=weather,
        )
