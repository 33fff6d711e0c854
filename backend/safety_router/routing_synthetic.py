from __future__ import annotations

import math

from .errors import NoRouteFoundError
from .routing_ors import ProviderRoute, polyline_length_km
from .vehicles import get_travel_profile

CURVE_SAMPLES = 80
# Control-point offsets as a share of the straight-line span: left, centre, right.
CURVE_OFFSETS: tuple[float, ...] = (-0.5, 0.0, 0.5)
CURVE_BULGE = 0.15


def bezier_curve(
    start: tuple[float, float],
    control: tuple[float, float],
    end: tuple[float, float],
    samples: int = CURVE_SAMPLES,
) -> list[tuple[float, float]]:
    """Quadratic Bezier through (lon, lat) points, samples + 1 points long."""
    out: list[tuple[float, float]] = []
    for i in range(samples + 1):
        t = i / samples
        a = (1 - t) * (1 - t)
        b = 2 * (1 - t) * t
        c = t * t
        out.append(
            (
                a * start[0] + b * control[0] + c * end[0],
                a * start[1] + b * control[1] + c * end[1],
            )
        )
    return out


class SyntheticRouteProvider:
    """Offline provider: smooth deterministic alternatives between two points."""

    async def aclose(self) -> None:
        return None

    async def get_alternative_routes(
        self,
        *,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
        travel_mode: str,
    ) -> list[ProviderRoute]:
        profile = get_travel_profile(travel_mode)
        start = (origin_lon, origin_lat)
        end = (dest_lon, dest_lat)
        dx = end[0] - start[0]
        dy = end[1] - start[1]
        span = math.hypot(dx, dy)
        if span == 0:
            raise NoRouteFoundError("origin and destination are the same point")

        perp = (-dy / span, dx / span)
        mid = ((start[0] + end[0]) / 2.0, (start[1] + end[1]) / 2.0)

        routes: list[ProviderRoute] = []
        for offset in CURVE_OFFSETS:
            shift = span * CURVE_BULGE * offset
            control = (mid[0] + perp[0] * shift, mid[1] + perp[1] * shift)
            coords = bezier_curve(start, control, end)
            distance_km = polyline_length_km(coords)
            # Curvier alternatives are a little slower.
            speed_kmh = profile.nominal_speed_kmh / (1.0 + abs(offset) * 0.2)
            routes.append(
                ProviderRoute(
                    coordinates=coords,
                    distance_m=distance_km * 1000.0,
                    duration_s=(distance_km / speed_kmh) * 3600.0,
                )
            )
        return routes
