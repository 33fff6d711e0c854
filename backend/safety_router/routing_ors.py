# backend/safety_router/routing_ors.py
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Final, Protocol

import httpx

from .errors import NoRouteFoundError, RoutingUnavailableError
from .logging_utils import log_event
from .settings import settings
from .vehicles import get_travel_profile

_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}
# ORS application codes meaning "no route between these points".
_NO_ROUTE_CODES: Final[set[int]] = {2009, 2010}

EARTH_RADIUS_KM = 6371.0088


@dataclass(frozen=True)
class ProviderRoute:
    coordinates: list[tuple[float, float]]  # [lon, lat]
    distance_m: float | None
    duration_s: float | None


class RouteProvider(Protocol):
    async def get_alternative_routes(
        self,
        *,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
        travel_mode: str,
    ) -> list[ProviderRoute]: ...

    async def aclose(self) -> None: ...


def haversine_km(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Great-circle distance between two (lon, lat) points."""
    lon1, lat1 = map(math.radians, a)
    lon2, lat2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def polyline_length_km(coords: list[tuple[float, float]]) -> float:
    return sum(haversine_km(coords[i], coords[i + 1]) for i in range(len(coords) - 1))


def _format_ors_error(resp: httpx.Response) -> tuple[str, int | None]:
    """Best-effort decode of ORS JSON error payloads: (message, ors_code)."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            code = err.get("code")
            message = err.get("message") or ""
            return f"ORS {resp.status_code} {code}: {message}".strip(), code if isinstance(code, int) else None
        if isinstance(err, str):
            return f"ORS {resp.status_code}: {err}", None

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    if body:
        return f"ORS {resp.status_code}: {body}", None
    return f"ORS HTTP {resp.status_code}", None


def _parse_coordinates(raw: Any) -> list[tuple[float, float]]:
    out: list[tuple[float, float]] = []
    if not isinstance(raw, list):
        return out
    for pt in raw:
        # ORS may append elevation as a third value.
        if (
            isinstance(pt, (list, tuple))
            and len(pt) >= 2
            and isinstance(pt[0], (int, float))
            and isinstance(pt[1], (int, float))
        ):
            out.append((float(pt[0]), float(pt[1])))
    return out


def _positive_or_none(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return None


def parse_directions_payload(data: Any) -> list[ProviderRoute]:
    if not isinstance(data, dict):
        raise RoutingUnavailableError("ORS returned a non-object payload", reason_code="routing_provider_bad_response")

    features = data.get("features")
    if not isinstance(features, list) or not features:
        raise NoRouteFoundError("ORS returned no routes")

    routes: list[ProviderRoute] = []
    for feature in features:
        if not isinstance(feature, dict):
            continue
        coords = _parse_coordinates((feature.get("geometry") or {}).get("coordinates"))
        if len(coords) < 2:
            continue
        summary = (feature.get("properties") or {}).get("summary") or {}
        routes.append(
            ProviderRoute(
                coordinates=coords,
                distance_m=_positive_or_none(summary.get("distance")),
                duration_s=_positive_or_none(summary.get("duration")),
            )
        )
    if not routes:
        raise NoRouteFoundError("ORS routes had no usable geometry")
    return routes


class ORSClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.ors_base_url).rstrip("/")
        self._api_key = (settings.ors_api_key if api_key is None else api_key).strip()
        self.max_retries = max(1, int(max_retries or settings.routing_max_retries))
        timeout = float(timeout_s or settings.routing_timeout_s)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            headers={"accept": "application/json, application/geo+json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_alternative_routes(
        self,
        *,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
        travel_mode: str,
    ) -> list[ProviderRoute]:
        """Fetch alternative routes from the ORS directions API.

        Raises RoutingUnavailableError when the service is unreachable,
        misconfigured or out of retries, and NoRouteFoundError when ORS
        answers that no route connects the two points.
        """
        if not self._api_key:
            raise RoutingUnavailableError(
                "ORS_API_KEY is not set; get a key at https://openrouteservice.org/dev/#/signup",
                reason_code="routing_provider_misconfigured",
            )

        profile = get_travel_profile(travel_mode).ors_profile
        url = f"{self.base_url}/v2/directions/{profile}/geojson"
        body: dict[str, Any] = {
            # ORS expects [lon, lat].
            "coordinates": [[origin_lon, origin_lat], [dest_lon, dest_lat]],
            "geometry": True,
            "instructions": False,
        }
        if settings.ors_alternative_count > 1:
            body["alternative_routes"] = {
                "target_count": settings.ors_alternative_count,
                "share_factor": settings.ors_share_factor,
                "weight_factor": settings.ors_weight_factor,
            }
        headers = {"Authorization": self._api_key}

        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                resp = await self._client.post(url, json=body, headers=headers)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_err = e
            else:
                if resp.status_code in _RETRYABLE_STATUS:
                    last_err = RoutingUnavailableError(_format_ors_error(resp)[0])
                elif resp.status_code in (401, 403):
                    raise RoutingUnavailableError(
                        _format_ors_error(resp)[0],
                        reason_code="routing_provider_unauthorized",
                    )
                elif resp.status_code >= 400:
                    message, ors_code = _format_ors_error(resp)
                    if resp.status_code == 404 or ors_code in _NO_ROUTE_CODES:
                        raise NoRouteFoundError(message)
                    raise RoutingUnavailableError(message, reason_code="routing_provider_bad_response")
                else:
                    try:
                        payload = resp.json()
                    except ValueError as e:
                        raise RoutingUnavailableError(
                            "ORS returned invalid JSON",
                            reason_code="routing_provider_bad_response",
                        ) from e
                    return parse_directions_payload(payload)

            if attempt < self.max_retries - 1:
                log_event(
                    "routing_provider_retry",
                    level=logging.WARNING,
                    attempt=attempt + 1,
                    error=f"{type(last_err).__name__}: {last_err}",
                )
                await asyncio.sleep(min(0.25 * (2**attempt), 2.0))

        # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
        msg = str(last_err).strip()
        detail = f"{type(last_err).__name__}: {msg or repr(last_err)}"
        reason = "routing_provider_timeout" if isinstance(last_err, httpx.TimeoutException) else None
        raise RoutingUnavailableError(
            f"ORS request failed after {self.max_retries} attempts (base={self.base_url}): {detail}",
            reason_code=reason,
        )
