from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

import safety_router.routing_ors as routing_ors
from safety_router.errors import NoRouteFoundError, RoutingUnavailableError
from safety_router.routing_ors import ORSClient, ProviderRoute, parse_directions_payload, polyline_length_km
from safety_router.settings import settings


def _feature(coords: list[list[float]], *, distance: float | None = 5_200.0, duration: float | None = 780.0) -> dict[str, Any]:
    summary: dict[str, float] = {}
    if distance is not None:
        summary["distance"] = distance
    if duration is not None:
        summary["duration"] = duration
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": coords},
        "properties": {"summary": summary},
    }


def _collection(*features: dict[str, Any]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


async def _no_sleep(_: float) -> None:
    return None


def _fetch(handler: Any, *, api_key: str = "test-key", max_retries: int = 3, travel_mode: str = "car") -> list[ProviderRoute]:
    async def _run() -> list[ProviderRoute]:
        client = ORSClient(
            base_url="https://ors.test",
            api_key=api_key,
            max_retries=max_retries,
            transport=httpx.MockTransport(handler),
        )
        try:
            return await client.get_alternative_routes(
                origin_lat=19.0760,
                origin_lon=72.8777,
                dest_lat=19.0330,
                dest_lon=73.0297,
                travel_mode=travel_mode,
            )
        finally:
            await client.aclose()

    return asyncio.run(_run())


def test_success_posts_lon_lat_and_alternatives(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "ors_alternative_count", 3)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=_collection(
                _feature([[72.8777, 19.0760], [72.95, 19.05], [73.0297, 19.0330]]),
                _feature([[72.8777, 19.0760, 12.0], [73.0297, 19.0330, 9.0]], distance=6_100.0, duration=900.0),
            ),
        )

    routes = _fetch(handler, travel_mode="truck")

    assert len(routes) == 2
    assert routes[0].coordinates[0] == (72.8777, 19.0760)
    assert routes[0].distance_m == 5_200.0
    assert routes[1].coordinates == [(72.8777, 19.0760), (73.0297, 19.0330)]

    request = seen[0]
    assert request.url.path == "/v2/directions/driving-hgv/geojson"
    assert request.headers["Authorization"] == "test-key"
    body = json.loads(request.content)
    assert body["coordinates"] == [[72.8777, 19.0760], [73.0297, 19.0330]]
    assert body["alternative_routes"] == {
        "target_count": 3,
        "share_factor": settings.ors_share_factor,
        "weight_factor": settings.ors_weight_factor,
    }


def test_missing_summary_leaves_distance_unknown() -> None:
    routes = parse_directions_payload(_collection(_feature([[0.0, 0.0], [0.01, 0.0]], distance=None, duration=0.0)))
    assert routes[0].distance_m is None
    assert routes[0].duration_s is None


def test_missing_api_key_is_misconfiguration() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(RoutingUnavailableError) as exc:
        _fetch(handler, api_key="")
    assert exc.value.reason_code == "routing_provider_misconfigured"


def test_unauthorized_is_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(403, json={"error": "Access to this API has been disallowed"})

    with pytest.raises(RoutingUnavailableError) as exc:
        _fetch(handler)
    assert exc.value.reason_code == "routing_provider_unauthorized"
    assert calls["n"] == 1


def test_ors_no_route_code_maps_to_no_route() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": 2009, "message": "Route could not be found"}})

    with pytest.raises(NoRouteFoundError) as exc:
        _fetch(handler)
    assert exc.value.reason_code == "no_route_found"
    assert "2009" in str(exc.value)


def test_other_client_error_is_bad_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": 2003, "message": "Parameter 'coordinates' is invalid"}})

    with pytest.raises(RoutingUnavailableError) as exc:
        _fetch(handler)
    assert exc.value.reason_code == "routing_provider_bad_response"


def test_empty_features_is_no_route() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_collection())

    with pytest.raises(NoRouteFoundError):
        _fetch(handler)


def test_transient_errors_are_retried_then_surface(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(routing_ors.asyncio, "sleep", _no_sleep)
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, text="upstream busy")

    with pytest.raises(RoutingUnavailableError) as exc:
        _fetch(handler, max_retries=3)
    assert calls["n"] == 3
    assert exc.value.reason_code == "routing_provider_unreachable"
    assert "3 attempts" in str(exc.value)


def test_retry_recovers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(routing_ors.asyncio, "sleep", _no_sleep)
    responses = [httpx.Response(429), httpx.Response(200, json=_collection(_feature([[0.0, 0.0], [0.1, 0.1]])))]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    assert len(_fetch(handler)) == 1


def test_timeouts_are_reported_as_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(routing_ors.asyncio, "sleep", _no_sleep)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(RoutingUnavailableError) as exc:
        _fetch(handler, max_retries=2)
    assert exc.value.reason_code == "routing_provider_timeout"


def test_polyline_length_is_haversine_sum() -> None:
    # One degree of latitude is ~111.2 km.
    length = polyline_length_km([(0.0, 0.0), (0.0, 0.5), (0.0, 1.0)])
    assert 111.0 < length < 111.4
    assert polyline_length_km([(1.0, 1.0)]) == 0.0
