from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .broadcaster import Broadcaster
from .errors import (
    HazardValidationError,
    NoRouteFoundError,
    RoutingProviderError,
    error_detail,
)
from .event_ingest import EventIngest
from .hazard_state import HAZARD_STORE
from .logging_utils import log_event
from .metrics_store import metrics_snapshot, record_request, record_scored_routes
from .models import HazardEventRequest, HazardEventResponse, RouteScoreRequest, RouteScoreResponse
from .orchestrator import RouteScoringOrchestrator
from .routing_ors import ORSClient, RouteProvider
from .routing_synthetic import SyntheticRouteProvider
from .settings import settings
from .vehicle_feed import VehicleFeed
from .weather_cache import WEATHER_CACHE, weather_cache_stats
from .weather_open_meteo import OpenMeteoClient, WeatherSample

BROADCASTER = Broadcaster(snapshot_provider=lambda: HAZARD_STORE.read().model_dump(mode="json"))
EVENT_INGEST = EventIngest(HAZARD_STORE, BROADCASTER)


def build_route_provider() -> RouteProvider:
    if settings.routing_provider == "synthetic":
        return SyntheticRouteProvider()
    return ORSClient()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.routing = build_route_provider()
    app.state.weather = OpenMeteoClient() if settings.live_weather_enabled else None
    feed = VehicleFeed(BROADCASTER)
    feed_task = asyncio.create_task(feed.run())
    log_event(
        "app_startup",
        routing_provider=settings.routing_provider,
        live_weather_enabled=settings.live_weather_enabled,
        scoring_mode=settings.scoring_mode,
        crowd_convention=settings.crowd_convention,
    )
    yield
    feed_task.cancel()
    await asyncio.gather(feed_task, return_exceptions=True)
    await app.state.routing.aclose()
    if app.state.weather is not None:
        await app.state.weather.aclose()


app = FastAPI(title="Safety-Aware Route Scorer", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    t0 = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        record_request(
            request.url.path,
            duration_ms=(time.perf_counter() - t0) * 1000,
            status_code=status_code,
        )


def route_provider(request: Request) -> RouteProvider:
    provider: RouteProvider | None = getattr(request.app.state, "routing", None)  # type: ignore[attr-defined]
    if provider is None:
        raise HTTPException(status_code=503, detail="Routing provider not initialised")
    return provider


def weather_client(request: Request) -> OpenMeteoClient | None:
    return getattr(request.app.state, "weather", None)  # type: ignore[attr-defined]


RouteProviderDep = Annotated[RouteProvider, Depends(route_provider)]
WeatherClientDep = Annotated[OpenMeteoClient | None, Depends(weather_client)]


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Backend is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/routes", response_model=RouteScoreResponse)
async def score_routes(
    req: RouteScoreRequest,
    provider: RouteProviderDep,
    weather: WeatherClientDep,
) -> RouteScoreResponse:
    orchestrator = RouteScoringOrchestrator(
        provider=provider,
        store=HAZARD_STORE,
        weather_cache=WEATHER_CACHE,
        weather_fetcher=weather.get_current_and_hourly if weather is not None else None,
    )
    try:
        resp = await orchestrator.score_routes(req)
    except NoRouteFoundError as e:
        raise HTTPException(status_code=404, detail=error_detail(e)) from e
    except RoutingProviderError as e:
        raise HTTPException(status_code=502, detail=error_detail(e)) from e
    record_scored_routes([r.breakdown.final_score for r in resp.routes])
    return resp


@app.post("/events", response_model=HazardEventResponse)
async def apply_event(req: HazardEventRequest) -> HazardEventResponse:
    try:
        outcome = EVENT_INGEST.ingest(req.event, active=req.active, value=req.value)
    except HazardValidationError as e:
        raise HTTPException(status_code=400, detail=error_detail(e)) from e
    return HazardEventResponse(
        success=True,
        event=outcome.event.value,
        message=outcome.message,
        state=outcome.state,
    )


@app.get("/hazard")
async def hazard_snapshot() -> dict[str, Any]:
    return HAZARD_STORE.read().model_dump(mode="json")


@app.get("/weather")
async def weather_state() -> dict[str, object]:
    return HAZARD_STORE.read().weather_view()


@app.get("/weather/live", response_model=WeatherSample)
async def weather_live(
    weather: WeatherClientDep,
    lat: Annotated[float, Query(ge=-90, le=90)],
    lon: Annotated[float, Query(ge=-180, le=180)],
) -> WeatherSample:
    if weather is None:
        raise HTTPException(
            status_code=503,
            detail={"reason_code": "weather_provider_unavailable", "message": "Live weather is disabled"},
        )
    return await WEATHER_CACHE.get(lat, lon, weather.get_current_and_hourly)


@app.get("/crowd")
async def crowd_state() -> dict[str, object]:
    return HAZARD_STORE.read().crowd_view()


@app.get("/metrics")
async def metrics() -> dict[str, object]:
    return {
        **metrics_snapshot(),
        "weather_cache": weather_cache_stats(),
        "observers": BROADCASTER.stats(),
    }


@app.websocket("/ws")
async def hazard_stream(websocket: WebSocket) -> None:
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    observer = BROADCASTER.subscribe()
    log_event("observer_connected", connection_id=connection_id, observer_id=observer.id)

    async def pump() -> None:
        while True:
            message = await observer.next()
            if message is None:
                # Dropped for falling behind; the client should reconnect.
                await websocket.close(code=1013)
                return
            await websocket.send_json(message.as_dict())

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            incoming = await websocket.receive()
            if incoming["type"] == "websocket.disconnect":
                break
    finally:
        # Before any await: this handler may itself be cancelled here.
        BROADCASTER.unsubscribe(observer)
        log_event("observer_disconnected", connection_id=connection_id, observer_id=observer.id)
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
