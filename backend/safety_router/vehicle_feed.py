from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable
from typing import Any

from .broadcaster import Broadcaster
from .settings import settings

VEHICLE_EVENT = "vehicle_updates"
# Max per-tick drift in degrees, split evenly around zero.
STEP_DEG = 0.001


class VehicleFeed:
    """Simulated vehicle position: a small random walk pushed to observers."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        *,
        interval_s: float | None = None,
        start: tuple[float, float] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._broadcaster = broadcaster
        self.interval_s = settings.vehicle_feed_interval_s if interval_s is None else float(interval_s)
        lat, lon = start or (settings.vehicle_feed_start_lat, settings.vehicle_feed_start_lon)
        self.lat = float(lat)
        self.lon = float(lon)
        self._rng = rng or random.Random()
        self._clock = clock

    def step(self) -> dict[str, Any]:
        self.lat = max(-90.0, min(90.0, self.lat + (self._rng.random() - 0.5) * STEP_DEG))
        self.lon = max(-180.0, min(180.0, self.lon + (self._rng.random() - 0.5) * STEP_DEG))
        payload = {"lat": self.lat, "lng": self.lon, "timestamp": self._clock()}
        self._broadcaster.publish(VEHICLE_EVENT, payload)
        return payload

    async def run(self) -> None:
        if self.interval_s <= 0:
            return
        while True:
            await asyncio.sleep(self.interval_s)
            self.step()
