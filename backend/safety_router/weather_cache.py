from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from threading import Lock

from .logging_utils import log_event
from .settings import settings
from .weather_open_meteo import WeatherSample, fallback_weather_sample

WeatherFetcher = Callable[[float, float], Awaitable[WeatherSample]]

KEY_PRECISION = 4


def weather_cache_key(lat: float, lon: float) -> str:
    # 4 decimals is ~11 m, enough to share one sample along a route.
    return f"{round(float(lat), KEY_PRECISION):.{KEY_PRECISION}f}_{round(float(lon), KEY_PRECISION):.{KEY_PRECISION}f}"


@dataclass(frozen=True)
class _WeatherCacheEntry:
    sample: WeatherSample
    inserted_at: float | None
    ttl_s: float


class WeatherCache:
    """Time-bounded memoisation of upstream weather lookups.

    Entries are (value, inserted_at) pairs checked on read and replaced
    wholesale on miss. The lock only guards the dict; fetches run outside it,
    so two cold misses on one key may both fetch and the last write wins.
    """

    def __init__(
        self,
        *,
        ttl_s: float,
        max_entries: int,
        fallback_ttl_s: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl_s = max(1.0, float(ttl_s))
        self._fallback_ttl_s = max(0.0, float(fallback_ttl_s))
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._lock = Lock()
        self._items: OrderedDict[str, _WeatherCacheEntry] = OrderedDict()

        self._hits = 0
        self._misses = 0
        self._fetches = 0
        self._fallbacks = 0
        self._evictions = 0
        self._repairs = 0

    def _lookup(self, key: str) -> WeatherSample | None:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.inserted_at is None:
                self._items.pop(key, None)
                self._repairs += 1
                self._misses += 1
            elif (self._clock() - entry.inserted_at) >= entry.ttl_s:
                self._items.pop(key, None)
                self._misses += 1
                return None
            else:
                self._items.move_to_end(key)
                self._hits += 1
                return entry.sample

        # Only an entry without a timestamp falls through to here.
        log_event("weather_cache_entry_repaired", level=logging.WARNING, key=key)
        return None

    def _store(self, key: str, sample: WeatherSample, *, ttl_s: float) -> None:
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
            self._items[key] = _WeatherCacheEntry(sample=sample, inserted_at=self._clock(), ttl_s=ttl_s)

            while len(self._items) > self._max_entries:
                self._items.popitem(last=False)
                self._evictions += 1

    async def get(self, lat: float, lon: float, fetcher: WeatherFetcher) -> WeatherSample:
        key = weather_cache_key(lat, lon)
        cached = self._lookup(key)
        if cached is not None:
            return cached

        with self._lock:
            self._fetches += 1
        try:
            sample = await fetcher(lat, lon)
        except Exception as exc:
            with self._lock:
                self._fallbacks += 1
            log_event(
                "weather_degraded_fallback",
                level=logging.WARNING,
                key=key,
                error=f"{type(exc).__name__}: {exc}",
            )
            sample = fallback_weather_sample()
            if self._fallback_ttl_s > 0:
                self._store(key, sample, ttl_s=self._fallback_ttl_s)
            return sample

        self._store(key, sample, ttl_s=self._ttl_s)
        return sample

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            return cleared

    def stats(self) -> dict[str, int | float]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "fetches": self._fetches,
                "fallbacks": self._fallbacks,
                "evictions": self._evictions,
                "repairs": self._repairs,
                "ttl_s": self._ttl_s,
                "max_entries": self._max_entries,
            }


WEATHER_CACHE = WeatherCache(
    ttl_s=settings.weather_cache_ttl_s,
    max_entries=settings.weather_cache_max_entries,
    fallback_ttl_s=settings.weather_fallback_ttl_s,
)


def clear_weather_cache() -> int:
    return WEATHER_CACHE.clear()


def weather_cache_stats() -> dict[str, int | float]:
    return WEATHER_CACHE.stats()
