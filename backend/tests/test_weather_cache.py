from __future__ import annotations

import asyncio

from safety_router.weather_cache import WeatherCache, _WeatherCacheEntry, weather_cache_key
from safety_router.weather_open_meteo import WeatherSample


class _Clock:
    def __init__(self, t: float = 1_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


class _Fetcher:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple[float, float]] = []
        self.fail = fail

    async def __call__(self, lat: float, lon: float) -> WeatherSample:
        self.calls.append((lat, lon))
        if self.fail:
            raise ConnectionError("upstream down")
        return WeatherSample(
            temperature=14.0 + len(self.calls),
            precipitation_mm=1.0,
            wind_kmh=10.0,
            visibility_km=10.0,
            condition_code=61,
            condition="rain",
            penalty=10.0,
        )


def test_cache_key_rounds_to_four_decimals() -> None:
    assert weather_cache_key(19.07601, 72.87774) == "19.0760_72.8777"
    assert weather_cache_key(19.076012, 72.877739) == weather_cache_key(19.07601, 72.87774)


def test_hit_within_ttl_returns_same_sample_without_refetch() -> None:
    clock = _Clock()
    cache = WeatherCache(ttl_s=600, max_entries=16, clock=clock)
    fetcher = _Fetcher()

    first = asyncio.run(cache.get(19.07601, 72.87774, fetcher))
    clock.t += 599
    second = asyncio.run(cache.get(19.076012, 72.877739, fetcher))

    assert len(fetcher.calls) == 1
    assert second is first
    assert second.model_dump_json() == first.model_dump_json()
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["fetches"] == 1


def test_expired_entry_triggers_exactly_one_refetch() -> None:
    clock = _Clock()
    cache = WeatherCache(ttl_s=600, max_entries=16, clock=clock)
    fetcher = _Fetcher()

    first = asyncio.run(cache.get(51.5, -0.12, fetcher))
    clock.t += 600
    second = asyncio.run(cache.get(51.5, -0.12, fetcher))
    third = asyncio.run(cache.get(51.5, -0.12, fetcher))

    assert len(fetcher.calls) == 2
    assert second is not first
    assert third is second


def test_fetch_failure_degrades_to_fallback() -> None:
    cache = WeatherCache(ttl_s=600, max_entries=16, fallback_ttl_s=0, clock=_Clock())
    fetcher = _Fetcher(fail=True)

    sample = asyncio.run(cache.get(51.5, -0.12, fetcher))
    assert sample.degraded
    assert sample.condition == "clear"
    assert sample.penalty == 0.0

    # Without a negative TTL the next call asks upstream again.
    asyncio.run(cache.get(51.5, -0.12, fetcher))
    assert len(fetcher.calls) == 2
    assert cache.stats()["fallbacks"] == 2
    assert cache.stats()["size"] == 0


def test_fallback_is_negatively_cached_when_configured() -> None:
    clock = _Clock()
    cache = WeatherCache(ttl_s=600, max_entries=16, fallback_ttl_s=30, clock=clock)
    fetcher = _Fetcher(fail=True)

    asyncio.run(cache.get(51.5, -0.12, fetcher))
    clock.t += 29
    assert asyncio.run(cache.get(51.5, -0.12, fetcher)).degraded
    assert len(fetcher.calls) == 1

    clock.t += 1
    fetcher.fail = False
    fresh = asyncio.run(cache.get(51.5, -0.12, fetcher))
    assert not fresh.degraded
    assert len(fetcher.calls) == 2


def test_lru_eviction_keeps_recent_entries() -> None:
    cache = WeatherCache(ttl_s=600, max_entries=2, clock=_Clock())
    fetcher = _Fetcher()

    asyncio.run(cache.get(1.0, 1.0, fetcher))
    asyncio.run(cache.get(2.0, 2.0, fetcher))
    asyncio.run(cache.get(1.0, 1.0, fetcher))  # touch
    asyncio.run(cache.get(3.0, 3.0, fetcher))  # evicts (2, 2)

    assert cache.stats()["evictions"] == 1
    asyncio.run(cache.get(1.0, 1.0, fetcher))
    assert len(fetcher.calls) == 3
    asyncio.run(cache.get(2.0, 2.0, fetcher))
    assert len(fetcher.calls) == 4


def test_entry_without_timestamp_is_repaired() -> None:
    cache = WeatherCache(ttl_s=600, max_entries=16, clock=_Clock())
    fetcher = _Fetcher()
    stale = asyncio.run(_Fetcher()(0.0, 0.0))
    cache._items[weather_cache_key(10.0, 20.0)] = _WeatherCacheEntry(sample=stale, inserted_at=None, ttl_s=600)

    sample = asyncio.run(cache.get(10.0, 20.0, fetcher))

    assert sample is not stale
    assert len(fetcher.calls) == 1
    assert cache.stats()["repairs"] == 1


def test_clear_empties_the_cache() -> None:
    cache = WeatherCache(ttl_s=600, max_entries=16, clock=_Clock())
    fetcher = _Fetcher()
    asyncio.run(cache.get(1.0, 1.0, fetcher))
    asyncio.run(cache.get(2.0, 2.0, fetcher))
    assert cache.clear() == 2
    assert cache.stats()["size"] == 0
