from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Final

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .errors import WeatherProviderError
from .logging_utils import log_event
from .settings import settings

MAX_WEATHER_PENALTY: Final[float] = 90.0
MAX_HOURLY_ENTRIES: Final[int] = 12
DEFAULT_VISIBILITY_M: Final[float] = 10_000.0

_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}


class HourlyWeather(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: str
    temperature: float
    condition: str
    weather_code: int


class WeatherSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float
    precipitation_mm: float = Field(..., ge=0.0)
    wind_kmh: float = Field(..., ge=0.0)
    visibility_km: float = Field(..., ge=0.0)
    condition_code: int
    condition: str
    penalty: float = Field(..., ge=0.0, le=MAX_WEATHER_PENALTY)
    hourly_forecast: tuple[HourlyWeather, ...] = Field(default=(), max_length=MAX_HOURLY_ENTRIES)
    degraded: bool = False


def fallback_weather_sample() -> WeatherSample:
    """Neutral sample used when the upstream provider cannot be reached."""
    return WeatherSample(
        temperature=20.0,
        precipitation_mm=0.0,
        wind_kmh=0.0,
        visibility_km=10.0,
        condition_code=0,
        condition="clear",
        penalty=0.0,
        degraded=True,
    )


def condition_label(code: int) -> str:
    """WMO weather code to a short label."""
    if code == 0:
        return "clear"
    if 1 <= code <= 3:
        return "partly-cloudy"
    if 45 <= code <= 48:
        return "fog"
    if code in (56, 57):
        return "freezing-drizzle"
    if 51 <= code <= 55:
        return "drizzle"
    if code in (66, 67):
        return "freezing-rain"
    if 61 <= code <= 65:
        return "rain"
    if 71 <= code <= 77 or code in (85, 86):
        return "snow"
    if 80 <= code <= 82:
        return "showers"
    if 95 <= code <= 99:
        return "storm"
    return "unknown"


def rain_penalty(precipitation_mm: float) -> float:
    if precipitation_mm <= 0:
        return 0.0
    if precipitation_mm < 0.5:
        return 5.0
    if precipitation_mm < 2.0:
        return 10.0
    if precipitation_mm < 5.0:
        return 15.0
    return 20.0


def visibility_penalty(visibility_km: float) -> float:
    if visibility_km >= 10:
        return 0.0
    if visibility_km >= 5:
        return 5.0
    if visibility_km >= 2:
        return 10.0
    if visibility_km >= 1:
        return 15.0
    if visibility_km >= 0.5:
        return 20.0
    return 25.0


def wind_penalty(wind_kmh: float) -> float:
    if wind_kmh < 20:
        return 0.0
    if wind_kmh < 40:
        return 5.0
    if wind_kmh < 60:
        return 10.0
    return 15.0


def severe_weather_penalty(code: int) -> float:
    if 97 <= code <= 99:
        return 30.0
    if 95 <= code <= 96:
        return 20.0
    # Freezing rain outranks the generic heavy-rain band it overlaps.
    if code in (66, 67):
        return 30.0
    if code == 65:
        return 25.0
    if 73 <= code <= 77:
        return 25.0
    return 0.0


def weather_penalty(
    *,
    precipitation_mm: float,
    visibility_km: float,
    wind_kmh: float,
    weather_code: int,
) -> float:
    total = (
        rain_penalty(precipitation_mm)
        + visibility_penalty(visibility_km)
        + wind_penalty(wind_kmh)
        + severe_weather_penalty(weather_code)
    )
    return min(total, MAX_WEATHER_PENALTY)


def _as_float(value: Any, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return default


def _hourly_forecast(hourly: dict[str, Any], *, now: datetime) -> tuple[HourlyWeather, ...]:
    times = hourly.get("time")
    temps = hourly.get("temperature_2m")
    codes = hourly.get("weather_code")
    if not isinstance(times, list) or not isinstance(temps, list) or not isinstance(codes, list):
        return ()

    # Open-Meteo returns naive ISO timestamps in the requested timezone (UTC here).
    now_naive = now.astimezone(UTC).replace(tzinfo=None, minute=0, second=0, microsecond=0)
    out: list[HourlyWeather] = []
    for stamp, temp, code in zip(times, temps, codes):
        try:
            hour = datetime.fromisoformat(str(stamp))
        except ValueError:
            continue
        if hour.tzinfo is not None:
            hour = hour.astimezone(UTC).replace(tzinfo=None)
        if hour < now_naive or temp is None or code is None:
            continue
        out.append(
            HourlyWeather(
                time=str(stamp),
                temperature=float(temp),
                condition=condition_label(int(code)),
                weather_code=int(code),
            )
        )
        if len(out) >= MAX_HOURLY_ENTRIES:
            break
    return tuple(out)


def parse_forecast_payload(data: Any, *, now: datetime | None = None) -> WeatherSample:
    """Turn an Open-Meteo forecast payload into a WeatherSample."""
    if not isinstance(data, dict) or not isinstance(data.get("current"), dict):
        raise WeatherProviderError(
            "Open-Meteo payload missing 'current' block",
            reason_code="weather_provider_bad_response",
        )
    current = data["current"]
    hourly = data.get("hourly") if isinstance(data.get("hourly"), dict) else {}

    code_raw = current.get("weather_code")
    if not isinstance(code_raw, (int, float)) or isinstance(code_raw, bool):
        raise WeatherProviderError(
            "Open-Meteo payload missing weather_code",
            reason_code="weather_provider_bad_response",
        )
    code = int(code_raw)
    precipitation = max(0.0, _as_float(current.get("precipitation"), 0.0))
    wind = max(0.0, _as_float(current.get("wind_speed_10m"), 0.0))

    visibility_m = DEFAULT_VISIBILITY_M
    vis_series = hourly.get("visibility")
    if isinstance(vis_series, list) and vis_series:
        visibility_m = max(0.0, _as_float(vis_series[0], DEFAULT_VISIBILITY_M))
    visibility_km = visibility_m / 1000.0

    return WeatherSample(
        temperature=_as_float(current.get("temperature_2m"), 20.0),
        precipitation_mm=precipitation,
        wind_kmh=wind,
        visibility_km=visibility_km,
        condition_code=code,
        condition=condition_label(code),
        penalty=weather_penalty(
            precipitation_mm=precipitation,
            visibility_km=visibility_km,
            wind_kmh=wind,
            weather_code=code,
        ),
        hourly_forecast=_hourly_forecast(hourly, now=now or datetime.now(UTC)),
    )


class OpenMeteoClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_s: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or settings.open_meteo_forecast_url
        self.max_attempts = max(1, int(max_attempts or settings.weather_max_attempts))
        timeout = float(timeout_s or settings.weather_timeout_s)
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 3.0)),
            headers={"accept": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_current_and_hourly(self, lat: float, lon: float) -> WeatherSample:
        params = {
            "latitude": f"{lat:.4f}",
            "longitude": f"{lon:.4f}",
            "current": "temperature_2m,precipitation,weather_code,wind_speed_10m",
            "hourly": "temperature_2m,weather_code,visibility,precipitation",
            "forecast_days": "1",
            "timezone": "UTC",
        }

        last_err: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                resp = await self._client.get(self.base_url, params=params)
                if resp.status_code in _RETRYABLE_STATUS:
                    last_err = WeatherProviderError(f"Open-Meteo HTTP {resp.status_code}")
                else:
                    if resp.status_code >= 400:
                        raise WeatherProviderError(f"Open-Meteo HTTP {resp.status_code}")
                    try:
                        payload = resp.json()
                    except ValueError as e:
                        raise WeatherProviderError(
                            "Open-Meteo returned invalid JSON",
                            reason_code="weather_provider_bad_response",
                        ) from e
                    return parse_forecast_payload(payload)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_err = e

            if attempt < self.max_attempts - 1:
                log_event(
                    "weather_provider_retry",
                    attempt=attempt + 1,
                    error=f"{type(last_err).__name__}: {last_err}",
                )
                await asyncio.sleep(min(0.2 * (2**attempt), 1.0))

        raise WeatherProviderError(
            f"Open-Meteo request failed after {self.max_attempts} attempts: "
            f"{type(last_err).__name__}: {last_err}"
        )
