from __future__ import annotations

from datetime import datetime

from .settings import settings


def is_night_hour(hour: int, *, night_start_hour: int | None = None, night_end_hour: int | None = None) -> bool:
    start = settings.night_start_hour if night_start_hour is None else night_start_hour
    end = settings.night_end_hour if night_end_hour is None else night_end_hour
    hour = int(hour) % 24
    if start == end:
        return False
    if start > end:
        # Window wraps midnight, e.g. 20:00 -> 06:00.
        return hour >= start or hour < end
    return start <= hour < end


def classify_time_of_day(departure_time: datetime | None, *, fallback: str = "day") -> str:
    """Day/night band for a departure time; local wall-clock hour is used as given."""
    if departure_time is None:
        return fallback
    return "night" if is_night_hour(departure_time.hour) else "day"
