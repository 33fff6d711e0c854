"""Process-wide hazard state.

The store is the single owner of the mutable record. Readers only ever get
frozen snapshots, and every transition is validated before the lock is taken
so a rejected payload never touches the current state.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from threading import Lock
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import HazardValidationError
from .settings import settings

CROWD_PENALTY_MIN = 0.0
CROWD_PENALTY_MAX = 30.0
CONSTRUCTION_PENALTY_MAX = 20.0

TimeOfDay = Literal["day", "night"]


class WeatherCondition(str, Enum):
    CLEAR = "clear"
    RAIN = "rain"
    STORM = "storm"
    FOG = "fog"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HazardState(BaseModel):
    model_config = ConfigDict(frozen=True)

    weather_condition: WeatherCondition = WeatherCondition.CLEAR
    weather_intensity: float = Field(default=0.0, ge=0.0, le=1.0)
    weather_window_start: datetime
    weather_window_end: datetime
    global_crowd_penalty: float = Field(default=0.0, ge=CROWD_PENALTY_MIN, le=CROWD_PENALTY_MAX)
    global_construction_penalty: float = Field(default=0.0, ge=0.0, le=CONSTRUCTION_PENALTY_MAX)
    time_of_day: TimeOfDay = "day"
    version: int = 0
    updated_at: datetime

    @property
    def storm_active(self) -> bool:
        return self.weather_condition == WeatherCondition.STORM

    @property
    def crowd_active(self) -> bool:
        return self.global_crowd_penalty > 0.0

    @property
    def construction_active(self) -> bool:
        return self.global_construction_penalty > 0.0

    def hazard_fields(self) -> dict[str, object]:
        """Hazard-relevant fields, without the validity window and bookkeeping."""
        return self.model_dump(exclude={"weather_window_start", "weather_window_end", "version", "updated_at"})

    def weather_view(self) -> dict[str, object]:
        return {
            "condition": self.weather_condition.value,
            "intensity": self.weather_intensity,
            "starts_at": self.weather_window_start.timestamp(),
            "ends_at": self.weather_window_end.timestamp(),
        }

    def crowd_view(self) -> dict[str, object]:
        return {
            "global": True,
            "penalty": round(self.global_crowd_penalty, 1),
            "density": "high" if self.crowd_active else "normal",
        }


def default_hazard_state(*, now: datetime | None = None, window_s: int | None = None) -> HazardState:
    ts = now or _utcnow()
    window = timedelta(seconds=window_s if window_s is not None else settings.weather_window_s)
    return HazardState(
        weather_window_start=ts,
        weather_window_end=ts + window,
        updated_at=ts,
    )


# Closed set of transitions. Each one replaces only its own field subset.


@dataclass(frozen=True)
class SetWeather:
    condition: WeatherCondition | str
    intensity: float


@dataclass(frozen=True)
class SetCrowdPenalty:
    value: float


@dataclass(frozen=True)
class SetConstructionActive:
    # None flips the current value under the store lock.
    active: bool | None = None


@dataclass(frozen=True)
class SetTimeOfDay:
    value: str


HazardTransition = SetWeather | SetCrowdPenalty | SetConstructionActive | SetTimeOfDay


def _finite(value: object, *, reason_code: str, field: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise HazardValidationError(reason_code, f"{field} must be a number", {"value": repr(value)}) from e
    if not math.isfinite(number):
        raise HazardValidationError(reason_code, f"{field} must be finite", {"value": repr(value)})
    return number


def _validate(transition: HazardTransition) -> HazardTransition:
    """Return a normalised copy of the transition or raise HazardValidationError."""
    if isinstance(transition, SetWeather):
        try:
            condition = WeatherCondition(str(getattr(transition.condition, "value", transition.condition)))
        except ValueError as e:
            raise HazardValidationError(
                "invalid_transition",
                f"unknown weather condition {transition.condition!r}",
            ) from e
        intensity = _finite(transition.intensity, reason_code="invalid_intensity", field="intensity")
        if not 0.0 <= intensity <= 1.0:
            raise HazardValidationError(
                "invalid_intensity",
                "intensity must be within [0, 1]",
                {"value": intensity},
            )
        return SetWeather(condition=condition, intensity=intensity)

    if isinstance(transition, SetCrowdPenalty):
        value = _finite(transition.value, reason_code="invalid_penalty", field="crowd penalty")
        return SetCrowdPenalty(value=max(CROWD_PENALTY_MIN, min(CROWD_PENALTY_MAX, value)))

    if isinstance(transition, SetConstructionActive):
        if transition.active is not None and not isinstance(transition.active, bool):
            raise HazardValidationError("invalid_transition", "active must be a boolean or omitted")
        return transition

    if isinstance(transition, SetTimeOfDay):
        value = str(transition.value).strip().lower()
        if value not in ("day", "night"):
            raise HazardValidationError("invalid_time_of_day", "time of day must be 'day' or 'night'")
        return SetTimeOfDay(value=value)

    raise HazardValidationError("invalid_transition", f"unsupported transition {type(transition).__name__}")


class HazardStateStore:
    """Mutex-guarded owner of the shared HazardState."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        weather_window_s: int | None = None,
        construction_penalty: float | None = None,
    ) -> None:
        self._clock = clock
        self._weather_window = timedelta(
            seconds=weather_window_s if weather_window_s is not None else settings.weather_window_s
        )
        penalty = settings.construction_penalty if construction_penalty is None else construction_penalty
        self._construction_penalty = max(0.0, min(CONSTRUCTION_PENALTY_MAX, float(penalty)))
        self._lock = Lock()
        self._state = default_hazard_state(
            now=self._clock(),
            window_s=int(self._weather_window.total_seconds()),
        )

    def read(self) -> HazardState:
        # Frozen model: handing out the reference is a value copy in practice.
        with self._lock:
            return self._state

    def apply(self, transition: HazardTransition) -> HazardState:
        checked = _validate(transition)
        with self._lock:
            now = self._clock()
            current = self._state
            changes: dict[str, object]
            if isinstance(checked, SetWeather):
                changes = {
                    "weather_condition": checked.condition,
                    "weather_intensity": checked.intensity,
                    "weather_window_start": now,
                    "weather_window_end": now + self._weather_window,
                }
            elif isinstance(checked, SetCrowdPenalty):
                changes = {"global_crowd_penalty": checked.value}
            elif isinstance(checked, SetConstructionActive):
                active = (not current.construction_active) if checked.active is None else checked.active
                changes = {"global_construction_penalty": self._construction_penalty if active else 0.0}
            else:
                changes = {"time_of_day": checked.value}
            candidate = current.model_copy(update=changes)
            if candidate.hazard_fields() == current.hazard_fields():
                # Re-applying the same transition is a no-op on state; the weather window is not renewed.
                return current
            self._state = candidate.model_copy(update={"version": current.version + 1, "updated_at": now})
            return self._state

    def reset(self) -> HazardState:
        with self._lock:
            self._state = default_hazard_state(
                now=self._clock(),
                window_s=int(self._weather_window.total_seconds()),
            )
            return self._state


HAZARD_STORE = HazardStateStore()
