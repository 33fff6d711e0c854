from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .broadcaster import Broadcaster
from .errors import HazardValidationError
from .hazard_state import (
    HazardState,
    HazardStateStore,
    HazardTransition,
    SetConstructionActive,
    SetCrowdPenalty,
    SetTimeOfDay,
    SetWeather,
    WeatherCondition,
)
from .logging_utils import log_event
from .settings import settings


class HazardEventName(str, Enum):
    START_STORM = "startStorm"
    START_RAIN = "startRain"
    START_FOG = "startFog"
    CLEAR_WEATHER = "clearWeather"
    CROWD_SPIKE = "crowdSpike"
    CLEAR_CROWD_SPIKE = "clearCrowdSpike"
    TOGGLE_CONSTRUCTION = "toggleConstruction"
    SET_TIME_OF_DAY = "setTimeOfDay"


_WEATHER_EVENTS: dict[HazardEventName, tuple[WeatherCondition, float]] = {
    HazardEventName.START_STORM: (WeatherCondition.STORM, 0.8),
    HazardEventName.START_RAIN: (WeatherCondition.RAIN, 0.6),
    HazardEventName.START_FOG: (WeatherCondition.FOG, 0.7),
    HazardEventName.CLEAR_WEATHER: (WeatherCondition.CLEAR, 0.0),
}


@dataclass(frozen=True)
class EventOutcome:
    event: HazardEventName
    state: HazardState
    message: str


def parse_event_name(name: str) -> HazardEventName:
    try:
        return HazardEventName(str(name).strip())
    except ValueError as e:
        raise HazardValidationError("unknown_event", f"Unknown event: {name}", {"event": name}) from e


class EventIngest:
    """Maps named hazard events onto store transitions and announces them."""

    def __init__(
        self,
        store: HazardStateStore,
        broadcaster: Broadcaster,
        *,
        crowd_spike_penalty: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._crowd_spike_penalty = (
            settings.crowd_spike_penalty if crowd_spike_penalty is None else float(crowd_spike_penalty)
        )
        self._clock = clock

    def transition_for(
        self,
        event: HazardEventName,
        *,
        active: bool | None = None,
        value: Any = None,
    ) -> HazardTransition:
        if event in _WEATHER_EVENTS:
            condition, intensity = _WEATHER_EVENTS[event]
            return SetWeather(condition=condition, intensity=intensity)
        if event == HazardEventName.CROWD_SPIKE:
            return SetCrowdPenalty(value=self._crowd_spike_penalty if value is None else value)
        if event == HazardEventName.CLEAR_CROWD_SPIKE:
            return SetCrowdPenalty(value=0.0)
        if event == HazardEventName.TOGGLE_CONSTRUCTION:
            return SetConstructionActive(active=active)
        if value is None:
            raise HazardValidationError("invalid_time_of_day", "setTimeOfDay requires a value of 'day' or 'night'")
        return SetTimeOfDay(value=str(value))

    def ingest(self, name: str, *, active: bool | None = None, value: Any = None) -> EventOutcome:
        try:
            event = parse_event_name(name)
            state = self._store.apply(self.transition_for(event, active=active, value=value))
        except HazardValidationError as e:
            log_event(
                "hazard_event_rejected",
                level=logging.WARNING,
                hazard_event=str(name),
                reason_code=e.reason_code,
                detail=e.message,
            )
            raise

        delivered = self._announce(event, state)
        log_event(
            "hazard_event_applied",
            hazard_event=event.value,
            version=state.version,
            delivered=delivered,
        )
        return EventOutcome(event=event, state=state, message=f"Event {event.value} applied successfully")

    def _announce(self, event: HazardEventName, state: HazardState) -> int:
        if event in _WEATHER_EVENTS:
            self._broadcaster.publish("weather_update", state.weather_view())
        elif event in (HazardEventName.CROWD_SPIKE, HazardEventName.CLEAR_CROWD_SPIKE):
            self._broadcaster.publish("crowd_update", state.crowd_view())
        elif event == HazardEventName.TOGGLE_CONSTRUCTION:
            self._broadcaster.publish(
                "event_applied",
                {
                    "event": "construction",
                    "active": state.construction_active,
                    "penalty": state.global_construction_penalty,
                },
            )
        else:
            self._broadcaster.publish("event_applied", {"event": "time_of_day", "value": state.time_of_day})

        return self._broadcaster.publish(
            "event_applied",
            {"event": event.value, "timestamp": self._clock(), "version": state.version},
        )
