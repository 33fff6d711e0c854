from __future__ import annotations

from datetime import UTC, datetime

import pytest

from safety_router.broadcaster import SNAPSHOT_EVENT, Broadcaster
from safety_router.errors import HazardValidationError
from safety_router.event_ingest import EventIngest, HazardEventName, parse_event_name
from safety_router.hazard_state import HazardStateStore, WeatherCondition

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _setup() -> tuple[HazardStateStore, Broadcaster, EventIngest]:
    store = HazardStateStore(clock=lambda: T0, weather_window_s=3600, construction_penalty=15.0)
    broadcaster = Broadcaster(snapshot_provider=lambda: store.read().model_dump(mode="json"), queue_size=32)
    ingest = EventIngest(store, broadcaster, crowd_spike_penalty=20.0, clock=lambda: 1_700_000_000.0)
    return store, broadcaster, ingest


def test_event_names_are_a_closed_set() -> None:
    assert parse_event_name("startStorm") == HazardEventName.START_STORM
    with pytest.raises(HazardValidationError) as exc:
        parse_event_name("startTornado")
    assert exc.value.reason_code == "unknown_event"


def test_start_storm_updates_state_and_notifies() -> None:
    store, broadcaster, ingest = _setup()
    observer = broadcaster.subscribe()

    outcome = ingest.ingest("startStorm")

    assert outcome.state.weather_condition == WeatherCondition.STORM
    assert outcome.state.weather_intensity == 0.8
    assert outcome.message == "Event startStorm applied successfully"
    assert store.read() == outcome.state

    messages = observer.drain()
    assert [m.event for m in messages] == [SNAPSHOT_EVENT, "weather_update", "event_applied"]
    assert messages[1].data["condition"] == "storm"
    assert messages[1].data["intensity"] == 0.8
    assert messages[2].data == {"event": "startStorm", "timestamp": 1_700_000_000.0, "version": 1}


@pytest.mark.parametrize(
    ("event", "condition", "intensity"),
    [("startRain", "rain", 0.6), ("startFog", "fog", 0.7), ("clearWeather", "clear", 0.0)],
)
def test_weather_presets(event: str, condition: str, intensity: float) -> None:
    _, _, ingest = _setup()
    ingest.ingest("startStorm")
    state = ingest.ingest(event).state
    assert state.weather_condition.value == condition
    assert state.weather_intensity == intensity


def test_repeated_event_is_safe_but_still_broadcast() -> None:
    _, broadcaster, ingest = _setup()
    observer = broadcaster.subscribe()

    first = ingest.ingest("startStorm").state
    second = ingest.ingest("startStorm").state

    assert second == first
    assert second.version == 1
    events = [m.event for m in observer.drain()]
    assert events.count("weather_update") == 2
    assert events.count("event_applied") == 2


def test_unknown_event_leaves_state_and_observers_alone() -> None:
    store, broadcaster, ingest = _setup()
    observer = broadcaster.subscribe()
    before = store.read()

    with pytest.raises(HazardValidationError) as exc:
        ingest.ingest("makeItSnow")

    assert exc.value.reason_code == "unknown_event"
    assert store.read() is before
    assert [m.event for m in observer.drain()] == [SNAPSHOT_EVENT]


def test_crowd_spike_and_clear() -> None:
    _, broadcaster, ingest = _setup()
    observer = broadcaster.subscribe()

    spiked = ingest.ingest("crowdSpike").state
    assert spiked.global_crowd_penalty == 20.0
    cleared = ingest.ingest("clearCrowdSpike").state
    assert cleared.global_crowd_penalty == 0.0

    crowd = [m.data for m in observer.drain() if m.event == "crowd_update"]
    assert crowd == [
        {"global": True, "penalty": 20.0, "density": "high"},
        {"global": True, "penalty": 0.0, "density": "normal"},
    ]


def test_crowd_spike_accepts_explicit_value() -> None:
    _, _, ingest = _setup()
    assert ingest.ingest("crowdSpike", value=45).state.global_crowd_penalty == 30.0


def test_toggle_construction_flips_or_sets() -> None:
    _, broadcaster, ingest = _setup()
    observer = broadcaster.subscribe()

    assert ingest.ingest("toggleConstruction").state.construction_active
    assert not ingest.ingest("toggleConstruction").state.construction_active
    assert ingest.ingest("toggleConstruction", active=True).state.construction_active

    construction = [m.data for m in observer.drain() if m.data.get("event") == "construction"]
    assert [c["active"] for c in construction] == [True, False, True]
    assert construction[0]["penalty"] == 15.0


def test_set_time_of_day() -> None:
    _, _, ingest = _setup()
    assert ingest.ingest("setTimeOfDay", value="night").state.time_of_day == "night"
    with pytest.raises(HazardValidationError) as exc:
        ingest.ingest("setTimeOfDay")
    assert exc.value.reason_code == "invalid_time_of_day"
