from __future__ import annotations

import logging

import pytest

import safety_router.logging_utils as logging_utils
from safety_router.errors import HazardValidationError, RoutingUnavailableError, error_detail
from safety_router.scoring import CrowdConvention, ScoringMode, default_crowd_convention, default_scoring_mode
from safety_router.settings import Settings, settings


def test_unknown_choices_fall_back_to_defaults() -> None:
    s = Settings(SCORING_MODE="fancy", CROWD_CONVENTION="", ROUTING_PROVIDER="OSRM")
    assert s.scoring_mode == "toggle_based"
    assert s.crowd_convention == "congestion_penalty"
    assert s.routing_provider == "ors"


def test_choices_are_case_insensitive() -> None:
    s = Settings(SCORING_MODE="Profile_Based", CROWD_CONVENTION="SAFETY_IN_NUMBERS", ROUTING_PROVIDER="Synthetic")
    assert s.scoring_mode == "profile_based"
    assert s.crowd_convention == "safety_in_numbers"
    assert s.routing_provider == "synthetic"


def test_cors_origins_split() -> None:
    s = Settings(CORS_ORIGINS="http://a.test, http://b.test,,")
    assert s.cors_origin_list == ["http://a.test", "http://b.test"]


def test_scoring_defaults_follow_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "scoring_mode", "profile_based")
    monkeypatch.setattr(settings, "crowd_convention", "safety_in_numbers")
    assert default_scoring_mode() == ScoringMode.PROFILE_BASED
    assert default_crowd_convention() == CrowdConvention.SAFETY_IN_NUMBERS


def test_unknown_reason_codes_are_normalised() -> None:
    err = HazardValidationError("made_up", "nope")
    assert err.reason_code == "invalid_transition"
    assert str(err) == "nope"
    routing = RoutingUnavailableError("down", reason_code="made_up")
    assert routing.reason_code == "routing_provider_unreachable"
    assert error_detail(HazardValidationError("unknown_event", "bad", {"event": "x"})) == {
        "reason_code": "unknown_event",
        "message": "bad",
        "details": {"event": "x"},
    }


def test_log_event_emits_structured_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    records: list[logging.LogRecord] = []

    class _Capture(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    logger = logging.getLogger("safety_router.test_capture")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = _Capture()
    logger.addHandler(handler)
    monkeypatch.setattr(logging_utils, "LOGGER", logger)
    try:
        logging_utils.log_event(
            "weather_degraded_fallback", level=logging.WARNING, key="1.0000_2.0000", message="timeout"
        )
    finally:
        logger.removeHandler(handler)

    assert len(records) == 1
    assert records[0].levelno == logging.WARNING
    assert records[0].getMessage() == "weather_degraded_fallback"
    assert records[0].event == "weather_degraded_fallback"  # type: ignore[attr-defined]
    assert records[0].key == "1.0000_2.0000"  # type: ignore[attr-defined]
    assert records[0].field_message == "timeout"  # type: ignore[attr-defined]
