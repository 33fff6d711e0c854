from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "unknown_event",
        "invalid_transition",
        "invalid_intensity",
        "invalid_penalty",
        "invalid_coordinates",
        "invalid_time_of_day",
        "routing_provider_misconfigured",
        "routing_provider_unauthorized",
        "routing_provider_unreachable",
        "routing_provider_timeout",
        "routing_provider_bad_response",
        "no_route_found",
        "weather_provider_unavailable",
        "weather_provider_bad_response",
    }
)


def normalize_reason_code(reason_code: str, *, default: str) -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default


@dataclass
class HazardValidationError(ValueError):
    """A payload was rejected before it could touch shared state."""

    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        self.reason_code = normalize_reason_code(self.reason_code, default="invalid_transition")

    def __str__(self) -> str:
        return self.message


class RoutingProviderError(RuntimeError):
    default_reason_code = "routing_provider_unreachable"

    def __init__(self, message: str, *, reason_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason_code = normalize_reason_code(
            reason_code or self.default_reason_code,
            default=self.default_reason_code,
        )


class RoutingUnavailableError(RoutingProviderError):
    """Provider unreachable, misconfigured or out of retries."""


class NoRouteFoundError(RoutingProviderError):
    """Provider answered, but there is no route between the points."""

    default_reason_code = "no_route_found"


class WeatherProviderError(RuntimeError):
    def __init__(self, message: str, *, reason_code: str = "weather_provider_unavailable") -> None:
        super().__init__(message)
        self.reason_code = normalize_reason_code(reason_code, default="weather_provider_unavailable")


def error_detail(exc: HazardValidationError | RoutingProviderError) -> dict[str, Any]:
    detail: dict[str, Any] = {"reason_code": exc.reason_code, "message": str(exc)}
    extra = getattr(exc, "details", None)
    if extra:
        detail["details"] = extra
    return detail
