from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "safety_router"
LOG_FILE_NAME = "api.log.jsonl"

# LogRecord attributes that cannot be passed through ``extra``.
_RESERVED_FIELDS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys() | {"message", "asctime"}
)


def _level_from_name(name: str) -> int:
    level = logging.getLevelName(str(name).strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _writable_log_dir(out_dir: str) -> Path | None:
    for log_dir in (Path(out_dir) / "logs", Path(gettempdir()) / "safety-router" / "logs"):
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            probe = log_dir / ".probe"
            probe.touch(exist_ok=True)
            probe.unlink(missing_ok=True)
        except OSError:
            continue
        return log_dir
    return None


def _formatter() -> logging.Formatter:
    return jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"},
    )


def configure_logging(*, level: str | None = None, out_dir: str | None = None) -> logging.Logger:
    """Attach the JSON handlers to the service logger once and return it.

    Records go to stderr and, when a writable directory can be found, to
    ``<out_dir>/logs/api.log.jsonl``. Calling this again is a no-op so the
    uvicorn reloader does not stack handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_safety_router_configured", False):
        return logger

    logger.setLevel(_level_from_name(level or settings.log_level))
    logger.propagate = False
    formatter = _formatter()

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    log_dir = _writable_log_dir(out_dir or settings.out_dir)
    if log_dir is not None:
        try:
            file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        except OSError:
            file_handler = None
        if file_handler is not None:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger._safety_router_configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def _safe_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {(f"field_{k}" if k in _RESERVED_FIELDS else k): v for k, v in fields.items()}


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    global LOGGER
    if LOGGER is None:
        LOGGER = configure_logging()
    LOGGER.log(level, event, extra={"event": event, **_safe_fields(fields)})
