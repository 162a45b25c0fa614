"""Structured logging helpers for the SheetLedger service."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Final

CONSOLE_FORMAT: Final[str] = "[%(levelname)s] %(name)s: %(message)s"
DEFAULT_LEVEL: Final[str] = "INFO"
ROOT_LOGGER: Final[str] = "sheetledger"
JSON_ENV_FLAG: Final[str] = "SHEETLEDGER_JSON_LOGS"
LEVEL_ENV_FLAG: Final[str] = "SHEETLEDGER_LOG_LEVEL"

_CONTEXT_FIELDS: Final[tuple[str, ...]] = ("method", "path", "status_code", "user_id", "spreadsheet_id")


class JsonLogFormatter(logging.Formatter):
    """Format records as single-line JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "source": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(level: str | int | None) -> int:
    """Resolve the level from the environment first, then the explicit argument."""

    env_level = os.environ.get(LEVEL_ENV_FLAG)
    if env_level:
        candidate = env_level.strip().upper()
    elif isinstance(level, str):
        candidate = level.strip().upper()
    elif isinstance(level, int):
        return int(level)
    else:
        candidate = DEFAULT_LEVEL
    resolved = logging.getLevelName(candidate)
    return int(resolved) if isinstance(resolved, int) else logging.INFO


def _json_logging_enabled(explicit: bool) -> bool:
    if explicit:
        return True
    value = os.environ.get(JSON_ENV_FLAG)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _ensure_console_handler(logger: logging.Logger, level: int, json_format: bool) -> None:
    """Attach a single stream handler, switching its formatter when needed."""

    formatter: logging.Formatter = JsonLogFormatter() if json_format else logging.Formatter(CONSOLE_FORMAT)
    for handler in logger.handlers:
        if getattr(handler, "_sheetledger_console", False):
            handler.setLevel(level)
            handler.setFormatter(formatter)
            return
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    stream_handler._sheetledger_console = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)


def setup_logger(
    name: str = ROOT_LOGGER,
    json_format: bool = False,
    level: str | int | None = None,
) -> logging.Logger:
    """Configure and return a logger with a console handler."""

    resolved_level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(resolved_level)
    # Keep propagation on so capture handlers (pytest ``caplog``) still see records.
    logger.propagate = True
    _ensure_console_handler(logger, resolved_level, _json_logging_enabled(json_format))
    return logger


def configure_logging(json_logs: bool = False, level: str | int | None = None) -> logging.Logger:
    """Configure the package root logger; child loggers inherit its handler."""

    if json_logs:
        os.environ[JSON_ENV_FLAG] = "1"
    return setup_logger(ROOT_LOGGER, json_format=json_logs, level=level)


__all__ = ["JsonLogFormatter", "configure_logging", "setup_logger"]
